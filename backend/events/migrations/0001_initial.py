import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ContractEventCounter",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("contract", models.CharField(max_length=64, unique=True)),
                ("last_sequence", models.BigIntegerField(default=0)),
            ],
            options={
                "verbose_name": "Contract Event Counter",
            },
        ),
        migrations.CreateModel(
            name="ContractEvent",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("contract", models.CharField(db_index=True, help_text="Logical stream identifier (e.g., 'issuer', 'lender')", max_length=64)),
                ("sequence", models.BigIntegerField(editable=False, help_text="Monotonic event sequence per contract")),
                ("event_type", models.CharField(db_index=True, help_text="Event discriminator (e.g., 'AssetCreated')", max_length=100)),
                ("data", models.JSONField(default=dict, help_text="Event fields as emitted by the contract")),
                ("external_id", models.CharField(editable=False, help_text="Identifier of the event in the upstream store", max_length=255)),
                ("payload_hash", models.CharField(blank=True, default="", help_text="SHA-256 hash of canonical JSON payload for integrity verification", max_length=64)),
                ("occurred_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("recorded_at", models.DateTimeField(auto_now_add=True, db_index=True)),
            ],
            options={
                "ordering": ["contract", "sequence"],
                "indexes": [models.Index(fields=["contract", "event_type"], name="event_contract_type_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=["contract", "sequence"], name="uniq_event_contract_sequence"),
                    models.UniqueConstraint(fields=["contract", "external_id"], name="uniq_event_contract_external_id"),
                ],
            },
        ),
        migrations.CreateModel(
            name="EventCheckpoint",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("contract", models.CharField(help_text="Stream whose progress this checkpoint records", max_length=64, unique=True)),
                ("last_key", models.BigIntegerField(help_text="Sequence of the last fully processed event (0 before the first)")),
                ("last_processed_at", models.DateTimeField(blank=True, null=True)),
                ("error_count", models.PositiveIntegerField(default=0, help_text="Number of consecutive errors")),
                ("last_error", models.TextField(blank=True, default="", help_text="Last error message")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Event Checkpoint",
            },
        ),
    ]
