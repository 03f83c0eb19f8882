from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="IndexerStreamStatus",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("contract", models.CharField(max_length=64, unique=True)),
                ("state", models.CharField(choices=[("starting", "Starting"), ("catching_up", "Catching up"), ("live", "Live"), ("halted", "Halted"), ("stopped", "Stopped")], default="starting", max_length=20)),
                ("last_key", models.BigIntegerField(blank=True, help_text="Last event key the stream processed", null=True)),
                ("last_error", models.TextField(blank=True, default="", help_text="Error that halted the stream")),
                ("halted_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Indexer Stream Status",
                "verbose_name_plural": "Indexer Stream Statuses",
            },
        ),
    ]
