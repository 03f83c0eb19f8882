import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Asset",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("token", models.CharField(max_length=128, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("symbol", models.CharField(max_length=64)),
                ("timestamp", models.BigIntegerField()),
            ],
            options={
                "ordering": ["timestamp", "id"],
            },
        ),
        migrations.CreateModel(
            name="KycGrant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("account", models.CharField(max_length=128, unique=True)),
                ("token", models.CharField(blank=True, default="", max_length=128)),
                ("granted_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name": "KYC Grant",
                "verbose_name_plural": "KYC Grants",
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("hash", models.CharField(max_length=128)),
                ("account", models.CharField(max_length=128)),
                ("token", models.CharField(max_length=128)),
                ("amount", models.CharField(max_length=96)),
                ("type", models.CharField(choices=[("buy", "Buy"), ("sell", "Sell")], max_length=4)),
                ("timestamp", models.BigIntegerField()),
            ],
            options={
                "ordering": ["timestamp", "id"],
                "indexes": [
                    models.Index(fields=["account", "token"], name="transaction_account_token_idx"),
                    models.Index(fields=["hash"], name="transaction_hash_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="LendingReserve",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("token", models.CharField(max_length=128)),
                ("asset", models.CharField(max_length=128)),
                ("name", models.CharField(max_length=255)),
                ("symbol", models.CharField(max_length=64)),
                ("timestamp", models.BigIntegerField()),
            ],
            options={
                "ordering": ["timestamp", "id"],
            },
        ),
        migrations.CreateModel(
            name="Loan",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("account", models.CharField(max_length=128)),
                ("collateral_asset", models.CharField(max_length=128)),
                ("collateral_amount", models.CharField(max_length=96)),
                ("liquidation_price", models.CharField(max_length=96)),
                ("loan_amount_usdc", models.CharField(max_length=96)),
                ("repayment_amount", models.CharField(max_length=96)),
                ("timestamp", models.BigIntegerField()),
            ],
            options={
                "ordering": ["timestamp", "id"],
                "indexes": [models.Index(fields=["account", "collateral_asset"], name="loan_account_collateral_idx")],
            },
        ),
        migrations.CreateModel(
            name="Liquidation",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("account", models.CharField(max_length=128)),
                ("timestamp", models.BigIntegerField()),
                ("loan", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="liquidations", to="projections.loan")),
            ],
        ),
        migrations.CreateModel(
            name="LoanRepayment",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("account", models.CharField(max_length=128)),
                ("token", models.CharField(max_length=128)),
                ("timestamp", models.BigIntegerField()),
                ("loan", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="repayments", to="projections.loan")),
            ],
        ),
        migrations.CreateModel(
            name="ProvidedLiquidity",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("account", models.CharField(max_length=128)),
                ("asset", models.CharField(max_length=128)),
                ("amount", models.CharField(max_length=96)),
                ("timestamp", models.BigIntegerField()),
            ],
            options={
                "verbose_name_plural": "Provided liquidity",
            },
        ),
        migrations.CreateModel(
            name="WithdrawnLiquidity",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("account", models.CharField(max_length=128)),
                ("asset", models.CharField(max_length=128)),
                ("amount", models.CharField(max_length=96)),
                ("timestamp", models.BigIntegerField()),
            ],
            options={
                "verbose_name_plural": "Withdrawn liquidity",
            },
        ),
        migrations.CreateModel(
            name="ProcessorAppliedEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("contract", models.CharField(max_length=64)),
                ("event_key", models.BigIntegerField()),
                ("event_type", models.CharField(max_length=100)),
                ("applied_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "constraints": [models.UniqueConstraint(fields=["contract", "event_key"], name="uniq_processor_applied_event")],
            },
        ),
    ]
