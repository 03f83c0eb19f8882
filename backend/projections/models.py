# projections/models.py
"""
Projection models (read models).

These tables are DERIVED from contract events. They can be:
- Rebuilt from scratch by replaying a contract's stream
- Updated incrementally as new events arrive

NEVER modify these tables directly. They are owned by their processors.

Amounts are stored as the exact decimal text of the event value. On-chain
quantities are uint256 and routinely exceed what SQLite REAL or a fixed
NUMERIC precision can hold, so they are never rounded into a numeric column.
Timestamps are the unix seconds carried by the event.
"""

from decimal import Decimal

from django.conf import settings
from django.db import models

from projections.write_barrier import write_context_allowed


# 2**256 has 78 digits; room is left for a fractional part.
AMOUNT_MAX_LENGTH = 96


def amount_field(**kwargs):
    return models.CharField(max_length=AMOUNT_MAX_LENGTH, **kwargs)


def amount_text(value: Decimal) -> str:
    """Exact positional text of an amount: ``Decimal("1E+3")`` gives ``"1000"``."""
    return format(value, "f")


class ProjectionOwnedModel(models.Model):
    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not write_context_allowed({"projection"}) and not getattr(settings, "TESTING", False):
            raise RuntimeError(
                f"{self.__class__.__name__} is a projection-owned read model. "
                "Direct saves are only allowed from processors within projection_writes_allowed()."
            )
        super().save(*args, **kwargs)


# =============================================================================
# Issuer read models
# =============================================================================

class Asset(ProjectionOwnedModel):
    """A tokenized asset created by the issuer contract."""

    token = models.CharField(max_length=128, unique=True)
    name = models.CharField(max_length=255)
    symbol = models.CharField(max_length=64)
    timestamp = models.BigIntegerField()

    class Meta:
        ordering = ["timestamp", "id"]

    def __str__(self):
        return f"{self.symbol} ({self.token})"


class KycGrant(ProjectionOwnedModel):
    """
    KYC approval of an account.

    One row per account: later grants for the same account are ignored.
    """

    account = models.CharField(max_length=128, unique=True)
    token = models.CharField(max_length=128, blank=True, default="")
    granted_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "KYC Grant"
        verbose_name_plural = "KYC Grants"

    def __str__(self):
        return self.account


class Transaction(ProjectionOwnedModel):
    """A purchase or sale of an issuer asset."""

    class Type(models.TextChoices):
        BUY = "buy", "Buy"
        SELL = "sell", "Sell"

    hash = models.CharField(max_length=128)
    account = models.CharField(max_length=128)
    token = models.CharField(max_length=128)
    amount = amount_field()
    type = models.CharField(max_length=4, choices=Type.choices)
    timestamp = models.BigIntegerField()

    class Meta:
        ordering = ["timestamp", "id"]
        indexes = [
            models.Index(fields=["account", "token"], name="transaction_account_token_idx"),
            models.Index(fields=["hash"], name="transaction_hash_idx"),
        ]

    def __str__(self):
        return f"{self.type} {self.amount} {self.token} by {self.account}"


# =============================================================================
# Lender read models
# =============================================================================

class LendingReserve(ProjectionOwnedModel):
    """A lending reserve opened for an asset."""

    token = models.CharField(max_length=128)
    asset = models.CharField(max_length=128)
    name = models.CharField(max_length=255)
    symbol = models.CharField(max_length=64)
    timestamp = models.BigIntegerField()

    class Meta:
        ordering = ["timestamp", "id"]

    def __str__(self):
        return f"{self.name} reserve ({self.asset})"


class Loan(ProjectionOwnedModel):
    """
    A loan taken against an asset.

    Loans are looked up by (account, collateral_asset) when later lender
    events refer to them; the most recent one wins.
    """

    id = models.CharField(max_length=64, primary_key=True)
    account = models.CharField(max_length=128)
    collateral_asset = models.CharField(max_length=128)
    collateral_amount = amount_field()
    liquidation_price = amount_field()
    loan_amount_usdc = amount_field()
    repayment_amount = amount_field()
    timestamp = models.BigIntegerField()

    class Meta:
        ordering = ["timestamp", "id"]
        indexes = [
            models.Index(fields=["account", "collateral_asset"], name="loan_account_collateral_idx"),
        ]

    def __str__(self):
        return self.id


class Liquidation(ProjectionOwnedModel):
    id = models.CharField(max_length=64, primary_key=True)
    account = models.CharField(max_length=128)
    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name="liquidations",
    )
    timestamp = models.BigIntegerField()

    def __str__(self):
        return self.id


class LoanRepayment(ProjectionOwnedModel):
    id = models.CharField(max_length=64, primary_key=True)
    account = models.CharField(max_length=128)
    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name="repayments",
    )
    token = models.CharField(max_length=128)
    timestamp = models.BigIntegerField()

    def __str__(self):
        return self.id


class ProvidedLiquidity(ProjectionOwnedModel):
    id = models.CharField(max_length=64, primary_key=True)
    account = models.CharField(max_length=128)
    asset = models.CharField(max_length=128)
    amount = amount_field()
    timestamp = models.BigIntegerField()

    class Meta:
        verbose_name_plural = "Provided liquidity"

    def __str__(self):
        return self.id


class WithdrawnLiquidity(ProjectionOwnedModel):
    id = models.CharField(max_length=64, primary_key=True)
    account = models.CharField(max_length=128)
    asset = models.CharField(max_length=128)
    amount = amount_field()
    timestamp = models.BigIntegerField()

    class Meta:
        verbose_name_plural = "Withdrawn liquidity"

    def __str__(self):
        return self.id


# =============================================================================
# Redelivery markers
# =============================================================================

class ProcessorAppliedEvent(ProjectionOwnedModel):
    """
    Tracks which events each contract's processor has applied.

    Written in the same transaction as the processor's rows, so an event
    redelivered after a lost checkpoint write is recognized and skipped.
    """

    contract = models.CharField(max_length=64)
    event_key = models.BigIntegerField()
    event_type = models.CharField(max_length=100)
    applied_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["contract", "event_key"],
                name="uniq_processor_applied_event",
            ),
        ]

    def __str__(self):
        return f"{self.contract} applied {self.event_key}"
