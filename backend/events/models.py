# events/models.py
"""
Event Store models.

ContractEvent is the local, immutable copy of the append-only log each
smart-contract domain ("issuer", "lender") writes upstream. Every event gets
a per-contract monotonic ``sequence`` at write time; that sequence is the
ordering key the indexing engine checkpoints on.

EventCheckpoint records, per contract, the key of the last event whose
processor call and checkpoint write both succeeded.
"""

from django.db import models, transaction, IntegrityError
from django.db.models import F
from django.utils import timezone


class ContractEventCounter(models.Model):
    contract = models.CharField(max_length=64, unique=True)
    last_sequence = models.BigIntegerField(default=0)

    class Meta:
        verbose_name = "Contract Event Counter"

    def __str__(self):
        return f"{self.contract}: {self.last_sequence}"


class ContractEvent(models.Model):
    """
    Immutable event record.
    """

    id = models.BigAutoField(primary_key=True)

    contract = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Logical stream identifier (e.g., 'issuer', 'lender')",
    )

    # Per-contract monotonic stream sequence (the checkpoint key)
    sequence = models.BigIntegerField(
        editable=False,
        help_text="Monotonic event sequence per contract",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Event discriminator (e.g., 'AssetCreated')",
    )

    data = models.JSONField(
        default=dict,
        help_text="Event fields as emitted by the contract",
    )

    # Upstream document id; deduplicates re-imports of the same document
    external_id = models.CharField(
        max_length=255,
        editable=False,
        help_text="Identifier of the event in the upstream store",
    )

    payload_hash = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="SHA-256 hash of canonical JSON payload for integrity verification",
    )

    occurred_at = models.DateTimeField(
        db_index=True,
        default=timezone.now,
    )

    recorded_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
    )

    class Meta:
        ordering = ["contract", "sequence"]
        indexes = [
            models.Index(fields=["contract", "event_type"], name="event_contract_type_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["contract", "sequence"],
                name="uniq_event_contract_sequence",
            ),
            models.UniqueConstraint(
                fields=["contract", "external_id"],
                name="uniq_event_contract_external_id",
            ),
        ]

    def __str__(self):
        return f"{self.contract}#{self.sequence} {self.event_type}"

    def save(self, *args, **kwargs):
        # Prevent updates (immutability)
        if not self._state.adding:
            raise ValueError("Events are immutable and cannot be modified.")

        if not self.external_id or not self.external_id.strip():
            raise ValueError("external_id is required")

        with transaction.atomic():
            try:
                counter, _ = ContractEventCounter.objects.select_for_update().get_or_create(
                    contract=self.contract
                )
            except IntegrityError:
                # Race: someone created it between get_or_create attempts
                counter = ContractEventCounter.objects.select_for_update().get(contract=self.contract)

            counter.last_sequence = F("last_sequence") + 1
            counter.save(update_fields=["last_sequence"])
            counter.refresh_from_db(fields=["last_sequence"])
            self.sequence = counter.last_sequence

            super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Events are immutable and cannot be deleted.")


class EventCheckpoint(models.Model):
    contract = models.CharField(
        max_length=64,
        unique=True,
        help_text="Stream whose progress this checkpoint records",
    )

    last_key = models.BigIntegerField(
        help_text="Sequence of the last fully processed event (0 before the first)",
    )

    last_processed_at = models.DateTimeField(
        null=True,
        blank=True,
    )

    error_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of consecutive errors",
    )

    last_error = models.TextField(
        blank=True,
        default="",
        help_text="Last error message",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Event Checkpoint"

    def __str__(self):
        return f"{self.contract} @ {self.last_key}"

    def get_lag(self) -> int:
        """Number of stored events of this contract newer than the checkpoint."""
        return ContractEvent.objects.filter(
            contract=self.contract,
            sequence__gt=self.last_key,
        ).count()
