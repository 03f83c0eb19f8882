# events/checkpoints.py
"""
Durable per-contract cursors.

A checkpoint is the key of the last event whose processor call completed
and whose checkpoint write succeeded. The store only ever moves a
checkpoint forward: saving a key at or below the stored one is a no-op, so
a backfill that replays old events can never rewind a stream.

One engine instance writes a contract's checkpoint. The store does not
arbitrate between concurrent writers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from events.models import EventCheckpoint
from indexer.errors import CheckpointReadError, CheckpointWriteError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    contract: str
    last_key: int
    last_processed_at: Optional[datetime] = None
    error_count: int = 0
    last_error: str = ""


class CheckpointStore(ABC):

    @abstractmethod
    def load(self, contract: str) -> Optional[Checkpoint]:
        """
        Return the stored checkpoint, or None if the stream never advanced.

        Raises:
            CheckpointReadError: the store could not be read
        """

    @abstractmethod
    def save(self, contract: str, key: int) -> bool:
        """
        Record ``key`` as processed.

        Returns True if the stored checkpoint moved, False if it already
        was at or beyond ``key``.

        Raises:
            CheckpointWriteError: the checkpoint was not persisted
        """

    @abstractmethod
    def record_error(self, contract: str, message: str) -> None:
        """Note a processing failure against the checkpoint (diagnostics only)."""


class DatabaseCheckpointStore(CheckpointStore):
    """Checkpoint store over the EventCheckpoint table."""

    def load(self, contract: str) -> Optional[Checkpoint]:
        try:
            row = EventCheckpoint.objects.filter(contract=contract).first()
        except DatabaseError as e:
            raise CheckpointReadError(
                f"Could not load checkpoint for {contract}: {e}",
                contract=contract,
            ) from e

        if row is None:
            return None
        return Checkpoint(
            contract=row.contract,
            last_key=row.last_key,
            last_processed_at=row.last_processed_at,
            error_count=row.error_count,
            last_error=row.last_error,
        )

    def save(self, contract: str, key: int) -> bool:
        now = timezone.now()
        try:
            with transaction.atomic():
                # Conditional update keeps the stored key monotonic.
                advanced = EventCheckpoint.objects.filter(
                    contract=contract,
                    last_key__lt=key,
                ).update(
                    last_key=key,
                    last_processed_at=now,
                    error_count=0,
                    last_error="",
                    updated_at=now,
                )
                if advanced:
                    return True

                _, created = EventCheckpoint.objects.get_or_create(
                    contract=contract,
                    defaults={"last_key": key, "last_processed_at": now},
                )
                return created
        except DatabaseError as e:
            raise CheckpointWriteError(
                f"Could not save checkpoint {key} for {contract}: {e}",
                contract=contract,
                key=key,
            ) from e

    def record_error(self, contract: str, message: str) -> None:
        now = timezone.now()
        try:
            with transaction.atomic():
                updated = EventCheckpoint.objects.filter(contract=contract).update(
                    error_count=F("error_count") + 1,
                    last_error=message[:1000],
                    updated_at=now,
                )
                if not updated:
                    # Nothing processed yet: key 0 precedes every sequence.
                    EventCheckpoint.objects.get_or_create(
                        contract=contract,
                        defaults={
                            "last_key": 0,
                            "error_count": 1,
                            "last_error": message[:1000],
                        },
                    )
        except DatabaseError as e:
            raise CheckpointWriteError(
                f"Could not record error for {contract}: {e}",
                contract=contract,
            ) from e
