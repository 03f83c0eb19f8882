# indexer/observers.py
"""
Observability collaborators for the indexing engine.

The engine never logs or emits metrics itself; it reports to the observer it
was constructed with. Production wiring combines logging, Prometheus metrics
and the persisted stream status; tests pass a recording observer instead.
"""

from typing import Optional
import logging

from django.db import DatabaseError, transaction
from django.utils import timezone

from events.sources import EventRecord
from indexer.errors import IndexerError
from indexer.models import IndexerStreamStatus
from ops import metrics


logger = logging.getLogger(__name__)

StreamState = IndexerStreamStatus.State


def _error_context(error: IndexerError) -> dict:
    return {
        "contract": error.contract,
        "key": error.key,
        "error_type": type(error).__name__,
    }


class IndexerObserver:
    """
    No-op observer. Subclasses override what they care about.
    """

    def state_changed(self, contract: str, state: str, error: Optional[Exception] = None) -> None:
        pass

    def event_processed(self, record: EventRecord, checkpoint_advanced: bool) -> None:
        pass

    def event_skipped(self, record: EventRecord, cursor: int) -> None:
        """A record at or below the cursor came back from the source."""
        pass

    def processor_failed(self, record: EventRecord, error: IndexerError, attempt: int) -> None:
        pass

    def checkpoint_failed(self, contract: str, key: int, error: IndexerError, attempt: int) -> None:
        pass

    def source_unavailable(self, contract: str, error: IndexerError, delay: float) -> None:
        pass


class LoggingObserver(IndexerObserver):

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def state_changed(self, contract, state, error=None):
        if state == StreamState.HALTED:
            self.log.error(
                f"Stream {contract} halted: {error}",
                extra={"contract": contract, "state": state},
            )
        else:
            self.log.info(
                f"Stream {contract} is {state}",
                extra={"contract": contract, "state": state},
            )

    def event_processed(self, record, checkpoint_advanced):
        self.log.debug(
            f"Processed {record.contract} event {record.key} ({record.type})",
            extra={
                "contract": record.contract,
                "key": record.key,
                "event_type": record.type,
                "checkpoint_advanced": checkpoint_advanced,
            },
        )

    def event_skipped(self, record, cursor):
        self.log.warning(
            f"Dropped {record.contract} event {record.key}: already past cursor {cursor}",
            extra={"contract": record.contract, "key": record.key, "cursor": cursor},
        )

    def processor_failed(self, record, error, attempt):
        self.log.error(
            f"Error processing {record.contract} event {record.key} "
            f"(attempt {attempt}): {error}",
            exc_info=error.__cause__ or error,
            extra=_error_context(error),
        )

    def checkpoint_failed(self, contract, key, error, attempt):
        self.log.error(
            f"Checkpoint write failed for {contract} at {key} (attempt {attempt}): {error}",
            extra=_error_context(error),
        )

    def source_unavailable(self, contract, error, delay):
        self.log.warning(
            f"Event source unavailable for {contract}, retrying in {delay:.1f}s: {error}",
            extra={"contract": contract, "retry_in": round(delay, 2)},
        )


class MetricsObserver(IndexerObserver):

    def state_changed(self, contract, state, error=None):
        for choice in StreamState.values:
            metrics.STREAM_STATE.labels(contract=contract, state=choice).set(
                1 if choice == state else 0
            )

    def event_processed(self, record, checkpoint_advanced):
        metrics.EVENTS_PROCESSED.labels(contract=record.contract).inc()
        if checkpoint_advanced:
            metrics.CHECKPOINT_KEY.labels(contract=record.contract).set(record.key)

    def event_skipped(self, record, cursor):
        metrics.EVENTS_SKIPPED.labels(contract=record.contract).inc()

    def processor_failed(self, record, error, attempt):
        metrics.PROCESSOR_FAILURES.labels(contract=record.contract).inc()

    def checkpoint_failed(self, contract, key, error, attempt):
        metrics.CHECKPOINT_FAILURES.labels(contract=contract).inc()

    def source_unavailable(self, contract, error, delay):
        metrics.SOURCE_FAILURES.labels(contract=contract).inc()


class StatusObserver(IndexerObserver):
    """
    Persists the stream's lifecycle to IndexerStreamStatus.

    Status writes are best effort: a failure to record health must not take
    down the stream it describes.
    """

    def state_changed(self, contract, state, error=None):
        values = {"state": state}
        if state == StreamState.HALTED:
            values["last_error"] = str(error or "")[:2000]
            values["halted_at"] = timezone.now()
        elif state == StreamState.STARTING:
            values["last_error"] = ""
            values["halted_at"] = None
        self._write(contract, values)

    def event_processed(self, record, checkpoint_advanced):
        self._write(record.contract, {"last_key": record.key})

    def _write(self, contract: str, values: dict) -> None:
        try:
            with transaction.atomic():
                IndexerStreamStatus.objects.update_or_create(contract=contract, defaults=values)
        except DatabaseError:
            logger.exception(f"Could not record stream status for {contract}")


class CompositeObserver(IndexerObserver):

    def __init__(self, *observers: IndexerObserver):
        self.observers = observers

    def state_changed(self, contract, state, error=None):
        for observer in self.observers:
            observer.state_changed(contract, state, error)

    def event_processed(self, record, checkpoint_advanced):
        for observer in self.observers:
            observer.event_processed(record, checkpoint_advanced)

    def event_skipped(self, record, cursor):
        for observer in self.observers:
            observer.event_skipped(record, cursor)

    def processor_failed(self, record, error, attempt):
        for observer in self.observers:
            observer.processor_failed(record, error, attempt)

    def checkpoint_failed(self, contract, key, error, attempt):
        for observer in self.observers:
            observer.checkpoint_failed(contract, key, error, attempt)

    def source_unavailable(self, contract, error, delay):
        for observer in self.observers:
            observer.source_unavailable(contract, error, delay)


def default_observer() -> IndexerObserver:
    return CompositeObserver(LoggingObserver(), MetricsObserver(), StatusObserver())
