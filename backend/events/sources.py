# events/sources.py
"""
Ordered event sources.

An event source hands the indexing engine a contract's events in ascending
key order, strictly after a cursor the engine supplies:

- backlog(): everything already committed, then stops
- subscribe(): new events as they are committed, until told to stop

Both may be called again after a failure with whatever cursor the caller
holds; nothing about a previous call is remembered.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
import logging
import threading

from django.conf import settings
from django.db import DatabaseError, close_old_connections, connection
from django.db.models import Max

from events.models import ContractEvent
from indexer.errors import SourceUnavailable


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventRecord:
    """One event as delivered to a processor."""

    key: int
    contract: str
    type: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, event: ContractEvent) -> "EventRecord":
        return cls(
            key=event.sequence,
            contract=event.contract,
            type=event.event_type,
            fields=dict(event.data),
        )


class EventSource(ABC):
    """Read side of the upstream event store."""

    @abstractmethod
    def backlog(self, contract: str, after: Optional[int] = None) -> Iterator[EventRecord]:
        """
        Yield committed events with key > ``after``, ascending.

        Finite: ends once the events committed at call time are exhausted.

        Raises:
            SourceUnavailable: the store could not be read
        """

    @abstractmethod
    def subscribe(
        self,
        contract: str,
        after: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[EventRecord]:
        """
        Yield events with key > ``after`` as they are committed, ascending.

        Runs until ``stop_event`` is set. Never yields the same key twice.

        Raises:
            SourceUnavailable: the store could not be read
        """


class DatabaseEventSource(EventSource):
    """
    Event source over the ContractEvent table.

    Pages through a contract's events by sequence. The live subscription
    polls every ``poll_interval`` seconds, sleeping on the stop event
    between empty polls.
    """

    def __init__(self, page_size: Optional[int] = None, poll_interval: Optional[float] = None):
        self.page_size = page_size or settings.INDEXER_PAGE_SIZE
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.INDEXER_POLL_INTERVAL
        )

    def backlog(self, contract: str, after: Optional[int] = None) -> Iterator[EventRecord]:
        high_water = self._high_water(contract)
        if high_water is None or (after is not None and after >= high_water):
            return

        cursor = after
        while True:
            page = self._fetch_page(contract, cursor, upper=high_water)
            if not page:
                return
            for record in page:
                yield record
            cursor = page[-1].key
            if cursor >= high_water:
                return

    def subscribe(
        self,
        contract: str,
        after: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[EventRecord]:
        stop_event = stop_event or threading.Event()
        cursor = after

        while not stop_event.is_set():
            page = self._fetch_page(contract, cursor)
            if not page:
                stop_event.wait(self.poll_interval)
                continue
            for record in page:
                yield record
                cursor = record.key

    def _high_water(self, contract: str) -> Optional[int]:
        refresh_connections()
        try:
            return ContractEvent.objects.filter(contract=contract).aggregate(
                high=Max("sequence")
            )["high"]
        except DatabaseError as e:
            raise SourceUnavailable(
                f"Could not read {contract} event stream: {e}",
                contract=contract,
            ) from e

    def _fetch_page(
        self,
        contract: str,
        after: Optional[int],
        upper: Optional[int] = None,
    ) -> List[EventRecord]:
        refresh_connections()
        qs = ContractEvent.objects.filter(contract=contract)
        if after is not None:
            qs = qs.filter(sequence__gt=after)
        if upper is not None:
            qs = qs.filter(sequence__lte=upper)

        try:
            events = list(qs.order_by("sequence")[:self.page_size])
        except DatabaseError as e:
            raise SourceUnavailable(
                f"Could not read {contract} events after {after}: {e}",
                contract=contract,
                key=after,
            ) from e

        logger.debug(
            "Fetched %s %s events after %s", len(events), contract, after,
        )
        return [EventRecord.from_model(event) for event in events]


def refresh_connections() -> None:
    """
    Drop broken or expired database connections.

    Long-lived worker threads never see request boundaries, so the indexer
    calls this before reading and before retrying a failed write. Django
    only reconnects once an unusable connection has been closed. Inside an
    atomic block the connection is left alone.
    """
    if not connection.in_atomic_block:
        close_old_connections()
