# projections/base.py
"""
Base classes for contract processors.

A processor maps one contract's events into read-model rows.
Processors:
- Handle every event variant their contract can emit, explicitly
- Run each event inside one transaction with its applied-event marker
- Skip events whose marker already exists (redelivery after a crash)
- Can be rebuilt from scratch by clearing their rows and replaying the stream

The indexing engine calls a processor as a plain callable:

    processor = processor_registry.get("issuer")
    processor(record)
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Type
import logging
import uuid

from django.core.exceptions import ImproperlyConfigured
from django.db import transaction

from events.sources import EventRecord
from events.types import CONTRACT_EVENTS, UnrecognizedEvent, parse_event
from projections.models import ProcessorAppliedEvent
from projections.write_barrier import projection_writes_allowed


logger = logging.getLogger(__name__)

Handler = Callable[[Any, EventRecord], None]


def generate_id(prefix: str) -> str:
    """Random row id such as ``loan_3f2b...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


class BaseProcessor(ABC):
    """
    Base class for all contract processors.

    Subclasses must implement:
    - contract: The contract stream this processor consumes
    - handlers(): Mapping of every event class of the contract (and
      UnrecognizedEvent) to a handler ``(event, record) -> None``

    Optional overrides:
    - _clear_projected_data(): Delete the rows this processor owns
    """

    @property
    @abstractmethod
    def contract(self) -> str:
        pass

    @abstractmethod
    def handlers(self) -> Dict[Type, Handler]:
        pass

    @property
    def name(self) -> str:
        return f"{self.contract}_processor"

    def missing_handlers(self) -> List[str]:
        """Event variants of the contract with no handler."""
        handled = self.handlers()
        expected = list(CONTRACT_EVENTS.get(self.contract, ())) + [UnrecognizedEvent]
        return [cls.__name__ for cls in expected if cls not in handled]

    def __call__(self, record: EventRecord) -> None:
        """
        Apply one event.

        Raises whatever the handler raises; the transaction is rolled back
        and no marker is left behind.
        """
        event = parse_event(self.contract, record.type, record.fields)
        handler = self.handlers()[type(event)]

        with transaction.atomic():
            with projection_writes_allowed():
                _, created = ProcessorAppliedEvent.objects.get_or_create(
                    contract=self.contract,
                    event_key=record.key,
                    defaults={"event_type": record.type},
                )
                if not created:
                    logger.info(
                        f"{self.name} already applied {record.contract} event {record.key}",
                        extra={"contract": record.contract, "key": record.key},
                    )
                    return

                handler(event, record)

    def handle_unrecognized(self, event: UnrecognizedEvent, record: EventRecord) -> None:
        logger.warning(
            f"Unknown {self.contract} event {record.key} ({event.event_type}): {event.reason}",
            extra={
                "contract": self.contract,
                "key": record.key,
                "event_type": event.event_type,
            },
        )

    def reset(self) -> None:
        """Delete this processor's rows and applied-event markers."""
        with transaction.atomic():
            with projection_writes_allowed():
                self._clear_projected_data()
                ProcessorAppliedEvent.objects.filter(contract=self.contract).delete()

    def _clear_projected_data(self) -> None:
        """
        Clear all projected data for rebuild.
        Subclasses should override this.
        """
        pass


class ProcessorRegistry:
    """
    Registry of contract processors, one per contract.

    Usage:
        processor_registry.register(IssuerProcessor())
        engine = IndexingEngine("issuer", processor_registry.get("issuer"), ...)
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._processors = {}
        return cls._instance

    def register(self, processor: BaseProcessor) -> None:
        """
        Register a processor.

        Raises:
            ImproperlyConfigured: the processor leaves an event variant of its
                contract unhandled
        """
        missing = processor.missing_handlers()
        if missing:
            raise ImproperlyConfigured(
                f"{type(processor).__name__} has no handler for: {', '.join(missing)}"
            )
        self._processors[processor.contract] = processor

    def get(self, contract: str) -> Optional[BaseProcessor]:
        return self._processors.get(contract)

    def all(self) -> List[BaseProcessor]:
        return list(self._processors.values())

    def contracts(self) -> List[str]:
        return list(self._processors.keys())


# Global registry instance
processor_registry = ProcessorRegistry()
