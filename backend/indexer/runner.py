# indexer/runner.py
"""
Runs contract streams side by side.

Each contract gets its own IndexingEngine. In live mode every engine runs on
its own thread; a halted stream is recorded and the others keep going. The
only state the threads share is the stop event.

Usage:
    supervisor = IndexerSupervisor([build_engine("issuer"), build_engine("lender")])
    supervisor.start()
    ...
    supervisor.stop()
    supervisor.join()
"""

from typing import Dict, Iterable, List, Optional
import logging
import threading

from django.core.exceptions import ImproperlyConfigured
from django.db import connections

from events.checkpoints import CheckpointStore, DatabaseCheckpointStore
from events.sources import DatabaseEventSource, EventSource, refresh_connections
from indexer.backoff import RetryPolicy
from indexer.engine import IndexingEngine
from indexer.errors import IndexerHalted
from indexer.observers import IndexerObserver, default_observer


logger = logging.getLogger(__name__)


def build_engine(
    contract: str,
    *,
    ignore_last_commit: bool = False,
    policy: Optional[RetryPolicy] = None,
    source: Optional[EventSource] = None,
    checkpoints: Optional[CheckpointStore] = None,
    observer: Optional[IndexerObserver] = None,
    stop_event: Optional[threading.Event] = None,
) -> IndexingEngine:
    """
    Wire an engine for ``contract`` with its registered processor and the
    database-backed source and checkpoint store.

    Raises:
        ImproperlyConfigured: no processor is registered for the contract
    """
    from projections.base import processor_registry

    processor = processor_registry.get(contract)
    if processor is None:
        available = ", ".join(processor_registry.contracts())
        raise ImproperlyConfigured(
            f"No processor registered for contract '{contract}'. Available: {available}"
        )

    return IndexingEngine(
        contract,
        processor,
        source=source or DatabaseEventSource(),
        checkpoints=checkpoints or DatabaseCheckpointStore(),
        ignore_last_commit=ignore_last_commit,
        policy=policy or RetryPolicy.from_settings(),
        observer=observer or default_observer(),
        stop_event=stop_event,
        reconnect=refresh_connections,
    )


class IndexerSupervisor:
    """
    Owns a set of engines, one per contract.

    Attributes:
        processed: contract -> events processed by its last run
        errors: contract -> exception that ended its last run
    """

    def __init__(self, engines: Iterable[IndexingEngine]):
        self.engines: List[IndexingEngine] = list(engines)
        self.processed: Dict[str, int] = {}
        self.errors: Dict[str, Exception] = {}
        self._threads: List[threading.Thread] = []

        contracts = [engine.contract for engine in self.engines]
        duplicates = {c for c in contracts if contracts.count(c) > 1}
        if duplicates:
            raise ImproperlyConfigured(
                f"More than one engine for contract(s): {', '.join(sorted(duplicates))}"
            )

    @property
    def contracts(self) -> List[str]:
        return [engine.contract for engine in self.engines]

    @property
    def alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Start every engine in live mode, each on its own thread."""
        for engine in self.engines:
            thread = threading.Thread(
                target=self._run_stream,
                args=(engine, True),
                kwargs={"close_connections": True},
                name=f"indexer-{engine.contract}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

        logger.info(
            f"Started {len(self._threads)} indexer stream(s): {', '.join(self.contracts)}",
            extra={"contracts": self.contracts},
        )

    def run_once(self) -> Dict[str, int]:
        """
        Catch every stream up with its backlog, one after the other, in the
        calling thread.
        """
        for engine in self.engines:
            if engine.stopping:
                break
            self._run_stream(engine, False)
        return dict(self.processed)

    def stop(self) -> None:
        """Ask every engine to finish its in-flight event and exit."""
        logger.info("Stopping indexer streams")
        for engine in self.engines:
            engine.stop()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the stream threads to exit.

        Returns True once none is alive.
        """
        for thread in self._threads:
            thread.join(timeout)
        return not self.alive

    def wait(self, interval: float = 0.5) -> None:
        """
        Block until every stream thread has exited.

        Joins in short slices so the main thread keeps handling signals.
        """
        while not self.join(interval):
            pass

    def _run_stream(self, engine: IndexingEngine, live: bool, close_connections: bool = False) -> None:
        contract = engine.contract
        try:
            self.processed[contract] = engine.run(live=live)
        except IndexerHalted as e:
            self.errors[contract] = e
            logger.error(
                f"Indexer stream {contract} halted: {e}",
                extra={"contract": contract, "key": e.key},
            )
        except Exception as e:
            self.errors[contract] = e
            logger.exception(
                f"Indexer stream {contract} crashed: {e}",
                extra={"contract": contract},
            )
        finally:
            self.processed.setdefault(contract, engine.processed)
            if close_connections:
                # Connections are per thread; a finished stream releases its own.
                connections.close_all()
