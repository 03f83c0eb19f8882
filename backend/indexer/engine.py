# indexer/engine.py
"""
The indexing engine.

One engine owns one contract stream. It:
1. Loads the stream's checkpoint (unless told to ignore it)
2. Replays the backlog strictly after the checkpoint, in key order
3. Calls the contract's processor once per event
4. Persists the checkpoint after every successful call, before the next
5. Switches to the live subscription and repeats 3-4 until stopped

An event is never handed to the processor with a key at or below the
engine's cursor. If a checkpoint write fails after the processor succeeded,
the stream halts and the event is redelivered on the next start; processors
therefore tolerate seeing an event twice.
"""

from typing import Callable, Iterable, Optional
import threading
import time

from events.checkpoints import CheckpointStore
from events.sources import EventRecord, EventSource
from indexer.backoff import BackoffState, RetryPolicy
from indexer.errors import (
    CheckpointWriteError,
    IndexerHalted,
    ProcessorError,
    SourceUnavailable,
)
from indexer.observers import IndexerObserver, StreamState


Processor = Callable[[EventRecord], None]


class _StopRequested(Exception):
    """Shutdown was requested while the engine was waiting to retry."""


class IndexingEngine:
    """
    Delivers one contract's events, in order, to its processor.

    Usage:
        engine = IndexingEngine(
            "issuer",
            issuer_processor,
            source=DatabaseEventSource(),
            checkpoints=DatabaseCheckpointStore(),
        )
        engine.run()          # blocks until engine.stop() or a halt

    ``ignore_last_commit`` starts from the beginning of the stream without
    touching the stored checkpoint; the store keeps the higher of the two.

    ``reconnect`` is called before every retry of a failed read, processor
    call or checkpoint write, so a dropped database connection is replaced
    instead of failing every attempt. With ``policy.source_retries`` set, a
    source outage longer than the budget raises ``SourceUnavailable`` out of
    ``run()``; otherwise the engine waits for the source indefinitely.
    """

    def __init__(
        self,
        contract: str,
        processor: Processor,
        *,
        source: EventSource,
        checkpoints: CheckpointStore,
        ignore_last_commit: bool = False,
        policy: Optional[RetryPolicy] = None,
        observer: Optional[IndexerObserver] = None,
        stop_event: Optional[threading.Event] = None,
        reconnect: Optional[Callable[[], None]] = None,
    ):
        self.contract = contract
        self.processor = processor
        self.source = source
        self.checkpoints = checkpoints
        self.ignore_last_commit = ignore_last_commit
        self.policy = policy or RetryPolicy()
        self.observer = observer or IndexerObserver()
        self._stop = stop_event or threading.Event()
        self._reconnect = reconnect

        self.cursor: Optional[int] = None
        self.processed = 0
        self.state = StreamState.STOPPED

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """
        Request graceful shutdown.

        The event in flight finishes, including its checkpoint write; no new
        event is started.
        """
        self._stop.set()

    def catch_up(self) -> int:
        """Process the current backlog and return without going live."""
        return self.run(live=False)

    def run(self, live: bool = True) -> int:
        """
        Run the stream until stopped (or, with ``live=False``, until the
        backlog is drained).

        Returns:
            Number of events processed during this run

        Raises:
            IndexerHalted: a processor failure or checkpoint write failure
                exhausted its retries
            SourceUnavailable: the source stayed unreadable past
                ``policy.source_retries``
        """
        self._set_state(StreamState.STARTING)
        try:
            self.cursor = self._initial_cursor()

            self._set_state(StreamState.CATCHING_UP)
            self._consume(self.source.backlog)

            if live and not self.stopping:
                self._set_state(StreamState.LIVE)
                self._consume(self._subscribe)

        except _StopRequested:
            pass
        except Exception as e:
            self._set_state(StreamState.HALTED, error=e)
            raise

        self._set_state(StreamState.STOPPED)
        return self.processed

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def _initial_cursor(self) -> Optional[int]:
        if self.ignore_last_commit:
            return None

        backoff = self.policy.new_backoff()
        while True:
            try:
                checkpoint = self.checkpoints.load(self.contract)
                return checkpoint.last_key if checkpoint else None
            except SourceUnavailable as e:
                self._wait_or_stop(backoff, e)

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def _subscribe(self, contract: str, after: Optional[int]) -> Iterable[EventRecord]:
        return self.source.subscribe(contract, after, stop_event=self._stop)

    def _consume(self, open_stream: Callable[[str, Optional[int]], Iterable[EventRecord]]) -> None:
        """
        Drain one stream, reopening it from the cursor after source failures.
        """
        backoff = self.policy.new_backoff()

        while not self.stopping:
            stream = None
            try:
                stream = open_stream(self.contract, self.cursor)
                for record in stream:
                    if self.stopping:
                        return
                    self._dispatch(record)
                    backoff.record_success()
                return
            except SourceUnavailable as e:
                self._wait_or_stop(backoff, e)
            finally:
                close = getattr(stream, "close", None)
                if close is not None:
                    close()

    def _dispatch(self, record: EventRecord) -> None:
        if self.cursor is not None and record.key <= self.cursor:
            self.observer.event_skipped(record, self.cursor)
            return

        self._process(record)
        advanced = self._persist_checkpoint(record.key)

        self.cursor = record.key
        self.processed += 1
        self.observer.event_processed(record, advanced)

    def _process(self, record: EventRecord) -> None:
        backoff = self.policy.new_backoff()
        attempt = 0

        while True:
            attempt += 1
            try:
                self.processor(record)
                return
            except Exception as e:
                error = ProcessorError(
                    f"Processor for {self.contract} failed on event {record.key} "
                    f"({record.type}): {e}",
                    contract=self.contract,
                    key=record.key,
                    details={"event_type": record.type, "attempt": attempt},
                )
                error.__cause__ = e
                self.observer.processor_failed(record, error, attempt)
                self._record_error(error)

                if attempt > self.policy.processor_retries:
                    raise IndexerHalted(
                        f"Stream {self.contract} halted at event {record.key}: {e}",
                        cause=error,
                        contract=self.contract,
                        key=record.key,
                    ) from e

                if self._stop.wait(backoff.record_failure()):
                    raise _StopRequested()
                self._before_retry()

    def _persist_checkpoint(self, key: int) -> bool:
        backoff = self.policy.new_backoff()
        attempt = 0

        while True:
            attempt += 1
            try:
                return self.checkpoints.save(self.contract, key)
            except CheckpointWriteError as e:
                self.observer.checkpoint_failed(self.contract, key, e, attempt)

                if attempt > self.policy.checkpoint_retries:
                    raise IndexerHalted(
                        f"Stream {self.contract} halted: checkpoint {key} not persisted",
                        cause=e,
                        contract=self.contract,
                        key=key,
                    ) from e

                # Not interruptible: shutdown waits for the in-flight save.
                time.sleep(backoff.record_failure())
                self._before_retry()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_error(self, error: ProcessorError) -> None:
        try:
            self.checkpoints.record_error(self.contract, str(error))
        except CheckpointWriteError as e:
            self.observer.checkpoint_failed(self.contract, error.key, e, 0)

    def _before_retry(self) -> None:
        if self._reconnect is not None:
            self._reconnect()

    def _wait_or_stop(self, backoff: BackoffState, error: SourceUnavailable) -> None:
        delay = backoff.record_failure()
        budget = self.policy.source_retries
        if budget is not None and backoff.consecutive_failures > budget:
            raise error
        self.observer.source_unavailable(self.contract, error, delay)
        if self._stop.wait(delay):
            raise _StopRequested()
        self._before_retry()

    def _set_state(self, state: str, error: Optional[Exception] = None) -> None:
        self.state = state
        self.observer.state_changed(self.contract, state, error)
