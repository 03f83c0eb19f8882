# tests/test_engine.py
"""
Tests for the indexing engine's delivery and checkpoint protocol.

These run against in-memory collaborators; no database is involved.
"""

import threading

import pytest

from indexer.backoff import RetryPolicy
from indexer.engine import IndexingEngine
from indexer.errors import (
    CheckpointReadError,
    CheckpointWriteError,
    IndexerHalted,
    ProcessorError,
    SourceUnavailable,
)
from indexer.observers import StreamState
from tests.fakes import InMemoryCheckpointStore, RecordingProcessor, wait_for


def make_engine(source, checkpoints, processor, observer=None, policy=None, **kwargs):
    return IndexingEngine(
        "issuer",
        processor,
        source=source,
        checkpoints=checkpoints,
        policy=policy or RetryPolicy(backoff_initial=0.001, backoff_max=0.01, checkpoint_retries=2),
        observer=observer,
        **kwargs,
    )


class TestBacklog:

    def test_delivers_backlog_in_key_order(self, source, checkpoints, observer):
        source.extend("issuer", 3)
        processor = RecordingProcessor()

        processed = make_engine(source, checkpoints, processor, observer).catch_up()

        assert processor.seen == [1, 2, 3]
        assert processed == 3
        assert checkpoints.keys["issuer"] == 3

    def test_checkpoint_saved_after_each_event(self, source, checkpoints):
        source.extend("issuer", 3)
        seen_checkpoints = []

        def remember_checkpoint(record):
            seen_checkpoints.append(checkpoints.keys.get("issuer"))

        processor = RecordingProcessor(on_event=remember_checkpoint)
        make_engine(source, checkpoints, processor).catch_up()

        # Each call sees the checkpoint of the previous event, never later.
        assert seen_checkpoints == [None, 1, 2]
        assert checkpoints.saves == [("issuer", 1), ("issuer", 2), ("issuer", 3)]

    def test_empty_stream_leaves_no_checkpoint(self, source, checkpoints, observer):
        processor = RecordingProcessor()

        processed = make_engine(source, checkpoints, processor, observer).catch_up()

        assert processed == 0
        assert "issuer" not in checkpoints.keys
        assert observer.states("issuer") == [
            StreamState.STARTING,
            StreamState.CATCHING_UP,
            StreamState.STOPPED,
        ]

    def test_only_own_contract_is_read(self, source, checkpoints):
        source.extend("issuer", 2)
        source.extend("lender", 5)
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor).catch_up()

        assert processor.seen == [1, 2]
        assert "lender" not in checkpoints.keys


class TestResumption:

    def test_resumes_strictly_after_checkpoint(self, source, checkpoints):
        source.extend("issuer", 5)
        checkpoints.keys["issuer"] = 3
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor).catch_up()

        assert processor.seen == [4, 5]
        assert source.backlog_calls == [3]
        assert checkpoints.keys["issuer"] == 5

    def test_restart_after_full_run_delivers_nothing(self, source, checkpoints):
        source.extend("issuer", 3)
        make_engine(source, checkpoints, RecordingProcessor()).catch_up()

        processor = RecordingProcessor()
        make_engine(source, checkpoints, processor).catch_up()

        assert processor.seen == []
        assert checkpoints.keys["issuer"] == 3

    def test_lost_checkpoint_write_redelivers_event_on_restart(self, source, checkpoints):
        source.extend("issuer", 2)
        checkpoints.fail_saves = 1
        policy = RetryPolicy(checkpoint_retries=0, backoff_initial=0.001, backoff_max=0.01)
        first = RecordingProcessor()

        with pytest.raises(IndexerHalted):
            make_engine(source, checkpoints, first, policy=policy).catch_up()

        # The processor ran but the checkpoint never moved.
        assert first.seen == [1]
        assert "issuer" not in checkpoints.keys

        second = RecordingProcessor()
        make_engine(source, checkpoints, second).catch_up()

        assert second.seen == [1, 2]
        assert checkpoints.keys["issuer"] == 2

    def test_checkpoint_read_failure_is_retried(self, source, checkpoints, observer):
        source.extend("issuer", 2)
        checkpoints.keys["issuer"] = 1
        checkpoints.fail_loads = 2
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor, observer).catch_up()

        assert processor.seen == [2]
        assert len(observer.of("source_unavailable")) == 2


class TestIgnoreLastCommit:

    def test_replays_from_beginning(self, source, checkpoints):
        source.extend("issuer", 3)
        checkpoints.keys["issuer"] = 3
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor, ignore_last_commit=True).catch_up()

        assert processor.seen == [1, 2, 3]
        assert source.backlog_calls == [None]

    def test_backfill_never_lowers_stored_checkpoint(self, source, checkpoints, observer):
        source.extend("issuer", 3)
        checkpoints.keys["issuer"] = 2
        processor = RecordingProcessor()

        make_engine(
            source, checkpoints, processor, observer, ignore_last_commit=True,
        ).catch_up()

        assert checkpoints.keys["issuer"] == 3
        advanced = [c[2] for c in observer.of("event_processed")]
        assert advanced == [False, False, True]

    def test_checkpoint_is_not_erased_before_processing(self, source, checkpoints):
        source.extend("issuer", 2)
        checkpoints.keys["issuer"] = 2
        observed = []
        processor = RecordingProcessor(
            on_event=lambda record: observed.append(checkpoints.keys.get("issuer")),
        )

        make_engine(source, checkpoints, processor, ignore_last_commit=True).catch_up()

        assert observed == [2, 2]


class TestOrdering:

    def test_records_at_or_below_cursor_are_dropped(self, source, checkpoints, observer):
        source.extend("issuer", 3)
        records = source.events["issuer"]
        source.raw["issuer"] = [records[0], records[1], records[1], records[0], records[2]]
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor, observer).catch_up()

        assert processor.seen == [1, 2, 3]
        assert [(c[1], c[2]) for c in observer.of("event_skipped")] == [(2, 2), (1, 2)]
        assert checkpoints.keys["issuer"] == 3

    def test_stale_records_after_restart_are_dropped(self, source, checkpoints):
        source.extend("issuer", 4)
        source.raw["issuer"] = list(source.events["issuer"])
        checkpoints.keys["issuer"] = 2
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor).catch_up()

        assert processor.seen == [3, 4]


class TestProcessorFailures:

    def test_failure_halts_without_advancing_checkpoint(self, source, checkpoints, observer):
        source.extend("issuer", 3)
        processor = RecordingProcessor(fail_keys={2: None})
        engine = make_engine(source, checkpoints, processor, observer)

        with pytest.raises(IndexerHalted) as exc_info:
            engine.catch_up()

        assert processor.seen == [1, 2]
        assert checkpoints.keys["issuer"] == 1
        assert engine.state == StreamState.HALTED
        assert observer.states("issuer")[-1] == StreamState.HALTED
        assert isinstance(exc_info.value.cause, ProcessorError)
        assert exc_info.value.key == 2
        assert len(checkpoints.errors["issuer"]) == 1

    def test_halted_stream_resumes_at_failed_event(self, source, checkpoints):
        source.extend("issuer", 3)
        with pytest.raises(IndexerHalted):
            make_engine(source, checkpoints, RecordingProcessor(fail_keys={2: None})).catch_up()

        processor = RecordingProcessor()
        make_engine(source, checkpoints, processor).catch_up()

        assert processor.seen == [2, 3]

    def test_retries_before_halting(self, source, checkpoints, observer):
        source.extend("issuer", 3)
        processor = RecordingProcessor(fail_keys={2: 2})
        policy = RetryPolicy(processor_retries=2, backoff_initial=0.001, backoff_max=0.01)

        make_engine(source, checkpoints, processor, observer, policy=policy).catch_up()

        assert processor.seen == [1, 2, 2, 2, 3]
        assert [c[2] for c in observer.of("processor_failed")] == [1, 2]
        assert checkpoints.keys["issuer"] == 3

    def test_retries_exhausted(self, source, checkpoints, observer):
        source.extend("issuer", 2)
        processor = RecordingProcessor(fail_keys={1: None})
        policy = RetryPolicy(processor_retries=1, backoff_initial=0.001, backoff_max=0.01)

        with pytest.raises(IndexerHalted):
            make_engine(source, checkpoints, processor, observer, policy=policy).catch_up()

        assert processor.seen == [1, 1]
        assert "issuer" not in checkpoints.keys


class TestCheckpointFailures:

    def test_transient_write_failure_is_retried(self, source, checkpoints, observer):
        source.extend("issuer", 2)
        checkpoints.fail_saves = 2
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor, observer).catch_up()

        assert processor.seen == [1, 2]
        assert checkpoints.keys["issuer"] == 2
        assert [c[2] for c in observer.of("checkpoint_failed")] == [1, 2]

    def test_persistent_write_failure_halts_before_next_event(self, source, checkpoints):
        source.extend("issuer", 3)
        checkpoints.fail_saves = 10
        processor = RecordingProcessor()

        with pytest.raises(IndexerHalted) as exc_info:
            make_engine(source, checkpoints, processor).catch_up()

        assert processor.seen == [1]
        assert exc_info.value.key == 1


class TestSourceFailures:

    def test_unavailable_backlog_is_retried(self, source, checkpoints, observer):
        source.extend("issuer", 2)
        source.fail_backlog = 2
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor, observer).catch_up()

        assert processor.seen == [1, 2]
        assert len(observer.of("source_unavailable")) == 2
        assert source.backlog_calls == [None, None, None]

    def test_reopens_from_cursor_after_failure_mid_stream(self, source, checkpoints):
        source.extend("issuer", 4)
        calls = {"n": 0}
        original = source.backlog

        def flaky_backlog(contract, after=None):
            calls["n"] += 1
            records = original(contract, after)
            if calls["n"] == 1:
                return _fail_after(records, 2)
            return records

        source.backlog = flaky_backlog
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor).catch_up()

        assert processor.seen == [1, 2, 3, 4]
        assert source.backlog_calls == [None, 2]


def _fail_after(records, count):
    from indexer.errors import SourceUnavailable

    for index, record in enumerate(records):
        if index == count:
            raise SourceUnavailable("connection reset", contract=record.contract)
        yield record


class TestLive:

    def test_follows_new_events_until_stopped(self, source, checkpoints, observer):
        source.extend("issuer", 2)
        processor = RecordingProcessor()
        engine = make_engine(source, checkpoints, processor, observer)

        thread = threading.Thread(target=engine.run)
        thread.start()
        try:
            assert wait_for(lambda: processor.seen == [1, 2])
            assert wait_for(lambda: engine.state == StreamState.LIVE)

            source.append("issuer")
            source.append("issuer")
            assert wait_for(lambda: checkpoints.keys.get("issuer") == 4)
        finally:
            engine.stop()
            thread.join(timeout=5)

        assert not thread.is_alive()
        assert processor.seen == [1, 2, 3, 4]
        assert engine.state == StreamState.STOPPED
        assert observer.states("issuer") == [
            StreamState.STARTING,
            StreamState.CATCHING_UP,
            StreamState.LIVE,
            StreamState.STOPPED,
        ]

    def test_subscription_starts_after_backlog_cursor(self, source, checkpoints):
        source.extend("issuer", 3)
        subscribed = []
        original = source.subscribe

        def recording_subscribe(contract, after=None, stop_event=None):
            subscribed.append(after)
            return original(contract, after, stop_event=stop_event)

        source.subscribe = recording_subscribe
        processor = RecordingProcessor()
        engine = make_engine(source, checkpoints, processor)

        thread = threading.Thread(target=engine.run)
        thread.start()
        try:
            assert wait_for(lambda: subscribed == [3])
        finally:
            engine.stop()
            thread.join(timeout=5)

        assert processor.seen == [1, 2, 3]

    def test_stop_interrupts_processor_backoff(self, source, checkpoints):
        source.extend("issuer", 1)
        processor = RecordingProcessor(fail_keys={1: None})
        policy = RetryPolicy(processor_retries=5, backoff_initial=30.0, backoff_max=30.0)
        engine = make_engine(source, checkpoints, processor, policy=policy)

        thread = threading.Thread(target=engine.run)
        thread.start()
        assert wait_for(lambda: processor.seen == [1])
        engine.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert engine.state == StreamState.STOPPED
        assert "issuer" not in checkpoints.keys

    def test_stop_before_run_processes_nothing(self, source, checkpoints):
        source.extend("issuer", 3)
        processor = RecordingProcessor()
        engine = make_engine(source, checkpoints, processor)

        engine.stop()
        processed = engine.run()

        assert processed == 0
        assert processor.seen == []

    def test_in_flight_event_completes_on_stop(self, source, checkpoints):
        source.extend("issuer", 3)
        engine = None

        def stop_during_first(record):
            if record.key == 1:
                engine.stop()

        processor = RecordingProcessor(on_event=stop_during_first)
        engine = make_engine(source, checkpoints, processor)

        engine.run()

        assert processor.seen == [1]
        assert checkpoints.keys["issuer"] == 1
        assert engine.state == StreamState.STOPPED


class DroppedConnection:
    """Shared connection flag: broken until ``reconnect()`` is called."""

    def __init__(self):
        self.usable = False
        self.reconnects = 0

    def reconnect(self):
        self.reconnects += 1
        self.usable = True


class DroppedConnectionStore(InMemoryCheckpointStore):

    def __init__(self, connection):
        super().__init__()
        self.connection = connection

    def save(self, contract, key):
        if not self.connection.usable:
            raise CheckpointWriteError("connection already closed", contract=contract, key=key)
        return super().save(contract, key)


class TestReconnect:

    def test_checkpoint_write_recovers_after_reconnect(self, source):
        source.extend("issuer", 2)
        connection = DroppedConnection()
        checkpoints = DroppedConnectionStore(connection)

        make_engine(source, checkpoints, RecordingProcessor(), reconnect=connection.reconnect).catch_up()

        assert checkpoints.keys["issuer"] == 2
        assert connection.reconnects == 1

    def test_without_reconnect_dead_connection_halts(self, source):
        source.extend("issuer", 1)
        checkpoints = DroppedConnectionStore(DroppedConnection())

        with pytest.raises(IndexerHalted):
            make_engine(source, checkpoints, RecordingProcessor()).catch_up()

    def test_processor_retry_follows_reconnect(self, source, checkpoints):
        source.extend("issuer", 1)
        connection = DroppedConnection()

        def needs_connection(record):
            if not connection.usable:
                raise RuntimeError("connection already closed")

        processor = RecordingProcessor(on_event=needs_connection)
        policy = RetryPolicy(processor_retries=1, backoff_initial=0.001, backoff_max=0.01)

        make_engine(source, checkpoints, processor, policy=policy, reconnect=connection.reconnect).catch_up()

        assert processor.seen == [1, 1]
        assert checkpoints.keys["issuer"] == 1
        assert connection.reconnects == 1

    def test_source_is_reopened_after_reconnect(self, source, checkpoints):
        source.extend("issuer", 1)
        source.fail_backlog = 1
        connection = DroppedConnection()

        make_engine(source, checkpoints, RecordingProcessor(), reconnect=connection.reconnect).catch_up()

        assert connection.reconnects == 1
        assert checkpoints.keys["issuer"] == 1


class TestSourceRetryBudget:

    def policy(self, source_retries):
        return RetryPolicy(source_retries=source_retries, backoff_initial=0.001, backoff_max=0.01)

    def test_outage_past_budget_raises(self, source, checkpoints):
        source.extend("issuer", 1)
        source.fail_backlog = 10
        engine = make_engine(source, checkpoints, RecordingProcessor(), policy=self.policy(2))

        with pytest.raises(SourceUnavailable):
            engine.catch_up()

        assert len(source.backlog_calls) == 3
        assert engine.state == StreamState.HALTED

    def test_outage_within_budget_recovers(self, source, checkpoints):
        source.extend("issuer", 1)
        source.fail_backlog = 2
        processor = RecordingProcessor()

        make_engine(source, checkpoints, processor, policy=self.policy(2)).catch_up()

        assert processor.seen == [1]

    def test_unreadable_checkpoint_counts_against_budget(self, source, checkpoints):
        checkpoints.fail_loads = 10

        with pytest.raises(CheckpointReadError):
            make_engine(source, checkpoints, RecordingProcessor(), policy=self.policy(0)).catch_up()

    def test_no_budget_waits_for_source(self, source, checkpoints, observer):
        source.extend("issuer", 1)
        source.fail_backlog = 4

        make_engine(source, checkpoints, RecordingProcessor(), observer, policy=self.policy(None)).catch_up()

        assert len(observer.of("source_unavailable")) == 4
