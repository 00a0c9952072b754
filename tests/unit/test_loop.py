"""Unit tests for the replication loop."""

import logging
import os
import signal
from unittest.mock import Mock

import pytest
from bson import Timestamp
from pymongo.errors import ExecutionTimeout

from mongosync.exceptions import SourceStreamError
from mongosync.models import ApplyOutcome, ChangeBatch, ChangeEvent
from mongosync.replication import ChangeApplier, DatabaseFilter, LoopState, ReplicationLoop
from helpers import make_change

START = Timestamp(1000, 1)


def batch(*changes, token="tok"):
    return ChangeBatch(events=[ChangeEvent.from_change(c) for c in changes], resume_token={"_data": token})


class ScriptedStream:
    """Hands out prepared batches, then calls ``on_exhausted`` for every further wait."""

    def __init__(self, batches, on_exhausted):
        self.batches = list(batches)
        self.on_exhausted = on_exhausted
        self.closed = False

    def next_batch(self):
        if self.batches:
            return self.batches.pop(0)
        return self.on_exhausted()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.closed = True


def terminated():
    raise SourceStreamError("Change stream terminated: cursor killed")


class ScriptedSource:

    def __init__(self, batches, on_exhausted=terminated):
        self.stream = ScriptedStream(batches, on_exhausted)
        self.opened_with = None

    def open_stream(self, start_at, batch_size):
        self.opened_with = (start_at, batch_size)
        return self.stream


def build_loop(source, target, databases=("sales",), clock=lambda: 1010.0, **applier_kwargs):
    return ReplicationLoop(
        source=source,
        db_filter=DatabaseFilter(databases),
        applier=ChangeApplier(target, **applier_kwargs),
        batch_size=2000,
        clock=clock
    )


class TestReplicationScenario:

    def test_insert_drop_delete_scenario(self, target, mock_client):
        source = ScriptedSource([batch(
            make_change("insert", "sales", "A", {"x": 1}),
            make_change("insert", "ops", "B", {}),
            make_change("delete", "SALES", "A"),
        )])
        loop = build_loop(source, target)

        with pytest.raises(SourceStreamError):
            loop.run(START)

        assert mock_client["sales"]["docs"].count_documents({}) == 0
        assert "ops" not in mock_client.list_database_names()
        assert "SALES" not in mock_client.list_database_names()
        assert loop.stats.processed == 2
        assert loop.stats.applied == 2
        assert loop.stats.filtered == 1
        assert target.transactions == 2

    def test_redelivered_insert_is_idempotent(self, target, mock_client):
        insert = make_change("insert", "sales", "A", {"x": 1})
        source = ScriptedSource([batch(insert), batch(insert)])
        loop = build_loop(source, target)

        with pytest.raises(SourceStreamError):
            loop.run(START)

        assert list(mock_client["sales"]["docs"].find()) == [{"_id": "A", "x": 1}]
        assert loop.stats.applied == 1
        assert loop.stats.duplicates == 1
        assert loop.stats.failed == 0

    def test_update_then_redelivery(self, target, mock_client):
        update = make_change("update", "sales", "B", {"v": 2})
        source = ScriptedSource([batch(update), batch(update)])

        with pytest.raises(SourceStreamError):
            build_loop(source, target).run(START)

        assert list(mock_client["sales"]["docs"].find()) == [{"_id": "B", "v": 2}]


class TestReplicationLoop:

    def test_opens_stream_at_start(self, target):
        source = ScriptedSource([])
        with pytest.raises(SourceStreamError):
            build_loop(source, target).run(START)
        assert source.opened_with == (START, 2000)

    def test_fatal_state_on_stream_failure(self, target):
        source = ScriptedSource([])
        loop = build_loop(source, target)
        with pytest.raises(SourceStreamError):
            loop.run(START)
        assert loop.state == LoopState.FATAL
        assert source.stream.closed

    def test_stop_returns_to_idle(self, target):
        loop = None

        def stop_when_drained():
            loop.stop()
            return ChangeBatch(events=[])

        source = ScriptedSource([batch(make_change("insert", "sales", "A", {}))], on_exhausted=stop_when_drained)
        loop = build_loop(source, target)
        stats = loop.run(START)

        assert loop.state == LoopState.IDLE
        assert stats.applied == 1
        assert stats.empty_batches == 1
        assert source.stream.closed

    def test_signal_stops_loop(self, target):
        def send_sigterm():
            os.kill(os.getpid(), signal.SIGTERM)
            return ChangeBatch(events=[])

        original = signal.getsignal(signal.SIGTERM)
        loop = build_loop(ScriptedSource([], on_exhausted=send_sigterm), target)
        loop.run(START, handle_signals=True)

        assert loop.state == LoopState.IDLE
        assert signal.getsignal(signal.SIGTERM) == original

    def test_applies_survivors_in_order(self, target):
        applied = []
        applier = Mock()
        applier.apply.side_effect = lambda e: applied.append(e.document_id) or ApplyOutcome.ok()

        loop = ReplicationLoop(
            source=ScriptedSource([]),
            db_filter=DatabaseFilter(["sales", "hr"]),
            applier=applier
        )
        loop.process_batch(batch(
            make_change("insert", "sales", 1, {}),
            make_change("update", "ops", 2, {}),
            make_change("delete", "HR", 3),
            make_change("replace", "sales", 4, {}),
            make_change("insert", "admin", 5, {}),
            make_change("delete", "Sales", 6),
        ))

        assert applied == [1, 3, 4, 6]
        assert loop.stats.processed == 4
        assert loop.stats.filtered == 2

    def test_state_while_applying(self, target):
        states = []
        applier = Mock()
        loop = ReplicationLoop(source=ScriptedSource([]), db_filter=DatabaseFilter(["sales"]), applier=applier)
        applier.apply.side_effect = lambda e: states.append(loop.state) or ApplyOutcome.ok()

        loop.process_batch(batch(make_change("insert", "sales", 1, {})))

        assert states == [LoopState.APPLYING]
        assert loop.state == LoopState.WAITING_FOR_BATCH

    def test_timeout_only_loses_one_event(self):
        target = Mock()
        target.insert.side_effect = [ExecutionTimeout("operation exceeded time limit", 50), None, None]
        source = ScriptedSource([
            batch(make_change("insert", "sales", "A", {}), make_change("insert", "sales", "B", {})),
            batch(make_change("insert", "sales", "C", {})),
        ])
        loop = build_loop(source, target)

        with pytest.raises(SourceStreamError):
            loop.run(START)

        assert target.insert.call_count == 3
        assert loop.stats.failed == 1
        assert loop.stats.applied == 2
        assert loop.stats.processed == 3

    def test_unknown_operation_does_not_halt(self, target, mock_client):
        source = ScriptedSource([batch(
            make_change("drop", "sales", "A"),
            make_change("insert", "sales", "B", {}),
        )])
        loop = build_loop(source, target)

        with pytest.raises(SourceStreamError):
            loop.run(START)

        assert list(mock_client["sales"]["docs"].find()) == [{"_id": "B"}]
        assert loop.stats.processed == 2

    def test_empty_batch_heartbeat(self, target, caplog):
        loop = build_loop(ScriptedSource([]), target)
        with caplog.at_level(logging.INFO, logger="mongosync.replication.loop"):
            loop.process_batch(ChangeBatch(events=[]))

        assert "No changes, skip..." in caplog.text
        assert loop.stats.empty_batches == 1
        assert loop.stats.processed == 0

    def test_progress_line(self, target, caplog):
        loop = build_loop(ScriptedSource([]), target, clock=lambda: 1042.0)
        with caplog.at_level(logging.INFO, logger="mongosync.replication.loop"):
            loop.process_batch(batch(
                make_change("insert", "sales", "A", {}, cluster_seconds=1000),
                make_change("insert", "sales", "B", {}, cluster_seconds=1030),
                token="82FF"
            ))

        assert '42s, 2, Token={"_data": "82FF"}' in caplog.text

    def test_filtered_only_batch_still_reports_progress(self, target, caplog):
        loop = build_loop(ScriptedSource([]), target)
        with caplog.at_level(logging.INFO, logger="mongosync.replication.loop"):
            loop.process_batch(batch(make_change("insert", "ops", "A", {}, cluster_seconds=1000)))

        assert "10s, 0, Token=" in caplog.text
        assert loop.stats.filtered == 1
