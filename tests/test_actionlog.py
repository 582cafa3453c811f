"""Tests for the append-only action log."""

import threading

import pytest

from zkreduce.zkapp.actionlog import ActionLog
from zkreduce.zkapp.events import ActionDispatched, EventBus
from zkreduce.zkapp.hardening import UnknownPointerError
from zkreduce.zkapp.hashchain import INITIAL, Action, advance, replay


class TestDispatch:

    def test_empty_log(self):
        log = ActionLog()
        assert log.tail == INITIAL
        assert len(log) == 0
        assert list(log.actions_since(INITIAL)) == []

    def test_dispatch_advances_tail(self):
        log = ActionLog()
        pointer = log.dispatch(5)
        assert pointer == advance(INITIAL, Action(5))
        assert log.tail == pointer
        assert len(log) == 1

    def test_dispatch_many_is_contiguous(self):
        log = ActionLog()
        log.dispatch_many([1, 2, 3])
        assert [a.payload for a in log.actions_since(INITIAL)] == [1, 2, 3]
        assert [a.sequence for a in log.actions_since(INITIAL)] == [0, 1, 2]
        assert log.tail == replay(INITIAL, [Action(1), Action(2), Action(3)])

    def test_dispatch_many_all_or_nothing(self):
        log = ActionLog()
        log.dispatch(1)
        with pytest.raises(TypeError):
            log.dispatch_many([2, "three"])
        assert len(log) == 1

    def test_publishes_events(self):
        bus = EventBus()
        seen = []
        bus.subscribe(ActionDispatched)(seen.append)
        log = ActionLog(bus=bus, contract="zk-main")
        log.dispatch_many([1, 2])
        assert [e.sequence for e in seen] == [0, 1]
        assert seen[-1].chain_pointer == log.tail
        assert seen[0].contract == "zk-main"

    def test_concurrent_dispatch_total_order(self):
        log = ActionLog()

        def worker():
            for _ in range(50):
                log.dispatch(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        actions = list(log.actions_since(INITIAL))
        assert len(actions) == 200
        assert [a.sequence for a in actions] == list(range(200))
        assert log.tail == replay(INITIAL, actions)


class TestActionsSince:

    def test_suffix_after_pointer(self):
        log = ActionLog()
        p1 = log.dispatch(1)
        log.dispatch(2)
        log.dispatch(3)
        assert [a.payload for a in log.actions_since(p1)] == [2, 3]

    def test_tail_has_no_pending(self):
        log = ActionLog()
        log.dispatch_many([1, 2])
        pending = log.actions_since(log.tail)
        assert len(pending) == 0
        assert not pending

    def test_sequence_is_restartable(self):
        log = ActionLog()
        log.dispatch_many([1, 2, 3])
        pending = log.actions_since(INITIAL)
        assert list(pending) == list(pending)

    def test_end_fixed_at_creation(self):
        log = ActionLog()
        log.dispatch(1)
        pending = log.actions_since(INITIAL)
        log.dispatch(2)
        assert [a.payload for a in pending] == [1]
        assert pending.successor == advance(INITIAL, Action(1))

    def test_unknown_pointer(self):
        log = ActionLog()
        log.dispatch(1)
        with pytest.raises(UnknownPointerError) as exc:
            log.actions_since("ab" * 32)
        assert exc.value.reason == "never issued"

    def test_pointer_from_other_log_is_unknown(self):
        a, b = ActionLog(), ActionLog()
        a.dispatch(1)
        b.dispatch(2)
        with pytest.raises(UnknownPointerError):
            a.actions_since(b.tail)


class TestCompaction:

    def test_compact_drops_prefix(self):
        log = ActionLog()
        log.dispatch(1)
        p2 = log.dispatch(2)
        log.dispatch(3)

        assert log.compact(p2) == 2
        assert len(log) == 3
        assert log.contains(p2)
        assert not log.contains(INITIAL)
        assert [a.payload for a in log.actions_since(p2)] == [3]

    def test_compacted_pointer_is_reported(self):
        log = ActionLog()
        p1 = log.dispatch(1)
        p2 = log.dispatch(2)
        log.compact(p2)
        with pytest.raises(UnknownPointerError) as exc:
            log.actions_since(p1)
        assert exc.value.reason == "never issued or compacted"
        with pytest.raises(UnknownPointerError):
            log.actions_since(INITIAL)

    def test_compaction_forgets_dropped_pointers(self):
        log = ActionLog()
        log.dispatch_many(list(range(50)))
        log.compact(log.tail)
        assert len(log._index) == 1
        assert len(log._positions) == 1
        with pytest.raises(UnknownPointerError):
            log.pointer_at(10)

    def test_compact_is_idempotent(self):
        log = ActionLog()
        p = log.dispatch(1)
        assert log.compact(p) == 1
        assert log.compact(p) == 0

    def test_appends_after_compaction_keep_chain(self):
        log = ActionLog()
        p = log.dispatch(1)
        log.compact(p)
        log.dispatch(2)
        assert log.tail == replay(INITIAL, [Action(1), Action(2)])
        assert [a.sequence for a in log.actions_since(p)] == [1]

    def test_stale_view_fails_after_compaction(self):
        log = ActionLog()
        log.dispatch_many([1, 2])
        view = log.actions_since(INITIAL)
        log.compact(log.tail)
        with pytest.raises(UnknownPointerError):
            list(view)
