"""Tests for the action hash chain."""

import hashlib

import pytest

from zkreduce.zkapp.hashchain import (
    INITIAL,
    Action,
    action_hash,
    advance,
    hash_fields,
    is_pointer,
    replay,
)


class TestAdvance:

    def test_initial_is_well_known(self):
        assert INITIAL == hashlib.sha256(b"zkreduce.actions.empty").hexdigest()
        assert is_pointer(INITIAL)

    def test_deterministic(self):
        assert advance(INITIAL, Action(1)) == advance(INITIAL, Action(1))

    def test_sequence_position_not_committed(self):
        """The pointer depends on the payload and the prefix, not on the stored position."""
        assert advance(INITIAL, Action(1, sequence=0)) == advance(INITIAL, Action(1, sequence=7))

    def test_distinct_payloads_distinct_pointers(self):
        pointers = {advance(INITIAL, Action(v)) for v in range(50)}
        assert len(pointers) == 50

    def test_order_matters(self):
        a = replay(INITIAL, [Action(1), Action(2)])
        b = replay(INITIAL, [Action(2), Action(1)])
        assert a != b

    def test_bool_and_int_tagged_apart(self):
        assert advance(INITIAL, Action(True)) != advance(INITIAL, Action(1))
        assert advance(INITIAL, Action(False)) != advance(INITIAL, Action(0))

    def test_replay_matches_manual_advance(self):
        actions = [Action(1), Action(1), Action(1)]
        manual = advance(advance(advance(INITIAL, actions[0]), actions[1]), actions[2])
        assert replay(INITIAL, actions) == manual

    def test_replay_empty_is_identity(self):
        assert replay(INITIAL, []) == INITIAL

    def test_rejects_non_pointer(self):
        with pytest.raises(ValueError):
            advance("not-a-pointer", Action(1))
        with pytest.raises(ValueError):
            advance(INITIAL.upper(), Action(1))


class TestAction:

    def test_rejects_non_numeric_payload(self):
        with pytest.raises(TypeError):
            Action("1")

    def test_value_reduced_into_field(self):
        assert Action(True).value == 1
        assert Action(False).value == 0
        assert Action(5).value == 5

    def test_action_hash_is_32_bytes(self):
        assert len(action_hash(Action(3))) == 32

    def test_actions_are_immutable(self):
        action = Action(1)
        with pytest.raises(AttributeError):
            action.payload = 2


class TestHashFields:

    def test_stable(self):
        assert hash_fields(1111) == hash_fields(1111)

    def test_distinguishes_inputs(self):
        assert hash_fields(1111) != hash_fields(1112)
        assert hash_fields(1, 2) != hash_fields(2, 1)
