"""
Rollup reducer.

Folds the actions dispatched since the committed checkpoint into a new
checkpoint. Two reduction policies are provided:

    ADDITIVE   state + value                     (integer actions)
    CLAMPED    +1 on True, -1 on False, floor 0  (boolean actions)

CLAMPED is not commutative: a decrement at zero is dropped, so the result
depends on the interleaving. Actions are therefore always folded one at a
time in log order.

Commit protocol:
    1. read the committed (state, pointer) pair and compare it to the
       caller's checkpoint                       -> StaleCheckpointError
    2. fold actions_since(pointer)               -> UnknownPointerError
    3. write both fields in one transaction whose preconditions are
       re-checked at commit                      -> StaleCheckpointError
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from zkreduce.zkapp.actionlog import ActionLog
from zkreduce.zkapp.events import CheckpointAdvanced, EventBus
from zkreduce.zkapp.hardening import InvariantViolation, StaleCheckpointError
from zkreduce.zkapp.hashchain import Action, ChainPointer
from zkreduce.zkapp.ledger import AccountState
from zkreduce.zkapp.observability import ZkLayer, get_logger, get_tracer

logger = get_logger("reducer", ZkLayer.REDUCER)


@dataclass(frozen=True)
class Checkpoint:
    """Committed pair: state_value == fold(actions up to chain_pointer)."""
    state_value: int
    chain_pointer: ChainPointer


@dataclass(frozen=True)
class ReductionPolicy:
    """A named left-fold combining function."""
    name: str
    combine: Callable[[int, Action], int]
    payload_type: type
    initial: int = 0

    def check(self, action: Action) -> None:
        if type(action.payload) is not self.payload_type:
            raise InvariantViolation(
                f"{self.name} policy expects {self.payload_type.__name__} actions, "
                f"got {type(action.payload).__name__} at sequence {action.sequence}"
            )


def _additive(state: int, action: Action) -> int:
    return state + action.payload


def _clamped(state: int, action: Action) -> int:
    if action.payload:
        return state + 1
    return state if state == 0 else state - 1


ADDITIVE = ReductionPolicy(name="additive", combine=_additive, payload_type=int)
CLAMPED = ReductionPolicy(name="clamped", combine=_clamped, payload_type=bool)

POLICIES = {p.name: p for p in (ADDITIVE, CLAMPED)}


def get_policy(name: str) -> ReductionPolicy:
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown reduction policy '{name}'; choose from {sorted(POLICIES)}") from None


def reduce(actions: Iterable[Action], policy: ReductionPolicy, state: Optional[int] = None) -> int:
    """Left fold of `actions` in the order given."""
    if state is None:
        state = policy.initial
    for action in actions:
        policy.check(action)
        state = policy.combine(state, action)
    return state


def fold_payloads(payloads: Iterable, policy: ReductionPolicy, state: Optional[int] = None) -> int:
    """`reduce` over bare payloads, positions assigned in order."""
    return reduce((Action(p, i) for i, p in enumerate(payloads)), policy, state)


class RollupReducer:
    """
    Folds pending log entries into the checkpoint fields of an account.

    The reducer holds no checkpoint of its own: the committed pair lives in
    `account` under `state_field` / `pointer_field`, and callers pass in the
    checkpoint they read.
    """

    def __init__(
        self,
        account: AccountState,
        log: ActionLog,
        policy: ReductionPolicy,
        state_field: str = "counter",
        pointer_field: str = "actions_hash",
        max_actions: Optional[int] = None,
        bus: Optional[EventBus] = None,
    ):
        if max_actions is None:
            from zkreduce.zkapp.config import get_config
            max_actions = get_config().reducer.max_actions_per_rollup.get()
        self.account = account
        self.log = log
        self.policy = policy
        self.state_field = state_field
        self.pointer_field = pointer_field
        self.max_actions = max_actions
        self._bus = bus

    def committed(self) -> Checkpoint:
        snapshot = self.account.snapshot()
        return Checkpoint(
            state_value=snapshot[self.state_field],
            chain_pointer=snapshot[self.pointer_field],
        )

    def pending(self, checkpoint: Checkpoint) -> int:
        return len(self.log.actions_since(checkpoint.chain_pointer))

    def rollup(self, checkpoint: Checkpoint) -> Checkpoint:
        """Fold actions since `checkpoint` and commit the result."""
        with get_tracer().span("rollup", ZkLayer.REDUCER, policy=self.policy.name) as span:
            with self.account.transaction() as tx:
                tx.assert_precondition(self.state_field, checkpoint.state_value)
                tx.assert_precondition(self.pointer_field, checkpoint.chain_pointer)

                pending = self.log.actions_since(checkpoint.chain_pointer)
                if not pending:
                    span.set_attribute("folded", 0)
                    return checkpoint

                state = checkpoint.state_value
                pointer = checkpoint.chain_pointer
                folded = 0
                end = pending.end
                if self.max_actions:
                    end = min(end, pending.start + self.max_actions)
                for action in pending:
                    if action.sequence >= end:
                        break
                    self.policy.check(action)
                    state = self.policy.combine(state, action)
                    folded += 1
                pointer = self.log.pointer_at(pending.start + folded)

                tx.write(self.state_field, state)
                tx.write(self.pointer_field, pointer)

                new = Checkpoint(state_value=state, chain_pointer=pointer)
                tx.after_commit(lambda: self._committed(new, folded))
            span.set_attribute("folded", folded)
        return new

    def _committed(self, checkpoint: Checkpoint, folded: int) -> None:
        logger.info(
            "checkpoint advanced",
            operation="rollup",
            policy=self.policy.name,
            folded=folded,
            state_value=checkpoint.state_value,
            pointer=checkpoint.chain_pointer,
        )
        if self._bus:
            self._bus.publish(CheckpointAdvanced(
                contract=self.account.address,
                policy=self.policy.name,
                state_value=checkpoint.state_value,
                chain_pointer=checkpoint.chain_pointer,
                folded=folded,
            ))

    def rollup_with_retry(self, attempts: Optional[int] = None) -> Checkpoint:
        """Rollup from freshly read state, retrying only on StaleCheckpointError."""
        if attempts is None:
            from zkreduce.zkapp.config import get_config
            attempts = get_config().reducer.retry_attempts.get()
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")
        attempt = 1
        while True:
            try:
                return self.rollup(self.committed())
            except StaleCheckpointError as e:
                if attempt >= attempts:
                    raise
                logger.warning("stale checkpoint, retrying", attempt=attempt, field=e.field)
                attempt += 1
