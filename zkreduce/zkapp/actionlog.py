"""
Append-only action log.

Entries live in an arena (a list plus an offset) and are addressed by
absolute position. Each position is paired with the chain pointer that
summarizes every entry before it:

    position 0      -> INITIAL
    position n + 1  -> advance(pointer(n), entry(n))

`actions_since(p)` resolves `p` to its position and returns the entries
after it. Pointers are recomputed values, never references into the arena,
so compaction only has to forget the positions it drops.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterator, List, Optional

from zkreduce.zkapp.events import ActionDispatched, EventBus
from zkreduce.zkapp.hardening import UnknownPointerError
from zkreduce.zkapp.hashchain import INITIAL, Action, ChainPointer, Payload, advance
from zkreduce.zkapp.observability import ZkLayer, get_logger

logger = get_logger("actionlog", ZkLayer.ACTIONS)


class ActionSequence:
    """
    Ordered, finite, restartable view of log entries `[start, end)`.

    The end is fixed when the view is created; entries dispatched later are
    not part of it. Iteration reads the arena lazily, so a view that outlives
    a compaction of its range fails with UnknownPointerError.
    """

    def __init__(self, log: "ActionLog", start: int, end: int, pointer: ChainPointer):
        self._log = log
        self.start = start
        self.end = end
        self.pointer = pointer

    def __iter__(self) -> Iterator[Action]:
        for position in range(self.start, self.end):
            yield self._log._entry(position, self.pointer)

    def __len__(self) -> int:
        return self.end - self.start

    def __bool__(self) -> bool:
        return self.end > self.start

    @property
    def successor(self) -> ChainPointer:
        """Pointer after the last action in this view."""
        return self._log.pointer_at(self.end)

    def __repr__(self) -> str:
        return f"ActionSequence(start={self.start}, end={self.end})"


class ActionLog:
    """
    Hash-chained append-only log of dispatched actions.

    `dispatch` is the only mutation besides explicit `compact`; it is
    linearized by an internal lock so concurrent dispatchers get a total
    order, and once appended an entry's position never changes.
    """

    def __init__(self, bus: Optional[EventBus] = None, contract: str = ""):
        self._entries: List[Action] = []
        self._offset = 0
        self._tail: ChainPointer = INITIAL
        self._index: Dict[ChainPointer, int] = {INITIAL: 0}
        self._positions: Dict[int, ChainPointer] = {0: INITIAL}
        self._lock = threading.RLock()
        self._bus = bus
        self._contract = contract

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def dispatch(self, payload: Payload) -> ChainPointer:
        """Append a payload; returns the new tail pointer."""
        return self.dispatch_many([payload])

    def dispatch_many(self, payloads: List[Payload]) -> ChainPointer:
        """Append several payloads contiguously, all or nothing."""
        with self._lock:
            position = self._offset + len(self._entries)
            pointer = self._tail
            staged = []
            for payload in payloads:
                action = Action(payload=payload, sequence=position)
                pointer = advance(pointer, action)
                position += 1
                staged.append((action, pointer, position))

            for action, new_pointer, new_position in staged:
                self._entries.append(action)
                self._index[new_pointer] = new_position
                self._positions[new_position] = new_pointer
            self._tail = pointer

        for action, new_pointer, _ in staged:
            logger.debug("action dispatched", sequence=action.sequence, pointer=new_pointer)
            if self._bus:
                self._bus.publish(ActionDispatched(
                    contract=self._contract,
                    sequence=action.sequence,
                    payload_value=action.payload,
                    chain_pointer=new_pointer,
                ))
        return pointer

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    @property
    def tail(self) -> ChainPointer:
        with self._lock:
            return self._tail

    def __len__(self) -> int:
        """Absolute number of actions ever appended (compacted ones included)."""
        with self._lock:
            return self._offset + len(self._entries)

    def contains(self, pointer: ChainPointer) -> bool:
        with self._lock:
            return pointer in self._index

    def position_of(self, pointer: ChainPointer) -> int:
        with self._lock:
            if pointer in self._index:
                return self._index[pointer]
            if self._offset:
                raise UnknownPointerError(pointer, "never issued or compacted")
            raise UnknownPointerError(pointer)

    def pointer_at(self, position: int) -> ChainPointer:
        with self._lock:
            if position not in self._positions:
                raise UnknownPointerError(f"position:{position}", "no retained pointer at position")
            return self._positions[position]

    def actions_since(self, pointer: ChainPointer) -> ActionSequence:
        """Actions appended after the prefix that `pointer` commits to."""
        with self._lock:
            start = self.position_of(pointer)
            end = self._offset + len(self._entries)
        return ActionSequence(self, start, end, pointer)

    def _entry(self, position: int, requested: ChainPointer) -> Action:
        with self._lock:
            if position < self._offset:
                raise UnknownPointerError(requested, "compacted")
            return self._entries[position - self._offset]

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    def compact(self, pointer: ChainPointer) -> int:
        """
        Drop entries before the position of `pointer`.

        Pointers strictly before it become unknown. Returns the number of
        entries dropped.
        """
        with self._lock:
            position = self.position_of(pointer)
            dropped = position - self._offset
            if dropped <= 0:
                return 0
            del self._entries[:dropped]
            for pos in range(self._offset, position):
                old = self._positions.pop(pos)
                del self._index[old]
            self._offset = position

        logger.info("action log compacted", dropped=dropped, offset=position)
        return dropped
