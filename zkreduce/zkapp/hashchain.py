"""
Action hash chain.

A chain pointer commits to every action appended up to and including some
position of the log:

    INITIAL        = sha256("zkreduce.actions.empty")
    advance(p, a)  = sha256("zkreduce.actions.cons" || p || sha256("zkreduce.actions.elt" || enc(a)))

`enc` tags the payload type before its 32-byte field encoding so that a
boolean flag and the integer with the same field value never commit to the
same pointer.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable, Union

from zkreduce.canonical import SHA256_RE, fields_to_bytes, to_field

Payload = Union[int, bool]
ChainPointer = str

_EMPTY_DOMAIN = b"zkreduce.actions.empty"
_CONS_DOMAIN = b"zkreduce.actions.cons"
_ELEMENT_DOMAIN = b"zkreduce.actions.elt"
_FIELD_HASH_DOMAIN = b"zkreduce.fields"

_TAG_INT = b"\x00"
_TAG_BOOL = b"\x01"

INITIAL: ChainPointer = hashlib.sha256(_EMPTY_DOMAIN).hexdigest()


@dataclass(frozen=True)
class Action:
    """A dispatched payload and its absolute position in the log."""
    payload: Payload
    sequence: int = 0

    def __post_init__(self):
        if not isinstance(self.payload, (bool, int)):
            raise TypeError(f"Action payload must be int or bool, got {type(self.payload).__name__}")

    @property
    def value(self) -> int:
        return to_field(self.payload)

    def encode(self) -> bytes:
        tag = _TAG_BOOL if isinstance(self.payload, bool) else _TAG_INT
        return tag + fields_to_bytes([self.payload])


def is_pointer(value: object) -> bool:
    return isinstance(value, str) and SHA256_RE.match(value) is not None


def action_hash(action: Action) -> bytes:
    return hashlib.sha256(_ELEMENT_DOMAIN + action.encode()).digest()


def advance(pointer: ChainPointer, action: Action) -> ChainPointer:
    """Successor of `pointer` after appending `action`. Pure and deterministic."""
    if not is_pointer(pointer):
        raise ValueError(f"Not a chain pointer: {pointer!r}")
    return hashlib.sha256(_CONS_DOMAIN + bytes.fromhex(pointer) + action_hash(action)).hexdigest()


def replay(pointer: ChainPointer, actions: Iterable[Action]) -> ChainPointer:
    """Apply `advance` for each action in order."""
    for action in actions:
        pointer = advance(pointer, action)
    return pointer


def hash_fields(*values: int) -> int:
    """Hash a list of field elements to a field element."""
    digest = hashlib.sha256(_FIELD_HASH_DOMAIN + fields_to_bytes(values)).digest()
    return to_field(int.from_bytes(digest, "big"))
