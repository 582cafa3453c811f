"""
zkApp Event Infrastructure

Append-only publication of `{kind, payload}` records for external observers.
Contracts emit events through an `EventBus`; an `EventStore` subscribed to
the bus keeps the per-contract history that `fetch_events` reads back.

Design Principles
─────────────────

    Immutable Events: events are facts about committed transitions. They are
    only published after the transition committed.

    Fire and forget: a failing subscriber never aborts the transition that
    published the event; the failure is counted and reported to `on_error`.

    Ordering: events within a stream keep publication order. Cross-stream
    ordering is not guaranteed.

Usage
─────

    bus = EventBus()

    @bus.subscribe(UpdatedNum)
    def on_update(event):
        print(event.num)

    bus.publish(UpdatedNum(contract="B62...", num=3))
"""

from __future__ import annotations

import hashlib
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type

from zkreduce.canonical import jcs_canonicalize

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events.

    Every event carries the address of the contract (stream) that emitted it.
    """

    contract: str = ""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    block_height: int = 0

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def payload(self) -> Dict[str, Any]:
        """Event-specific fields, without envelope metadata."""
        base = {f for f in Event.__dataclass_fields__}
        return {k: v for k, v in asdict(self).items() if k not in base}

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind
        return data

    def digest(self) -> str:
        return hashlib.sha256(jcs_canonicalize(self.to_dict())).hexdigest()


@dataclass
class DeployedBy(Event):
    """Emitted once when a contract is initialized."""
    deployer: str = ""


@dataclass
class UpdatedNum(Event):
    """Emitted when the contract's `num` field changes."""
    num: int = 0


@dataclass
class ActionDispatched(Event):
    """Emitted when an action is appended to the log."""
    sequence: int = 0
    payload_value: Any = None
    chain_pointer: str = ""


@dataclass
class CheckpointAdvanced(Event):
    """Emitted when a rollup commits a new checkpoint."""
    policy: str = ""
    state_value: int = 0
    chain_pointer: str = ""
    folded: int = 0


@dataclass
class RewardMinted(Event):
    """Emitted when a token is minted as a reward."""
    receiver: str = ""
    amount: int = 0
    proof_digest: str = ""


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.kind}: {cause}")


class EventBus:
    """
    In-memory synchronous pub/sub bus.

    Thread-safe for concurrent publishing and subscribing. Handlers run in
    priority order outside the bus lock.
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
    ) -> Callable[[EventHandler], EventHandler]:
        """Decorator to subscribe a handler to event types (all events when none given)."""
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        with self._lock:
            self._published_count += 1
            handlers = [
                r.handler for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
            ]

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                with self._lock:
                    self._error_count += 1
                error = EventHandlerError(event, handler, e)
                logger.warning("%s", error)
                if self._on_error:
                    self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT STORE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int


class EventStore:
    """
    Append-only event store, one stream per contract address.

    Attach it to a bus with `store.attach(bus)` to record every published
    event under `event.contract`.
    """

    def __init__(self):
        self._events: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._lock = threading.RLock()

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(priority=100)(self.record)

    def record(self, event: Event) -> EventRecord:
        with self._lock:
            stream = self._streams.setdefault(event.contract, [])
            rec = EventRecord(
                sequence_number=len(self._events) + 1,
                event=event,
                stream_id=event.contract,
                version=len(stream) + 1,
            )
            self._events.append(rec)
            stream.append(rec)
            return rec

    def read_stream(
        self,
        stream_id: str,
        kind: Optional[str] = None,
        from_version: int = 0,
    ) -> List[Event]:
        with self._lock:
            records = self._streams.get(stream_id, [])[from_version:]
        events = [r.event for r in records]
        if kind:
            events = [e for e in events if e.kind == kind]
        return events

    def read_all(self, from_position: int = 0, max_count: int = 1000) -> List[EventRecord]:
        with self._lock:
            return self._events[from_position:from_position + max_count]

    @property
    def total_events(self) -> int:
        with self._lock:
            return len(self._events)
