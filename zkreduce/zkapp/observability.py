"""
Logging, tracing and audit trail for the zkApp layer.

Every module logs through a ZkLogger tagged with its ZkLayer, so a JSON log
line carries the layer, the operation and the active correlation and trace
ids alongside its context. Rollups and proof composition run inside Tracer
spans; privileged contract transitions go to a hash-chained AuditLogger.
"""

from __future__ import annotations

import contextvars
import functools
import hashlib
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from zkreduce.canonical import jcs_canonicalize

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)
span_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "span_id", default=""
)
trace_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "trace_id", default=""
)


class ZkLayer(Enum):
    """zkApp layers for log categorization."""
    ACTIONS = "actions"
    REDUCER = "reducer"
    LEDGER = "ledger"
    ZK = "zk"
    RECURSION = "recursion"
    REWARD = "reward"
    CONTRACT = "contract"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    trace_id: str = ""
    span_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class Span:
    """A unit of traced work with timing and attributes."""
    trace_id: str
    span_id: str
    parent_span_id: str = ""
    name: str = ""
    layer: str = ""
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None
    status: str = "ok"
    attributes: Dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: str, message: str = "") -> None:
        self.status = status
        if message:
            self.attributes["status_message"] = message

    def end(self) -> None:
        self.end_time = time.monotonic()

    @property
    def duration_ms(self) -> float:
        end = self.end_time or time.monotonic()
        return (end - self.start_time) * 1000


class SpanContext:
    """Context manager for spans."""

    def __init__(self, tracer: "Tracer", name: str, layer: ZkLayer, **attributes: Any):
        self.tracer = tracer
        self.name = name
        self.layer = layer
        self.attributes = attributes
        self.span: Optional[Span] = None
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> Span:
        self.span = self.tracer.start_span(self.name, self.layer, **self.attributes)
        self._token = span_id_var.set(self.span.span_id)
        return self.span

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.span:
            if exc_type:
                self.span.set_status("error", str(exc_val))
                self.span.set_attribute("exception_type", exc_type.__name__)
            self.tracer.end_span(self.span)
        if self._token:
            span_id_var.reset(self._token)


class Tracer:
    """Creates spans and hands finished ones to exporters."""

    def __init__(self):
        self._lock = threading.RLock()
        self._exporters: List[Callable[[Span], None]] = []

    def add_exporter(self, exporter: Callable[[Span], None]) -> None:
        with self._lock:
            self._exporters.append(exporter)

    def start_span(self, name: str, layer: ZkLayer, **attributes: Any) -> Span:
        trace_id = trace_id_var.get()
        if not trace_id:
            trace_id = uuid.uuid4().hex
            trace_id_var.set(trace_id)
        return Span(
            trace_id=trace_id,
            span_id=uuid.uuid4().hex[:16],
            parent_span_id=span_id_var.get(),
            name=name,
            layer=layer.value,
            attributes=attributes,
        )

    def end_span(self, span: Span) -> None:
        span.end()
        with self._lock:
            exporters = list(self._exporters)
        for exporter in exporters:
            try:
                exporter(span)
            except Exception:
                # Exporter failures must not break the traced operation.
                logging.getLogger("zkreduce.tracer").exception("span exporter failed")

    def span(self, name: str, layer: ZkLayer, **attributes: Any) -> SpanContext:
        return SpanContext(self, name, layer, **attributes)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                trace_id=trace_id_var.get(),
                span_id=span_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def _make_handler(log_format: str) -> logging.Handler:
    if log_format == "text":
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        return handler
    return StructuredHandler()


class ZkLogger:
    """
    Structured logger for zkApp components.

    Automatically includes correlation IDs, trace context,
    and layer information in all log events.
    """

    def __init__(self, name: str, layer: ZkLayer):
        from zkreduce.zkapp.config import get_config

        obs = get_config().observability
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"zkreduce.{layer.value}.{name}")
        self._logger.setLevel(getattr(logging, obs.log_level.get().upper()))

        root = logging.getLogger("zkreduce")
        if not root.handlers:
            root.addHandler(_make_handler(obs.log_format.get()))

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, exc_info: bool = False, **context: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one if unset."""
    cid = correlation_id_var.get()
    if not cid:
        cid = f"corr-{uuid.uuid4().hex[:12]}"
        correlation_id_var.set(cid)
    return cid


_tracer: Optional[Tracer] = None


def get_tracer() -> Tracer:
    """Get the global tracer instance."""
    global _tracer
    if _tracer is None:
        _tracer = Tracer()
    return _tracer


def get_logger(name: str, layer: ZkLayer) -> ZkLogger:
    return ZkLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: ZkLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                logger.operation(operation_name, duration_ms, success)
        return wrapper
    return decorator


# =============================================================================
# AUDIT TRAIL
# =============================================================================

AUDIT_GENESIS = "0" * 64


@dataclass
class AuditEvent:
    """Audit record for a privileged transition."""
    event_id: str
    timestamp: str
    actor: str
    action: str
    resource: str
    outcome: str  # success, denied
    correlation_id: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = AUDIT_GENESIS
    event_hash: str = ""

    def compute_hash(self) -> str:
        body = asdict(self)
        body.pop("event_hash")
        return hashlib.sha256(jcs_canonicalize(body)).hexdigest()


class AuditLogger:
    """
    Tamper-evident audit trail.

    Each event commits to its predecessor's hash; `verify_chain` detects
    edits and deletions.
    """

    def __init__(self, logger: Optional[ZkLogger] = None):
        self._logger = logger
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def log(
        self,
        actor: str,
        action: str,
        resource: str,
        outcome: str,
        **details: Any,
    ) -> AuditEvent:
        with self._lock:
            previous = self._events[-1].event_hash if self._events else AUDIT_GENESIS
            event = AuditEvent(
                event_id=uuid.uuid4().hex,
                timestamp=datetime.now(timezone.utc).isoformat(),
                actor=actor,
                action=action,
                resource=resource,
                outcome=outcome,
                correlation_id=get_correlation_id(),
                details=details,
                previous_hash=previous,
            )
            event.event_hash = event.compute_hash()
            self._events.append(event)

        if self._logger:
            self._logger.info(
                f"AUDIT: {action} on {resource} -> {outcome}",
                operation="audit",
                actor=actor,
                event_hash=event.event_hash,
            )
        return event

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """Return (valid, index of first broken event)."""
        with self._lock:
            previous = AUDIT_GENESIS
            for i, event in enumerate(self._events):
                if event.previous_hash != previous or event.compute_hash() != event.event_hash:
                    return (False, i)
                previous = event.event_hash
        return (True, None)

    def events(self, actor: Optional[str] = None, action: Optional[str] = None) -> List[AuditEvent]:
        with self._lock:
            out = list(self._events)
        if actor:
            out = [e for e in out if e.actor == actor]
        if action:
            out = [e for e in out if e.action == action]
        return out
