"""
zkApp Error Taxonomy and Hardening Primitives

Every failure in the zkApp layer is one of the exception types below, and
every transition follows the same discipline:

1. Validate all preconditions
2. Verify all proofs and signatures
3. Mutate state in a single atomic commit

Error classes:
    StaleCheckpointError          optimistic-concurrency violation (retryable)
    UnknownPointerError           log pointer matches no known prefix (fatal)
    ProofVerificationError        certificate does not verify (fatal)
    SignatureMismatchError        signature does not match identity (fatal)
    UnauthorizedTransitionError   caller not entitled to the transition (fatal)
    ConstraintViolation           prover refused an unsatisfied circuit
    InvariantViolation            ledger/state invariant violated
"""

from __future__ import annotations

import hmac
import threading
from decimal import Decimal
from typing import Any, Optional, Union


# =============================================================================
# ERROR TYPES
# =============================================================================

class ZkReduceError(Exception):
    """Base exception for the zkApp layer."""

    retryable: bool = False


class StaleCheckpointError(ZkReduceError):
    """The checkpoint read by a transition is no longer the committed one."""

    retryable = True

    def __init__(self, field: str, expected: Any, actual: Any):
        self.field = field
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Precondition on '{field}' failed: expected {expected!r}, committed {actual!r}"
        )


class UnknownPointerError(ZkReduceError):
    """Chain pointer does not correspond to any retained log prefix."""

    def __init__(self, pointer: str, reason: str = "never issued"):
        self.pointer = pointer
        self.reason = reason
        super().__init__(f"Unknown chain pointer {pointer[:16]}... ({reason})")


class ProofVerificationError(ZkReduceError):
    """A proof certificate failed to verify."""
    pass


class SignatureMismatchError(ZkReduceError):
    """A signature does not verify against the claimed identity."""
    pass


class UnauthorizedTransitionError(ZkReduceError):
    """Caller identity is not entitled to perform the transition."""
    pass


class ConstraintViolation(ZkReduceError):
    """A circuit constraint is not satisfied by the witness."""

    def __init__(self, circuit_id: str, message: str):
        self.circuit_id = circuit_id
        self.message = message
        super().__init__(f"{circuit_id}: {message}")


class InvariantViolation(ZkReduceError):
    """State invariant violated."""
    pass


class ArtifactFormatError(ZkReduceError):
    """Persisted proof artifact does not match its schema."""

    def __init__(self, errors: list):
        self.errors = errors
        super().__init__("Invalid proof artifact: " + "; ".join(errors))


# =============================================================================
# CRYPTO UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison of byte strings."""
        return hmac.compare_digest(a, b)


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value


# =============================================================================
# STATE INVARIANTS
# =============================================================================

Number = Union[int, Decimal]


class InvariantChecker:
    """Enforces ledger and checkpoint invariants."""

    @staticmethod
    def check_balance_sufficient(
        available: Number,
        required: Number,
        field_name: str = "balance",
    ) -> None:
        """Ensure sufficient balance for operation."""
        if available < required:
            raise InvariantViolation(
                f"Insufficient {field_name}: have {available}, need {required}"
            )

    @staticmethod
    def check_uint64(field_name: str, value: Optional[int]) -> None:
        if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value < 2 ** 64:
            raise InvariantViolation(f"{field_name} is not a UInt64: {value!r}")
