"""
Ledger collaborators for zkApp contracts.

    AccountState   named, versioned on-chain fields of one contract account
    Transaction    single-writer commit unit with optimistic preconditions
    TokenLedger    balances per (token_id, address); mint / burn / transfer
    Network        block height, timestamps, native accounts and delegation

A transition reads committed fields, asserts preconditions on what it read,
stages writes, token operations and log appends, and commits. `commit()`
re-checks every precondition under the account lock; if any committed value
moved, the whole transaction is discarded with StaleCheckpointError and no
staged effect is applied.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from zkreduce.zkapp.hardening import (
    AtomicCounter,
    InvariantChecker,
    InvariantViolation,
    StaleCheckpointError,
    ZkReduceError,
)
from zkreduce.zkapp.hashchain import Action
from zkreduce.zkapp.observability import ZkLayer, get_logger

if TYPE_CHECKING:
    from zkreduce.zkapp.actionlog import ActionLog

logger = get_logger("ledger", ZkLayer.LEDGER)

NATIVE_TOKEN = "native"


def derive_token_id(owner: str) -> str:
    """Token id of the custom token owned by contract `owner`."""
    return hashlib.sha256(b"zkreduce.token:" + owner.encode()).hexdigest()


# =============================================================================
# TOKEN LEDGER
# =============================================================================

@dataclass(frozen=True)
class TokenOp:
    """A staged balance change."""
    kind: str  # mint, burn, transfer
    token_id: str
    amount: int
    address: str = ""
    receiver: str = ""


class TokenLedger:
    """Balances per (token_id, address). Batches apply all-or-nothing."""

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = {}
        self._accounts: Set[Tuple[str, str]] = set()
        self._lock = threading.RLock()

    def balance_of(self, address: str, token_id: str = NATIVE_TOKEN) -> int:
        with self._lock:
            return self._balances.get((token_id, address), 0)

    def has_account(self, address: str, token_id: str = NATIVE_TOKEN) -> bool:
        with self._lock:
            return (token_id, address) in self._accounts

    def mint(self, address: str, amount: int, token_id: str = NATIVE_TOKEN) -> int:
        self.apply([TokenOp("mint", token_id, amount, address=address)])
        return self.balance_of(address, token_id)

    def burn(self, address: str, amount: int, token_id: str = NATIVE_TOKEN) -> int:
        self.apply([TokenOp("burn", token_id, amount, address=address)])
        return self.balance_of(address, token_id)

    def transfer(self, sender: str, receiver: str, amount: int, token_id: str = NATIVE_TOKEN) -> None:
        self.apply([TokenOp("transfer", token_id, amount, address=sender, receiver=receiver)])

    def apply(self, ops: Iterable[TokenOp]) -> None:
        ops = list(ops)
        with self._lock:
            shadow: Dict[Tuple[str, str], int] = {}

            def bal(key: Tuple[str, str]) -> int:
                return shadow.get(key, self._balances.get(key, 0))

            for op in ops:
                InvariantChecker.check_uint64("amount", op.amount)
                src = (op.token_id, op.address)
                if op.kind == "mint":
                    shadow[src] = bal(src) + op.amount
                elif op.kind in ("burn", "transfer"):
                    InvariantChecker.check_balance_sufficient(bal(src), op.amount)
                    shadow[src] = bal(src) - op.amount
                    if op.kind == "transfer":
                        dst = (op.token_id, op.receiver)
                        shadow[dst] = bal(dst) + op.amount
                else:
                    raise InvariantViolation(f"Unknown token operation: {op.kind}")

            for key, value in shadow.items():
                InvariantChecker.check_uint64("balance", value)

            self._balances.update(shadow)
            self._accounts.update(shadow.keys())

        for op in ops:
            logger.debug("token op applied", kind=op.kind, token_id=op.token_id, amount=op.amount)


# =============================================================================
# NETWORK
# =============================================================================

class Network:
    """Local chain: block height, timestamp, native accounts and delegation."""

    def __init__(self, tokens: Optional[TokenLedger] = None, block_height: int = 0):
        self.tokens = tokens or TokenLedger()
        self._block_height = block_height
        self._genesis_time = int(time.time() * 1000)
        self._delegates: Dict[str, str] = {}
        self._contracts: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def block_height(self) -> int:
        with self._lock:
            return self._block_height

    @property
    def timestamp(self) -> int:
        with self._lock:
            return self._genesis_time + self._block_height * 180_000

    def advance_block(self, n: int = 1) -> int:
        with self._lock:
            self._block_height += n
            return self._block_height

    def create_account(self, address: str, balance: int = 0) -> None:
        self.tokens.mint(address, balance)

    def is_new(self, address: str) -> bool:
        with self._lock:
            delegated = address in self._delegates
        return not delegated and not self.tokens.has_account(address)

    def delegate_of(self, address: str) -> str:
        """Accounts delegate to themselves until told otherwise."""
        with self._lock:
            return self._delegates.get(address, address)

    def set_delegate(self, address: str, delegate: str) -> None:
        with self._lock:
            self._delegates[address] = delegate

    def register(self, address: str, contract: Any) -> None:
        with self._lock:
            self._contracts[address] = contract

    def lookup(self, address: str) -> Any:
        """Contract deployed at `address`; KeyError when there is none."""
        with self._lock:
            return self._contracts[address]


# =============================================================================
# ACCOUNT STATE
# =============================================================================

class AccountState:
    """
    Committed on-chain fields of a contract account.

    Every committed write bumps the field's version. Fields must be declared
    up front; reading or writing an undeclared field is an error.
    """

    def __init__(self, address: str, fields: Dict[str, Any], tokens: Optional[TokenLedger] = None):
        self.address = address
        self.tokens = tokens or TokenLedger()
        self._fields: Dict[str, Any] = dict(fields)
        self._versions: Dict[str, int] = {name: 0 for name in fields}
        self._version_counter = AtomicCounter(0)
        self._lock = threading.RLock()

    def _check_field(self, name: str) -> None:
        if name not in self._fields:
            raise InvariantViolation(f"Unknown state field '{name}' on {self.address}")

    def read(self, name: str) -> Any:
        with self._lock:
            self._check_field(name)
            return self._fields[name]

    def version(self, name: str) -> int:
        with self._lock:
            self._check_field(name)
            return self._versions[name]

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._fields)

    def assert_precondition(self, name: str, expected: Any) -> None:
        with self._lock:
            actual = self.read(name)
            if actual != expected:
                raise StaleCheckpointError(name, expected, actual)

    def transaction(self, sender: str = "") -> "Transaction":
        return Transaction(self, sender)

    def _apply(self, writes: Dict[str, Any]) -> None:
        for name, value in writes.items():
            self._fields[name] = value
            self._versions[name] = self._version_counter.increment()


class TransactionClosed(ZkReduceError):
    """Transaction was already committed or discarded."""
    pass


class Transaction:
    """
    Single-writer commit unit.

    Usage:
        with account.transaction(sender) as tx:
            counter = tx.read("counter")
            tx.assert_precondition("counter", counter)
            tx.write("counter", counter + 1)

    Leaving the block normally commits; an exception discards everything.
    """

    def __init__(self, account: AccountState, sender: str = ""):
        self.account = account
        self.sender = sender
        self._preconditions: List[Tuple[str, Any]] = []
        self._writes: Dict[str, Any] = {}
        self._token_ops: List[TokenOp] = []
        self._dispatches: List[Tuple["ActionLog", list]] = []
        self._after_commit: List[Callable[[], None]] = []
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransactionClosed("transaction already closed")

    def read(self, name: str) -> Any:
        self._ensure_open()
        if name in self._writes:
            return self._writes[name]
        return self.account.read(name)

    def assert_precondition(self, name: str, expected: Any) -> None:
        """Check now and again at commit time."""
        self._ensure_open()
        self.account.assert_precondition(name, expected)
        self._preconditions.append((name, expected))

    def write(self, name: str, value: Any) -> None:
        self._ensure_open()
        self.account._check_field(name)
        self._writes[name] = value

    def token(self, op: TokenOp) -> None:
        self._ensure_open()
        self._token_ops.append(op)

    def dispatch(self, log: "ActionLog", payload: Any) -> None:
        self._ensure_open()
        # Validated when staged; commit must not fail after writes apply.
        Action(payload=payload)
        for staged_log, payloads in self._dispatches:
            if staged_log is log:
                payloads.append(payload)
                break
        else:
            self._dispatches.append((log, [payload]))

    def after_commit(self, callback: Callable[[], None]) -> None:
        self._ensure_open()
        self._after_commit.append(callback)

    def commit(self) -> None:
        self._ensure_open()
        account = self.account
        with account._lock:
            try:
                for name, expected in self._preconditions:
                    account.assert_precondition(name, expected)
                if self._token_ops:
                    account.tokens.apply(self._token_ops)
                account._apply(self._writes)
                for log, payloads in self._dispatches:
                    log.dispatch_many(payloads)
            finally:
                self._closed = True

        if self._writes:
            logger.debug("transaction committed", account=account.address, fields=sorted(self._writes))
        for callback in self._after_commit:
            callback()

    def discard(self) -> None:
        self._closed = True

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None and not self._closed:
            self.commit()
        else:
            self.discard()
