"""
Main zkApp contract.

Committed fields:

    num                 starts at 1; bumped by veteran/regular updates
    block_height        height at deployment
    deployer            identity that initialized the contract
    reward_token_addr   address of the RewardToken contract ("" until set)
    counter             checkpoint state value
    actions_hash        checkpoint chain pointer
    initialized         set once by deploy

The counter is never written by the dispatch methods. They only append to
the action log; `rollup` folds the log into (counter, actions_hash) under the
contract's reduction policy. With ADDITIVE the actions are integers (1 and 2),
with CLAMPED they are flags (True increments, False decrements to a floor of
zero).
"""

from __future__ import annotations

from typing import Any, List, Optional

from zkreduce.zkapp.actionlog import ActionLog
from zkreduce.zkapp.events import DeployedBy, Event, EventBus, EventStore, UpdatedNum
from zkreduce.zkapp.hardening import InvariantViolation, UnauthorizedTransitionError, ZkReduceError
from zkreduce.zkapp.hashchain import INITIAL, Payload, hash_fields
from zkreduce.zkapp.ledger import NATIVE_TOKEN, AccountState, Network, TokenOp, derive_token_id
from zkreduce.zkapp.observability import AuditLogger, ZkLayer, get_logger, get_tracer
from zkreduce.zkapp.reducer import ADDITIVE, CLAMPED, Checkpoint, ReductionPolicy, RollupReducer

logger = get_logger("contract", ZkLayer.CONTRACT)


class MainContract:
    """The counter/reducer zkApp together with its token and reward hooks."""

    def __init__(
        self,
        address: str,
        network: Network,
        policy: ReductionPolicy = ADDITIVE,
        bus: Optional[EventBus] = None,
        audit: Optional[AuditLogger] = None,
        max_actions: Optional[int] = None,
    ):
        from zkreduce.zkapp.config import get_config

        config = get_config()
        self.address = address
        self.network = network
        self.policy = policy
        self.secret = config.rewards.secret.get()
        self.token_id = derive_token_id(address)

        self.bus = bus or EventBus()
        self.event_store = EventStore()
        self.event_store.attach(self.bus)
        self.audit = audit or AuditLogger(logger)

        self.account = AccountState(
            address,
            {
                "num": 0,
                "block_height": 0,
                "deployer": "",
                "reward_token_addr": "",
                "counter": 0,
                "actions_hash": INITIAL,
                "initialized": False,
            },
            tokens=network.tokens,
        )
        self.log = ActionLog(bus=self.bus, contract=address)
        self.reducer = RollupReducer(
            self.account,
            self.log,
            policy,
            state_field="counter",
            pointer_field="actions_hash",
            max_actions=max_actions,
            bus=self.bus,
        )
        network.register(address, self)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def num(self) -> int:
        return self.account.read("num")

    @property
    def counter(self) -> int:
        return self.account.read("counter")

    @property
    def actions_hash(self) -> str:
        return self.account.read("actions_hash")

    @property
    def deployer(self) -> str:
        return self.account.read("deployer")

    def checkpoint(self) -> Checkpoint:
        return self.reducer.committed()

    def fetch_events(self, kind: Optional[str] = None) -> List[Event]:
        return self.event_store.read_stream(self.address, kind=kind)

    def token_balance(self, address: str) -> int:
        return self.network.tokens.balance_of(address, self.token_id)

    def _require_deployed(self) -> None:
        if not self.account.read("initialized"):
            raise UnauthorizedTransitionError(f"Contract {self.address} is not deployed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def deploy(self, sender: str) -> None:
        """Initialize state once and emit DeployedBy."""
        with self.account.transaction(sender) as tx:
            if tx.read("initialized"):
                raise UnauthorizedTransitionError(f"Contract {self.address} is already initialized")
            tx.assert_precondition("initialized", False)
            height = self.network.block_height
            tx.write("num", 1)
            tx.write("block_height", height)
            tx.write("deployer", sender)
            tx.write("counter", self.policy.initial)
            tx.write("actions_hash", self.log.tail)
            tx.write("initialized", True)
            tx.after_commit(lambda: self.bus.publish(
                DeployedBy(contract=self.address, block_height=height, deployer=sender)
            ))
        self.audit.log(sender, "deploy", self.address, "success")
        logger.info("contract deployed", operation="deploy", deployer=sender, policy=self.policy.name)

    def set_reward_token(self, sender: str, reward_token_address: str) -> None:
        self._require_deployed()
        with self.account.transaction(sender) as tx:
            admin = tx.read("deployer")
            tx.assert_precondition("deployer", admin)
            if sender != admin:
                self.audit.log(sender, "set_reward_token", self.address, "denied")
                raise UnauthorizedTransitionError(f"Only the deployer may set the reward token, not {sender}")
            tx.write("reward_token_addr", reward_token_address)
        self.audit.log(sender, "set_reward_token", self.address, "success", reward_token=reward_token_address)

    # ------------------------------------------------------------------
    # Actions and rollup
    # ------------------------------------------------------------------

    def _dispatch(self, sender: str, payload: Payload) -> None:
        self._require_deployed()
        with self.account.transaction(sender) as tx:
            tx.dispatch(self.log, payload)

    def increment_counter(self, sender: str = "") -> None:
        self._dispatch(sender, 1 if self.policy is ADDITIVE else True)

    def increment_counter_by_2(self, sender: str = "") -> None:
        if self.policy is not ADDITIVE:
            raise InvariantViolation(f"increment_counter_by_2 needs the additive policy, not {self.policy.name}")
        self._dispatch(sender, 2)

    def decrease_counter(self, sender: str = "") -> None:
        if self.policy is not CLAMPED:
            raise InvariantViolation(f"decrease_counter needs the clamped policy, not {self.policy.name}")
        self._dispatch(sender, False)

    def rollup(self, checkpoint: Optional[Checkpoint] = None) -> Checkpoint:
        """Fold pending actions; `checkpoint` defaults to the committed one."""
        self._require_deployed()
        if checkpoint is None:
            checkpoint = self.reducer.committed()
        return self.reducer.rollup(checkpoint)

    def rollup_with_retry(self, attempts: Optional[int] = None) -> Checkpoint:
        self._require_deployed()
        return self.reducer.rollup_with_retry(attempts)

    # ------------------------------------------------------------------
    # num updates
    # ------------------------------------------------------------------

    def _update_num(self, sender: str, delta: int, operation: str) -> int:
        with self.account.transaction(sender) as tx:
            current = tx.read("num")
            tx.assert_precondition("num", current)
            new = current + delta
            tx.write("num", new)
            tx.after_commit(lambda: self.bus.publish(
                UpdatedNum(contract=self.address, block_height=self.network.block_height, num=new)
            ))
        logger.info("num updated", operation=operation, sender=sender, num=new)
        return new

    def veteran_update(self, sender: str) -> int:
        """num += 2 for callers delegating to themselves with enough stake."""
        from zkreduce.zkapp.config import get_config

        self._require_deployed()
        minimum = get_config().network.veteran_min_balance.get()
        if self.network.delegate_of(sender) != sender:
            raise UnauthorizedTransitionError(f"{sender} does not delegate to itself")
        balance = self.network.tokens.balance_of(sender, NATIVE_TOKEN)
        if balance < minimum:
            raise UnauthorizedTransitionError(f"{sender} holds {balance}, veterans need at least {minimum}")
        return self._update_num(sender, 2, "veteran_update")

    def regular_update(self, sender: str) -> int:
        """num += 1 for callers delegating to someone else."""
        self._require_deployed()
        if self.network.delegate_of(sender) == sender:
            raise UnauthorizedTransitionError(f"{sender} delegates to itself")
        return self._update_num(sender, 1, "regular_update")

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def mint_new_tokens(self, sender: str, receiver: str) -> None:
        """
        Mint the contract token to `receiver` and reward `sender` on the
        reward token contract, all in one commit.
        """
        from zkreduce.zkapp.config import get_config

        self._require_deployed()
        rewards = get_config().rewards
        amount = rewards.mint_amount.get()
        with get_tracer().span("mint_new_tokens", ZkLayer.CONTRACT, receiver=receiver):
            with self.account.transaction(sender) as tx:
                reward_addr = tx.read("reward_token_addr")
                tx.assert_precondition("reward_token_addr", reward_addr)
                if not reward_addr:
                    raise UnauthorizedTransitionError("Reward token is not set")
                try:
                    reward_token: Any = self.network.lookup(reward_addr)
                except KeyError:
                    raise UnauthorizedTransitionError(f"No contract deployed at {reward_addr}") from None
                if reward_token.tokens is not self.account.tokens:
                    raise InvariantViolation(f"Reward token {reward_addr} does not share the network ledger")

                tx.token(TokenOp("mint", self.token_id, amount, address=receiver))
                for op in reward_token.mint_ops(sender, hash_fields(self.secret), amount // rewards.reward_divisor.get()):
                    tx.token(op)
        self.audit.log(sender, "mint_new_tokens", self.address, "success", receiver=receiver, amount=amount)

    def send_tokens(self, sender: str, receiver: str, amount: int) -> None:
        self._require_deployed()
        with self.account.transaction(sender) as tx:
            tx.token(TokenOp("transfer", self.token_id, amount, address=sender, receiver=receiver))

    def burn_tokens(self, sender: str, address: str, amount: int) -> None:
        self._require_deployed()
        if address != sender:
            self.audit.log(sender, "burn_tokens", self.address, "denied", target=address)
            raise UnauthorizedTransitionError(f"{sender} may not burn tokens held by {address}")
        with self.account.transaction(sender) as tx:
            tx.token(TokenOp("burn", self.token_id, amount, address=address))

    def new_payout(self, receiver: str) -> int:
        """Send half of the contract's native balance to a brand-new account."""
        self._require_deployed()
        if not self.network.is_new(receiver):
            raise UnauthorizedTransitionError(f"{receiver} is not a new account")
        half = self.network.tokens.balance_of(self.address, NATIVE_TOKEN) // 2
        try:
            with self.account.transaction() as tx:
                tx.token(TokenOp("transfer", NATIVE_TOKEN, half, address=self.address, receiver=receiver))
        except ZkReduceError:
            logger.error("payout failed", operation="new_payout", receiver=receiver, amount=half)
            raise
        self.audit.log(self.address, "new_payout", receiver, "success", amount=half)
        return half
