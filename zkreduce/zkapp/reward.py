"""
Reward token: the proof-gated mint.

`reward_recursive_proof` accepts one merged proof per identity:

    1. the certificate verifies                      -> ProofVerificationError
    2. the proof is bound to the caller               -> UnauthorizedTransitionError
    3. the signature over [secret] verifies under the
       caller's key, checked here independently of
       the proof's own signature stage                -> SignatureMismatchError
    4. neither the proof nor the identity has been
       rewarded before                                -> UnauthorizedTransitionError
    5. mint the fixed amount

Steps 1-4 do not touch state. Step 5 commits the mint together with the
consumed-proof and rewarded-identity markers in one transaction whose
preconditions are the marker sets read in step 4, so two racing
submissions of the same proof cannot both succeed.
"""

from __future__ import annotations

from typing import FrozenSet, List, Optional

from zkreduce.keys import verify_signature
from zkreduce.zkapp.events import EventBus, RewardMinted
from zkreduce.zkapp.hardening import (
    InvariantChecker,
    ProofVerificationError,
    SignatureMismatchError,
    UnauthorizedTransitionError,
    ZkReduceError,
)
from zkreduce.zkapp.hashchain import hash_fields
from zkreduce.zkapp.ledger import AccountState, TokenLedger, TokenOp, derive_token_id
from zkreduce.zkapp.observability import AuditLogger, ZkLayer, get_logger
from zkreduce.zkapp.recursion import MERGE_PROOFS, ProgramInput, RecursionProgram
from zkreduce.zkapp.zkp import Proof

logger = get_logger("reward", ZkLayer.REWARD)

CONSUMED = "consumed_proofs"
REWARDED = "rewarded"


class RewardToken:
    """Token contract minting rewards for verified proof chains."""

    def __init__(
        self,
        address: str,
        program: RecursionProgram,
        tokens: Optional[TokenLedger] = None,
        secret: Optional[int] = None,
        reward_amount: Optional[int] = None,
        bus: Optional[EventBus] = None,
        audit: Optional[AuditLogger] = None,
    ):
        from zkreduce.zkapp.config import get_config

        rewards = get_config().rewards
        self.address = address
        self.program = program
        self.secret = rewards.secret.get() if secret is None else secret
        self.reward_amount = rewards.recursive_proof_amount.get() if reward_amount is None else reward_amount
        self.token_id = derive_token_id(address)
        self.account = AccountState(
            address,
            {CONSUMED: frozenset(), REWARDED: frozenset()},
            tokens=tokens,
        )
        self._bus = bus
        self.audit = audit or AuditLogger(logger)

    @property
    def tokens(self) -> TokenLedger:
        return self.account.tokens

    def balance_of(self, address: str) -> int:
        return self.tokens.balance_of(address, self.token_id)

    def is_consumed(self, proof: Proof) -> bool:
        return proof.digest in self.account.read(CONSUMED)

    # ------------------------------------------------------------------
    # Proof-gated mint
    # ------------------------------------------------------------------

    def _check_proof(self, caller: str, proof: Proof) -> ProgramInput:
        if proof.circuit_id != MERGE_PROOFS:
            raise ProofVerificationError(f"Expected a merged proof, got {proof.circuit_id}")
        if not self.program.verify(proof):
            raise ProofVerificationError(f"Certificate does not verify for {proof.circuit_id} proof")
        claim = ProgramInput.of(proof)
        if claim.public_key != caller:
            raise UnauthorizedTransitionError(
                f"Proof is bound to {claim.public_key}, caller is {caller}"
            )
        if not verify_signature(claim.signature, caller, [self.secret]):
            raise SignatureMismatchError(f"Signature over secret does not verify for {caller}")
        return claim

    def reward_recursive_proof(self, caller: str, proof: Proof) -> int:
        """Verify `proof` and mint the fixed reward to `caller`. Returns the new balance."""
        try:
            self._check_proof(caller, proof)
            digest = proof.digest

            with self.account.transaction(sender=caller) as tx:
                consumed: FrozenSet[str] = tx.read(CONSUMED)
                rewarded: FrozenSet[str] = tx.read(REWARDED)
                tx.assert_precondition(CONSUMED, consumed)
                tx.assert_precondition(REWARDED, rewarded)
                if digest in consumed:
                    raise UnauthorizedTransitionError(f"Proof {digest[:16]} was already consumed")
                if caller in rewarded:
                    raise UnauthorizedTransitionError(f"{caller} was already rewarded")

                tx.write(CONSUMED, consumed | {digest})
                tx.write(REWARDED, rewarded | {caller})
                tx.token(TokenOp("mint", self.token_id, self.reward_amount, address=caller))
        except ZkReduceError as e:
            self.audit.log(caller, "reward_recursive_proof", self.address, "denied", reason=str(e))
            raise

        self.audit.log(
            caller, "reward_recursive_proof", self.address, "success",
            amount=self.reward_amount, proof_digest=digest,
        )
        self._publish(caller, self.reward_amount, digest)
        return self.balance_of(caller)

    # ------------------------------------------------------------------
    # Secret-gated mint
    # ------------------------------------------------------------------

    def mint_ops(self, caller: str, secret_hash: int, amount: int) -> List[TokenOp]:
        """Validate a secret-gated mint and return the token ops to stage."""
        InvariantChecker.check_uint64("amount", amount)
        if secret_hash != hash_fields(self.secret):
            raise SignatureMismatchError("secret hash does not match")
        return [TokenOp("mint", self.token_id, amount, address=caller)]

    def mint_new_tokens(self, caller: str, secret_hash: int, amount: int) -> int:
        try:
            ops = self.mint_ops(caller, secret_hash, amount)
        except SignatureMismatchError as e:
            self.audit.log(caller, "mint_new_tokens", self.address, "denied", reason=str(e))
            raise
        self.tokens.apply(ops)
        self.audit.log(caller, "mint_new_tokens", self.address, "success", amount=amount)
        self._publish(caller, amount)
        return self.balance_of(caller)

    def _publish(self, receiver: str, amount: int, proof_digest: str = "") -> None:
        logger.info(
            "reward minted",
            operation="mint",
            receiver=receiver,
            amount=amount,
            proof_digest=proof_digest,
        )
        if self._bus:
            self._bus.publish(RewardMinted(
                contract=self.address,
                receiver=receiver,
                amount=amount,
                proof_digest=proof_digest,
            ))
