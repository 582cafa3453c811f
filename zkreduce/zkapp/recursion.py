"""
Recursive proof composition.

Three circuits over one public-input shape `{signature, public_key, value}`:

    verify_key     derive_public_key(sk) == public_key
    verify_sig     earlier proof verifies (recursive),
                   signature over [secret] verifies under public_key,
                   value == earlier.value * multiplier
    merge_proofs   both proofs verify,
                   value == key_proof.value * sig_proof.value

The composition is linear: merge consumes exactly one ownership proof and one
signed-computation proof, and the signed-computation value must be derived
from the ownership value. The merge certificate attests the whole chain; the
intermediate certificates are not part of its public input.

With the default multiplier of 8 and a starting value of 8 the merged proof
exposes 8 * 64 = 512.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from zkreduce.keys import derive_public_key, sign_fields, verify_signature
from zkreduce.zkapp.observability import ZkLayer, get_logger, get_tracer, timed_operation
from zkreduce.zkapp.zkp import Circuit, CommitmentBackend, Proof, Witness, create_backend, require

logger = get_logger("recursion", ZkLayer.RECURSION)

UINT64_MAX = 2**64 - 1

VERIFY_KEY = "zkreduce.recursion.verify_key.v1"
VERIFY_SIG = "zkreduce.recursion.verify_sig.v1"
MERGE_PROOFS = "zkreduce.recursion.merge_proofs.v1"

PROGRAM_CIRCUITS = (VERIFY_KEY, VERIFY_SIG, MERGE_PROOFS)

_PUBLIC_INPUT_NAMES = ["signature", "public_key", "value"]


@dataclass(frozen=True)
class ProgramInput:
    """Public input shared by every stage of the program."""
    signature: bytes
    public_key: str
    value: int

    def to_public_input(self) -> Dict[str, Any]:
        return {
            "signature": self.signature.hex(),
            "public_key": self.public_key,
            "value": self.value,
        }

    @classmethod
    def from_public_input(cls, data: Dict[str, Any]) -> "ProgramInput":
        return cls(
            signature=bytes.fromhex(data["signature"]),
            public_key=data["public_key"],
            value=data["value"],
        )

    @classmethod
    def of(cls, proof: Proof) -> "ProgramInput":
        return cls.from_public_input(proof.public_input)

    def with_value(self, value: int) -> "ProgramInput":
        return ProgramInput(signature=self.signature, public_key=self.public_key, value=value)


def _require_uint64(circuit_id: str, name: str, value: Any) -> None:
    require(
        isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= UINT64_MAX,
        circuit_id,
        f"{name} is not a UInt64: {value!r}",
    )


def _require_program_proof(circuit_id: str, name: str, proof: Any, expected: str) -> Proof:
    require(isinstance(proof, Proof), circuit_id, f"{name} is not a proof")
    require(
        proof.circuit_id == expected,
        circuit_id,
        f"{name} was produced by {proof.circuit_id}, expected {expected}",
    )
    return proof


# =============================================================================
# CIRCUIT BUILDERS
# =============================================================================

def build_verify_key_circuit() -> Circuit:
    """
    Ownership stage.

    Proves: the prover holds the private key behind `public_key`.
    """
    def constraint(public: Dict[str, Any], private: Dict[str, Any]) -> None:
        _require_uint64(VERIFY_KEY, "value", public["value"])
        require(
            derive_public_key(private["private_key"]) == public["public_key"],
            VERIFY_KEY,
            "private key does not match public_key",
        )

    return Circuit(
        circuit_id=VERIFY_KEY,
        public_input_names=list(_PUBLIC_INPUT_NAMES),
        private_input_names=["private_key"],
        constraint=constraint,
        description="Proves knowledge of the private key for public_key",
    )


def build_verify_sig_circuit(multiplier: int) -> Circuit:
    """
    Signed-computation stage.

    Proves: the signature over [secret] verifies under the prover's key, and
    value is the ownership value times `multiplier`.
    """
    def constraint(public: Dict[str, Any], private: Dict[str, Any]) -> None:
        earlier = _require_program_proof(VERIFY_SIG, "earlier", private["earlier"], VERIFY_KEY)
        _require_uint64(VERIFY_SIG, "value", public["value"])

        public_key = derive_public_key(private["private_key"])
        require(public_key == public["public_key"], VERIFY_SIG, "private key does not match public_key")
        require(
            verify_signature(bytes.fromhex(public["signature"]), public_key, [private["secret"]]),
            VERIFY_SIG,
            "signature over secret does not verify",
        )
        require(
            earlier.public_input["public_key"] == public["public_key"],
            VERIFY_SIG,
            "earlier proof is bound to another identity",
        )
        expected = earlier.public_input["value"] * multiplier
        _require_uint64(VERIFY_SIG, "earlier.value * multiplier", expected)
        require(
            public["value"] == expected,
            VERIFY_SIG,
            f"value {public['value']} != earlier.value * {multiplier} ({expected})",
        )

    return Circuit(
        circuit_id=VERIFY_SIG,
        public_input_names=list(_PUBLIC_INPUT_NAMES),
        private_input_names=["private_key", "secret", "earlier"],
        constraint=constraint,
        description="Proves a signature over the secret and a multiplied value",
        version=f"1.0.0+m{multiplier}",
    )


def build_merge_proofs_circuit(multiplier: int) -> Circuit:
    """
    Merge stage.

    Proves: both stage proofs verify (checked by the backend before this
    body runs) and value == key_proof.value * sig_proof.value.
    """
    def constraint(public: Dict[str, Any], private: Dict[str, Any]) -> None:
        key_proof = _require_program_proof(MERGE_PROOFS, "key_proof", private["key_proof"], VERIFY_KEY)
        sig_proof = _require_program_proof(MERGE_PROOFS, "sig_proof", private["sig_proof"], VERIFY_SIG)
        _require_uint64(MERGE_PROOFS, "value", public["value"])

        for name, proof in (("key_proof", key_proof), ("sig_proof", sig_proof)):
            require(
                proof.public_input["public_key"] == public["public_key"],
                MERGE_PROOFS,
                f"{name} is bound to another identity",
            )
        a = key_proof.public_input["value"]
        b = sig_proof.public_input["value"]
        require(b == a * multiplier, MERGE_PROOFS, "sig_proof was not derived from key_proof")
        product = a * b
        _require_uint64(MERGE_PROOFS, "key_proof.value * sig_proof.value", product)
        require(public["value"] == product, MERGE_PROOFS, f"value {public['value']} != {a} * {b}")

    return Circuit(
        circuit_id=MERGE_PROOFS,
        public_input_names=list(_PUBLIC_INPUT_NAMES),
        private_input_names=["key_proof", "sig_proof"],
        constraint=constraint,
        description="Merges an ownership proof and a signed-computation proof",
        version=f"1.0.0+m{multiplier}",
    )


# =============================================================================
# PROGRAM
# =============================================================================

class RecursionProgram:
    """The three stage circuits compiled on one backend."""

    def __init__(self, backend: Optional[CommitmentBackend] = None, multiplier: Optional[int] = None):
        if multiplier is None:
            from zkreduce.zkapp.config import get_config
            multiplier = get_config().zk.value_multiplier.get()
        self.backend = backend or create_backend()
        self.multiplier = multiplier
        for circuit in (
            build_verify_key_circuit(),
            build_verify_sig_circuit(multiplier),
            build_merge_proofs_circuit(multiplier),
        ):
            self.backend.compile(circuit)

    def _prove(self, circuit_id: str, public_input: ProgramInput, **private: Any) -> Proof:
        witness = Witness(
            circuit_id=circuit_id,
            public_inputs=public_input.to_public_input(),
            private_inputs=private,
        )
        return self.backend.prove(witness)

    def verify_key(self, public_input: ProgramInput, private_key: Ed25519PrivateKey) -> Proof:
        return self._prove(VERIFY_KEY, public_input, private_key=private_key)

    def verify_sig(
        self,
        public_input: ProgramInput,
        private_key: Ed25519PrivateKey,
        secret: int,
        earlier: Proof,
    ) -> Proof:
        return self._prove(VERIFY_SIG, public_input, private_key=private_key, secret=secret, earlier=earlier)

    def merge_proofs(self, public_input: ProgramInput, key_proof: Proof, sig_proof: Proof) -> Proof:
        return self._prove(MERGE_PROOFS, public_input, key_proof=key_proof, sig_proof=sig_proof)

    def verify(self, proof: Proof) -> bool:
        return proof.circuit_id in PROGRAM_CIRCUITS and self.backend.verify(proof)


# =============================================================================
# COMPOSER
# =============================================================================

@dataclass(frozen=True)
class CompositionResult:
    """All three stage proofs; `merged` is the one to submit."""
    key_proof: Proof
    sig_proof: Proof
    merged: Proof

    @property
    def value(self) -> int:
        return self.merged.public_input["value"]


class ProofComposer:
    """Runs ownership -> signed computation -> merge for one identity."""

    def __init__(self, program: Optional[RecursionProgram] = None):
        self.program = program or RecursionProgram()

    @timed_operation(logger, "compose")
    def compose(self, private_key: Ed25519PrivateKey, secret: int, value: int = 8) -> CompositionResult:
        program = self.program
        base = ProgramInput(
            signature=sign_fields(private_key, [secret]),
            public_key=derive_public_key(private_key),
            value=value,
        )
        tracer = get_tracer()

        with tracer.span("verify_key", ZkLayer.RECURSION):
            key_proof = program.verify_key(base, private_key)

        with tracer.span("verify_sig", ZkLayer.RECURSION):
            sig_input = base.with_value(value * program.multiplier)
            sig_proof = program.verify_sig(sig_input, private_key, secret, key_proof)

        with tracer.span("merge_proofs", ZkLayer.RECURSION):
            merged_input = base.with_value(value * sig_input.value)
            merged = program.merge_proofs(merged_input, key_proof, sig_proof)

        logger.info(
            "proof chain composed",
            operation="compose",
            public_key=base.public_key,
            value=merged_input.value,
            digest=merged.digest,
        )
        return CompositionResult(key_proof=key_proof, sig_proof=sig_proof, merged=merged)


__all__ = [
    "CompositionResult",
    "MERGE_PROOFS",
    "ProgramInput",
    "ProofComposer",
    "RecursionProgram",
    "VERIFY_KEY",
    "VERIFY_SIG",
]
