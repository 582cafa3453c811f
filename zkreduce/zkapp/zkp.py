"""
zkApp Proving Backend

Circuits, keys and the prove/verify service the recursive program runs on.

The backend is an opaque collaborator: callers hand it a circuit and a
witness, and it either refuses (the witness does not satisfy the circuit) or
returns a proof whose certificate only it can produce and check. Two
implementations are provided:

    CommitmentBackend   HMAC-SHA256 certificates over the verification-key
                        digest and the canonical public input. Sound for every
                        caller that does not hold the backend secret.
    DummyBackend        "proofs disabled" development mode: constraints are
                        still evaluated, certificates are empty, and any proof
                        for a compiled circuit verifies.

Recursion: any `Proof` found among the private inputs of a witness is
verified before the circuit runs. A proof built on a nested proof that does
not verify is never issued.

Circuits are registered in a content-addressed registry and proofs reference
their circuit by id.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from zkreduce.canonical import jcs_canonicalize
from zkreduce.zkapp.hardening import ConstraintViolation, CryptoUtils, ProofVerificationError
from zkreduce.zkapp.observability import ZkLayer, get_logger

logger = get_logger("backend", ZkLayer.ZK)


# =============================================================================
# PROOF SYSTEMS
# =============================================================================

class ProofSystem(Enum):
    """Certificate schemes understood by the backends."""
    HMAC_COMMITMENT = "hmac-sha256-commitment"
    DUMMY = "dummy"

    def is_sound(self) -> bool:
        return self == ProofSystem.HMAC_COMMITMENT


# =============================================================================
# KEYS
# =============================================================================

@dataclass
class ProvingKey:
    """Proving key for a compiled circuit."""
    circuit_id: str
    proof_system: ProofSystem
    key_data: bytes
    digest: str = ""

    def __post_init__(self):
        if not self.digest:
            self.digest = hashlib.sha256(self.key_data).hexdigest()


@dataclass
class VerificationKey:
    """
    Verification key for a compiled circuit.

    Its digest binds every certificate to one exact circuit version.
    """
    circuit_id: str
    proof_system: ProofSystem
    public_input_count: int
    key_data: bytes
    digest: str = ""

    def __post_init__(self):
        if not self.digest:
            self.digest = hashlib.sha256(self.key_data).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "circuit_id": self.circuit_id,
            "proof_system": self.proof_system.value,
            "public_input_count": self.public_input_count,
            "key_digest": self.digest,
        }


# =============================================================================
# WITNESS AND PROOF
# =============================================================================

@dataclass
class Witness:
    """
    Inputs for one proof.

    Public inputs end up in the proof; private inputs never leave the prover.
    Private inputs may include earlier `Proof` objects (recursion).
    """
    circuit_id: str
    public_inputs: Dict[str, Any]
    private_inputs: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Proof:
    """
    A proof: inspectable public input plus an opaque certificate.

    `public_input` holds JSON-compatible values only so that the certificate
    input has one canonical encoding.
    """
    circuit_id: str
    proof_system: ProofSystem
    public_input: Dict[str, Any]
    certificate: bytes
    generated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        compare=False,
    )

    @property
    def digest(self) -> str:
        """Content-addressed identifier for the proof."""
        content = {
            "circuit_id": self.circuit_id,
            "proof_system": self.proof_system.value,
            "public_input": self.public_input,
            "certificate": self.certificate.hex(),
        }
        return hashlib.sha256(jcs_canonicalize(content)).hexdigest()


# =============================================================================
# CIRCUIT DEFINITION
# =============================================================================

Constraint = Callable[[Dict[str, Any], Dict[str, Any]], None]


def require(condition: bool, circuit_id: str, message: str) -> None:
    """Assert a constraint inside a circuit body."""
    if not condition:
        raise ConstraintViolation(circuit_id, message)


@dataclass
class Circuit:
    """
    A circuit: named inputs and a constraint body.

    The body receives (public_inputs, private_inputs) and raises
    ConstraintViolation when unsatisfied.
    """
    circuit_id: str
    public_input_names: List[str]
    private_input_names: List[str]
    constraint: Constraint = field(repr=False)
    description: str = ""
    version: str = "1.0.0"

    @property
    def digest(self) -> str:
        content = {
            "circuit_id": self.circuit_id,
            "public_input_names": self.public_input_names,
            "private_input_names": self.private_input_names,
            "version": self.version,
        }
        canonical = json.dumps(content, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "circuit_id": self.circuit_id,
            "public_input_names": self.public_input_names,
            "private_input_names": self.private_input_names,
            "description": self.description,
            "version": self.version,
            "digest": self.digest,
        }


# =============================================================================
# CIRCUIT REGISTRY
# =============================================================================

class CircuitRegistry:
    """Content-addressed registry of circuits and their keys."""

    def __init__(self):
        self._circuits: Dict[str, Circuit] = {}  # digest -> Circuit
        self._circuit_id_to_digest: Dict[str, str] = {}
        self._proving_keys: Dict[str, ProvingKey] = {}
        self._verification_keys: Dict[str, VerificationKey] = {}

    def register(
        self,
        circuit: Circuit,
        proving_key: Optional[ProvingKey] = None,
        verification_key: Optional[VerificationKey] = None,
    ) -> str:
        """Register a circuit and optionally its keys. Returns the circuit digest."""
        digest = circuit.digest
        self._circuits[digest] = circuit
        self._circuit_id_to_digest[circuit.circuit_id] = digest
        if proving_key:
            self._proving_keys[digest] = proving_key
        if verification_key:
            self._verification_keys[digest] = verification_key
        return digest

    def get_circuit_by_id(self, circuit_id: str) -> Optional[Circuit]:
        digest = self._circuit_id_to_digest.get(circuit_id)
        if digest:
            return self._circuits.get(digest)
        return None

    def get_proving_key(self, circuit_id: str) -> Optional[ProvingKey]:
        digest = self._circuit_id_to_digest.get(circuit_id)
        return self._proving_keys.get(digest) if digest else None

    def get_verification_key(self, circuit_id: str) -> Optional[VerificationKey]:
        digest = self._circuit_id_to_digest.get(circuit_id)
        return self._verification_keys.get(digest) if digest else None

    def list_circuits(self) -> List[Circuit]:
        return list(self._circuits.values())

    def export_registry(self) -> Dict[str, Any]:
        return {
            "circuits": {d: c.to_dict() for d, c in self._circuits.items()},
            "verification_keys": {d: k.to_dict() for d, k in self._verification_keys.items()},
        }


# =============================================================================
# BACKENDS
# =============================================================================

class CommitmentBackend:
    """
    In-process proving service with HMAC-SHA256 certificates.

    certificate = HMAC(secret, "zkreduce.proof.v1" || vk.digest || JCS(public_input))

    Only the holder of `secret` can issue a certificate, and the prover only
    issues one after the circuit body accepted the witness.
    """

    proof_system = ProofSystem.HMAC_COMMITMENT
    _DOMAIN = b"zkreduce.proof.v1"

    def __init__(self, secret: bytes, registry: Optional[CircuitRegistry] = None):
        if len(secret) < 8:
            raise ValueError("backend secret must be at least 8 bytes")
        self._secret = secret
        self.registry = registry or CircuitRegistry()

    def compile(self, circuit: Circuit) -> VerificationKey:
        """Register `circuit` and derive its keys."""
        material = hmac.new(self._secret, circuit.digest.encode(), hashlib.sha256).digest()
        pk = ProvingKey(
            circuit_id=circuit.circuit_id,
            proof_system=self.proof_system,
            key_data=material + b"pk",
        )
        vk = VerificationKey(
            circuit_id=circuit.circuit_id,
            proof_system=self.proof_system,
            public_input_count=len(circuit.public_input_names),
            key_data=material + b"vk",
        )
        self.registry.register(circuit, pk, vk)
        logger.debug("circuit compiled", circuit_id=circuit.circuit_id, vk_digest=vk.digest)
        return vk

    def _certify(self, vk: VerificationKey, public_input: Dict[str, Any]) -> bytes:
        message = self._DOMAIN + vk.digest.encode() + jcs_canonicalize(public_input)
        return hmac.new(self._secret, message, hashlib.sha256).digest()

    def prove(self, witness: Witness) -> Proof:
        circuit = self.registry.get_circuit_by_id(witness.circuit_id)
        vk = self.registry.get_verification_key(witness.circuit_id)
        if circuit is None or vk is None:
            raise ValueError(f"Circuit not compiled: {witness.circuit_id}")

        public_input = {}
        for name in circuit.public_input_names:
            if name not in witness.public_inputs:
                raise ValueError(
                    f"Missing required public input '{name}' in witness. "
                    f"Circuit requires: {circuit.public_input_names}, "
                    f"witness provides: {list(witness.public_inputs.keys())}"
                )
            public_input[name] = witness.public_inputs[name]
        for name in circuit.private_input_names:
            if name not in witness.private_inputs:
                raise ValueError(f"Missing required private input '{name}' for {circuit.circuit_id}")

        for name, value in witness.private_inputs.items():
            if isinstance(value, Proof) and not self.verify(value):
                raise ProofVerificationError(
                    f"{circuit.circuit_id}: nested proof '{name}' does not verify"
                )

        circuit.constraint(public_input, witness.private_inputs)

        proof = Proof(
            circuit_id=circuit.circuit_id,
            proof_system=self.proof_system,
            public_input=public_input,
            certificate=self._certify(vk, public_input),
        )
        logger.debug("proof generated", circuit_id=circuit.circuit_id, digest=proof.digest)
        return proof

    def verify(self, proof: Proof) -> bool:
        """Never raises; malformed proofs are simply invalid."""
        if not isinstance(proof, Proof) or proof.proof_system != self.proof_system:
            return False
        if not isinstance(proof.certificate, (bytes, bytearray)):
            return False
        vk = self.registry.get_verification_key(proof.circuit_id)
        if vk is None or not isinstance(proof.public_input, dict):
            return False
        if len(proof.public_input) != vk.public_input_count:
            return False
        try:
            expected = self._certify(vk, proof.public_input)
        except (TypeError, ValueError):
            return False
        return CryptoUtils.secure_compare(expected, bytes(proof.certificate))


class DummyBackend(CommitmentBackend):
    """
    Proofs-disabled backend.

    NOT SOUND - any proof for a compiled circuit verifies. For local
    development only.
    """

    proof_system = ProofSystem.DUMMY

    def _certify(self, vk: VerificationKey, public_input: Dict[str, Any]) -> bytes:
        return b""

    def verify(self, proof: Proof) -> bool:
        if not isinstance(proof, Proof) or proof.proof_system != self.proof_system:
            return False
        return self.registry.get_verification_key(proof.circuit_id) is not None


def create_backend(
    proofs_enabled: Optional[bool] = None,
    secret: Optional[str] = None,
) -> CommitmentBackend:
    """Build the backend selected by configuration (`zk.*`)."""
    from zkreduce.zkapp.config import get_config

    zk = get_config().zk
    if proofs_enabled is None:
        proofs_enabled = zk.proofs_enabled.get()
    if secret is None:
        secret = zk.backend_secret.get()
    if not proofs_enabled:
        logger.warning("proofs disabled: using dummy backend")
        return DummyBackend(secret.encode())
    return CommitmentBackend(secret.encode())
