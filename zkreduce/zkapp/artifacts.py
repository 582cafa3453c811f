"""Proof artifact persistence.

Proofs are produced off-band and submitted later, so they need a stable file
form. Artifacts are plain JSON validated against
`zkreduce/schemas/proof-artifact.schema.json` (Draft 2020-12).
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Union

from jsonschema import Draft202012Validator

from zkreduce.zkapp.hardening import ArtifactFormatError
from zkreduce.zkapp.zkp import Proof, ProofSystem

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "schemas" / "proof-artifact.schema.json"

ARTIFACT_VERSION = 1


@lru_cache(maxsize=1)
def artifact_validator() -> Draft202012Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def validate_artifact(data: Any) -> List[str]:
    """Return schema errors for `data` (empty if valid)."""
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(artifact_validator().iter_errors(data), key=str)
    ]


def artifact_to_dict(proof: Proof) -> Dict[str, Any]:
    return {
        "artifact_version": ARTIFACT_VERSION,
        "circuit_id": proof.circuit_id,
        "proof_system": proof.proof_system.value,
        "public_input": dict(proof.public_input),
        "certificate": proof.certificate.hex(),
        "generated_at": proof.generated_at,
    }


def artifact_from_dict(data: Any) -> Proof:
    """Rebuild a proof from its dict form; raises ArtifactFormatError."""
    errors = validate_artifact(data)
    if errors:
        raise ArtifactFormatError(errors)
    kwargs: Dict[str, Any] = {}
    if "generated_at" in data:
        kwargs["generated_at"] = data["generated_at"]
    return Proof(
        circuit_id=data["circuit_id"],
        proof_system=ProofSystem(data["proof_system"]),
        public_input=dict(data["public_input"]),
        certificate=bytes.fromhex(data["certificate"]),
        **kwargs,
    )


def dump_artifact(proof: Proof, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(artifact_to_dict(proof), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return path


def load_artifact(path: Union[str, Path]) -> Proof:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ArtifactFormatError([f"{path}: invalid JSON: {e}"]) from e
    return artifact_from_dict(data)
