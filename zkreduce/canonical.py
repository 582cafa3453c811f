"""Canonical bytes and digest helpers for zkreduce.

Every commitment in the package (chain pointers, proof certificates, circuit
digests, audit hashes) is computed over the bytes produced here, so the
encoding must stay byte-for-byte stable.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable


SHA256_RE = re.compile(r"^[0-9a-f]{64}$")

# BN254 scalar field order, the field all payloads are reduced into.
FIELD_MODULUS = 0x30644e72e131a029b85045b68181585d2833e84879b9709143e1f593f0000001


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - datetime/date objects become ISO strings.
    - bytes become lowercase hex.
    - Floats are rejected to avoid non-JCS number edge cases.
    """
    if obj is None:
        return None
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in canonical JSON. Use strings or integers.")
    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).hex()
    if isinstance(obj, (datetime, date)):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def jcs_canonicalize(obj: Any) -> bytes:
    """Canonicalize JSON using a JCS-like subset (RFC 8785 compatible for objects without floats)."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def to_field(value: Any) -> int:
    """Reduce a payload into the scalar field.

    bool is checked before int since bool is a subclass of int.
    """
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, int):
        return value % FIELD_MODULUS
    raise ValueError(f"Cannot convert {type(value).__name__} to field element")


def fields_to_bytes(fields: Iterable[int]) -> bytes:
    """Fixed-width big-endian encoding of a field list (32 bytes per element)."""
    return b"".join(to_field(f).to_bytes(32, "big") for f in fields)
