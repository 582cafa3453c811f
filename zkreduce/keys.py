#!/usr/bin/env python3
"""zkreduce.keys

Ed25519 identities and signatures over field lists.

Profile / invariants:
- identities are `did:key` strings (Ed25519 only); the identity *is* the
  public key, so `derive_public_key(sk)` is the only way to obtain one
- a signature covers the fixed-width encoding of a list of field elements
  (`zkreduce.canonical.fields_to_bytes`), prefixed with a domain tag so a
  field signature can never be confused with any other signed payload
- verification never raises on malformed input; it returns False
"""

from __future__ import annotations

import base64
import json
import pathlib
from typing import Any, Dict, Iterable, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from zkreduce.canonical import fields_to_bytes


SIGNATURE_DOMAIN = b"zkreduce.signature.fields.v1"
SIGNATURE_LENGTH = 64

# Base58 implementation (no external deps)
B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii") if isinstance(s, str) else s
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    # Count leading zeros
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


# ---------------------------------------------------------------------------
# did:key (Ed25519)
# ---------------------------------------------------------------------------


def did_key_from_ed25519_public_key(pub: bytes) -> str:
    # multicodec 0xed01 + 32-byte pubkey (ed25519-pub)
    prefixed = bytes([0xED, 0x01]) + pub
    return "did:key:z" + b58encode(prefixed)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Parse a `did:key` (Ed25519) and return a cryptography public key."""

    if not isinstance(did, str) or not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... supported")
    decoded = b58decode(did[len("did:key:z"):])
    if not decoded.startswith(bytes([0xED, 0x01])):
        raise ValueError("did:key multicodec prefix not recognized for Ed25519")
    raw = decoded[2:]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def derive_public_key(private_key: Ed25519PrivateKey) -> str:
    """Return the did:key identity for a private key."""
    pub = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return did_key_from_ed25519_public_key(pub)


def generate_private_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


# ---------------------------------------------------------------------------
# Field-list signatures
# ---------------------------------------------------------------------------


def signing_input(message: Iterable[int]) -> bytes:
    return SIGNATURE_DOMAIN + fields_to_bytes(message)


def sign_fields(private_key: Ed25519PrivateKey, message: Iterable[int]) -> bytes:
    """Sign a list of field elements (the `Signature.create(sk, [fields])` shape)."""
    return private_key.sign(signing_input(message))


def verify_signature(signature: bytes, public_key: str, message: Iterable[int]) -> bool:
    """Verify a field-list signature against a did:key identity."""
    if not isinstance(signature, (bytes, bytearray)) or len(signature) != SIGNATURE_LENGTH:
        return False
    try:
        pub = ed25519_public_key_from_did_key(public_key)
        pub.verify(bytes(signature), signing_input(message))
    except (ValueError, InvalidSignature):
        return False
    return True


# ---------------------------------------------------------------------------
# JWK key files
# ---------------------------------------------------------------------------


def load_ed25519_private_key_from_jwk(jwk: Dict[str, Any]) -> Tuple[Ed25519PrivateKey, str]:
    """Load an Ed25519 private key from an OKP JWK.

    Returns:
        (private_key, did:key) where the did:key is derived from the private
        key; a JWK whose `x` member disagrees with `d` is rejected.
    """

    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
        raise ValueError("Only OKP/Ed25519 JWK is supported")

    d = jwk.get("d")
    x = jwk.get("x")
    if not d or not x:
        raise ValueError("JWK must include both 'd' (private) and 'x' (public)")

    priv = Ed25519PrivateKey.from_private_bytes(b64url_decode(d))
    did = derive_public_key(priv)
    if did != did_key_from_ed25519_public_key(b64url_decode(x)):
        raise ValueError("JWK public key 'x' does not match private key 'd'")
    return priv, did


def load_private_key_file(path: Union[str, pathlib.Path]) -> Tuple[Ed25519PrivateKey, str]:
    """Load a private OKP JWK from a JSON file."""

    p = pathlib.Path(path)
    key_obj = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(key_obj, dict):
        raise ValueError("key file must be a JSON object")
    return load_ed25519_private_key_from_jwk(key_obj)


def generate_ed25519_jwk(kid: str = "key-1") -> Dict[str, Any]:
    """Generate a new Ed25519 OKP JWK keypair."""

    priv = Ed25519PrivateKey.generate()

    priv_bytes = priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    pub_bytes = priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )

    return {
        "kty": "OKP",
        "crv": "Ed25519",
        "x": b64url_encode(pub_bytes),
        "d": b64url_encode(priv_bytes),
        "kid": kid,
    }
