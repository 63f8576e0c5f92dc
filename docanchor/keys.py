"""
Key handling for docanchor.

Decodes the public key encodings found in DID documents into raw
Ed25519 key bytes, and provides the signing side used by issuers
(key generation, key files, signing a content hash).
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .util import b64d, b64e, b64url_decode

MB_PREFIX = "z"  # multibase base58btc prefix
MULTICODEC_ED25519_PUB = b"\xed\x01"
ED25519_KEY_LENGTH = 32
ED25519_SIGNATURE_LENGTH = 64


class MalformedKeyError(ValueError):
    """Encoded public key material could not be decoded."""


def _check_length(raw: bytes) -> bytes:
    if len(raw) != ED25519_KEY_LENGTH:
        raise MalformedKeyError(f"Ed25519 key must be {ED25519_KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def decode_multibase(value: str) -> bytes:
    """Decode a base58btc multibase string ('z' prefix)."""
    if not isinstance(value, str) or not value.startswith(MB_PREFIX):
        raise MalformedKeyError("only base58btc multibase ('z') is supported")
    try:
        return base58.b58decode(value[1:])
    except ValueError as e:
        raise MalformedKeyError(f"invalid base58: {e}") from e


def ed25519_from_multibase(value: str) -> bytes:
    """
    Raw key bytes from a publicKeyMultibase value.

    Accepts both the multicodec-prefixed form (0xed01 + key) and a bare
    32-byte key.
    """
    raw = decode_multibase(value)
    if len(raw) == ED25519_KEY_LENGTH + len(MULTICODEC_ED25519_PUB) and raw.startswith(MULTICODEC_ED25519_PUB):
        raw = raw[len(MULTICODEC_ED25519_PUB):]
    return _check_length(raw)


def ed25519_from_base58(value: str) -> bytes:
    """Raw key bytes from a publicKeyBase58 value."""
    try:
        raw = base58.b58decode(value)
    except (ValueError, TypeError) as e:
        raise MalformedKeyError(f"invalid base58: {e}") from e
    return _check_length(raw)


def ed25519_from_jwk(jwk: Dict[str, Any]) -> bytes:
    """Raw key bytes from an OKP/Ed25519 JSON Web Key."""
    if not isinstance(jwk, dict) or jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
        raise MalformedKeyError("Unsupported JWK")
    try:
        raw = b64url_decode(jwk["x"])
    except (KeyError, ValueError, TypeError) as e:
        raise MalformedKeyError(f"invalid JWK x: {e}") from e
    return _check_length(raw)


def public_key_multibase(verify_key: bytes) -> str:
    """Encode a raw Ed25519 public key as multicodec-prefixed multibase."""
    return MB_PREFIX + base58.b58encode(MULTICODEC_ED25519_PUB + _check_length(verify_key)).decode("ascii")


def did_key_for(verify_key: bytes) -> str:
    """The self-certifying did:key identifier for an Ed25519 public key."""
    return f"did:key:{public_key_multibase(verify_key)}"


def verify_ed25519(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    Verify an Ed25519 signature over raw bytes.

    Returns True if signature is valid, False otherwise.
    """
    try:
        VerifyKey(public_key).verify(message, signature)
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


# ============================================================
# Issuer side: key files and signing
# ============================================================

@dataclass
class IssuerKey:
    """An issuer's Ed25519 signing key and the identity it signs for."""
    identity: str
    signing_key: SigningKey

    @property
    def verify_key(self) -> bytes:
        return bytes(self.signing_key.verify_key)

    @classmethod
    def generate(cls, identity: Optional[str] = None) -> 'IssuerKey':
        sk = SigningKey.generate()
        return cls(identity=identity or did_key_for(bytes(sk.verify_key)), signing_key=sk)

    @classmethod
    def from_file(cls, path: str) -> 'IssuerKey':
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return cls(identity=raw["identity"], signing_key=SigningKey(b64d(raw["private_key_b64"])))

    def to_file(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump({
                "identity": self.identity,
                "private_key_b64": b64e(bytes(self.signing_key)),
                "public_key_multibase": public_key_multibase(self.verify_key),
            }, f, indent=2)

    def sign_hash(self, content_hash_hex: str) -> str:
        """Sign the 32 raw digest bytes and return the signature as hex."""
        digest = bytes.fromhex(content_hash_hex)
        return self.signing_key.sign(digest).signature.hex()

    def verification_method(self, method_type: str = "Ed25519VerificationKey2020") -> Dict[str, Any]:
        """The DID document verification method describing this key."""
        method: Dict[str, Any] = {
            "id": f"{self.identity}#key-1",
            "type": method_type,
            "controller": self.identity,
        }
        if method_type == "Ed25519VerificationKey2018":
            method["publicKeyBase58"] = base58.b58encode(self.verify_key).decode("ascii")
        elif method_type == "JsonWebKey2020":
            x = b64e(self.verify_key).replace("+", "-").replace("/", "_").rstrip("=")
            method["publicKeyJwk"] = {"kty": "OKP", "crv": "Ed25519", "x": x}
        else:
            method["publicKeyMultibase"] = public_key_multibase(self.verify_key)
        return method
