"""
Signature verification against a decentralized identity.

verify() never raises. "Could not verify" and "verified false" are the
same answer at the protocol level; the distinguishing reason only goes
to the audit log.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .identity import ED25519, IdentityNotFound, IdentityResolver
from .keys import ED25519_SIGNATURE_LENGTH, MalformedKeyError, verify_ed25519
from .logging_config import audit_log

CONTENT_HASH_LENGTH = 32


class FailureReason(str, Enum):
    BAD_HASH_LENGTH = "BAD_HASH_LENGTH"
    BAD_SIGNATURE_LENGTH = "BAD_SIGNATURE_LENGTH"
    IDENTITY_NOT_FOUND = "IDENTITY_NOT_FOUND"
    RESOLUTION_FAILED = "RESOLUTION_FAILED"
    NO_VERIFICATION_METHOD = "NO_VERIFICATION_METHOD"
    MALFORMED_KEY = "MALFORMED_KEY"
    BAD_SIGNATURE = "BAD_SIGNATURE"


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    reason: Optional[FailureReason] = None
    method_id: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


class SignatureVerifier:
    """Verifies Ed25519 signatures over content hashes using live-resolved keys."""

    def __init__(self, resolver: IdentityResolver, algorithm: str = ED25519):
        self._resolver = resolver
        self._algorithm = algorithm

    def verify(self, content_hash: bytes, signature: bytes, identity: str) -> bool:
        return self.check(content_hash, signature, identity).valid

    def check(self, content_hash: bytes, signature: bytes, identity: str) -> SignatureCheck:
        # Length checks need no network, so they go first
        if not isinstance(content_hash, (bytes, bytearray)) or len(content_hash) != CONTENT_HASH_LENGTH:
            return self._fail(identity, FailureReason.BAD_HASH_LENGTH, None)
        if not isinstance(signature, (bytes, bytearray)) or len(signature) != ED25519_SIGNATURE_LENGTH:
            return self._fail(identity, FailureReason.BAD_SIGNATURE_LENGTH, content_hash)

        try:
            document = self._resolver.resolve(identity)
        except IdentityNotFound:
            return self._fail(identity, FailureReason.IDENTITY_NOT_FOUND, content_hash)
        except Exception:
            return self._fail(identity, FailureReason.RESOLUTION_FAILED, content_hash)

        try:
            key = document.key_for(self._algorithm)
        except MalformedKeyError:
            return self._fail(identity, FailureReason.MALFORMED_KEY, content_hash)
        if key is None:
            return self._fail(identity, FailureReason.NO_VERIFICATION_METHOD, content_hash)

        if not verify_ed25519(bytes(content_hash), bytes(signature), key.raw):
            return self._fail(identity, FailureReason.BAD_SIGNATURE, content_hash, key.method_id)
        return SignatureCheck(valid=True, method_id=key.method_id)

    @staticmethod
    def _fail(
        identity: str,
        reason: FailureReason,
        content_hash: Optional[bytes],
        method_id: Optional[str] = None
    ) -> SignatureCheck:
        audit_log.signature_check_failed(identity, reason.value, bytes(content_hash) if content_hash else None)
        return SignatureCheck(valid=False, reason=reason, method_id=method_id)
