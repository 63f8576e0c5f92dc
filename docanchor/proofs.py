"""
Proof records and the consensus wire format.

A ProofMessage is the only thing ever written to the consensus log:
the content hash, the issuer's identity and the issuer's signature over
the hash. It is serialized as a compact JSON object whose key order
("hash", "did", "signature") is part of the format; historical entries
on the log are parsed back byte-for-byte.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

WIRE_KEYS = ("hash", "did", "signature")


class MalformedMessageError(ValueError):
    """A log entry is not a ProofMessage."""


@dataclass(frozen=True)
class ProofMessage:
    content_hash: str
    issuer_identity: str
    signature: str

    def to_wire(self) -> Dict[str, str]:
        return {
            "hash": self.content_hash,
            "did": self.issuer_identity,
            "signature": self.signature,
        }

    def encode(self) -> bytes:
        """Compact JSON, insertion-ordered keys, no whitespace."""
        return json.dumps(self.to_wire(), separators=(',', ':'), ensure_ascii=False).encode('utf-8')

    @classmethod
    def decode(cls, data: bytes) -> 'ProofMessage':
        try:
            obj = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedMessageError(f"not JSON: {e}") from e
        if not isinstance(obj, dict):
            raise MalformedMessageError("not a JSON object")
        values = [obj.get(k) for k in WIRE_KEYS]
        if not all(isinstance(v, str) and v for v in values):
            raise MalformedMessageError("missing or non-string proof fields")
        return cls(content_hash=values[0], issuer_identity=values[1], signature=values[2])


@dataclass(frozen=True)
class SubmissionReceipt:
    """Acknowledgement from the consensus log. Does not echo the payload."""
    transaction_id: str
    consensus_timestamp: str
    sequence_number: Optional[int] = None


@dataclass(frozen=True)
class DocumentProof:
    content_hash: str
    log_transaction_id: str
    consensus_timestamp: str
    issuer_identity: str
    created_at: Optional[datetime] = None


class VerificationOutcome(str, Enum):
    """
    VERIFIED_ON_CHAIN: indexed, recovered from the mirror and the signature
        re-verified against the currently resolved key
    NOT_VERIFIED: anything else. "Never anchored" and "cannot currently
        prove it" are deliberately indistinguishable to callers.
    """
    VERIFIED_ON_CHAIN = "VERIFIED_ON_CHAIN"
    NOT_VERIFIED = "NOT_VERIFIED"


@dataclass
class VerificationResult:
    outcome: VerificationOutcome
    proof: Optional[DocumentProof] = None
    signature: Optional[str] = None
    is_trusted_issuer: bool = False
    organization_name: Optional[str] = None
    # Internal only, never serialized to callers
    reason: Optional[str] = None

    def is_verified(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED_ON_CHAIN

    @classmethod
    def not_verified(cls, reason: str) -> 'VerificationResult':
        return cls(outcome=VerificationOutcome.NOT_VERIFIED, reason=reason)

    @classmethod
    def verified(
        cls,
        proof: DocumentProof,
        signature: str,
        is_trusted_issuer: bool,
        organization_name: Optional[str] = None
    ) -> 'VerificationResult':
        return cls(
            outcome=VerificationOutcome.VERIFIED_ON_CHAIN,
            proof=proof,
            signature=signature,
            is_trusted_issuer=is_trusted_issuer,
            organization_name=organization_name,
        )


@dataclass
class AnchorResult:
    """Outcome of the anchor workflow. conflict=True means the hash was already anchored."""
    proof: DocumentProof
    conflict: bool = False
