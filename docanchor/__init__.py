"""
docanchor: tamper-evident document anchoring and verification.

An issuer signs the SHA-256 hash of a document with the Ed25519 key
published in its DID document. docanchor checks that signature, writes
{hash, did, signature} to an append-only consensus log exactly once per
document and indexes the resulting transaction. Anyone can later verify
a document by hash: the proof is recovered from the log mirror and the
signature is re-checked against the issuer's currently resolved key.

Usage:
    from docanchor import Settings, build_services, IssuerKey, sha256_hex

    services = build_services(Settings.from_env())
    key = IssuerKey.generate()
    org, api_key = services.organizations.create("Acme", identity=key.identity)

    content_hash = sha256_hex(b"hello")
    result = services.orchestrator.anchor(
        content_hash, key.identity, key.sign_hash(content_hash), org
    )
    verdict = services.orchestrator.verify(content_hash)
    if verdict.is_verified():
        print(verdict.proof.log_transaction_id)
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

# Hashing
from .hashing import sha256_hex, hash_file, hash_stream, is_content_hash

# Errors
from .errors import (
    DocAnchorError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DependencyUnavailable,
    ConsensusRejected,
    RateLimitExceeded,
    InternalError,
)

# Configuration
from .config import Settings

# Proof records
from .proofs import (
    ProofMessage,
    SubmissionReceipt,
    DocumentProof,
    VerificationOutcome,
    VerificationResult,
    AnchorResult,
)

# Keys and identity
from .keys import IssuerKey, did_key_for, verify_ed25519
from .identity import (
    DidDocument,
    PublicKey,
    IdentityResolver,
    UniversalResolverClient,
    DidKeyResolver,
    CompositeResolver,
)
from .signatures import SignatureVerifier

# Consensus log and mirror
from .consensus import ConsensusClient, HttpConsensusGateway, LocalConsensusLog
from .mirror import MirrorNodeClient, MirrorReconciler

# Trust registry
from .registry import TrustRegistry, ContractRegistry, NullRegistry, TrustRegistryClient

# Workflows
from .orchestrator import Orchestrator
from .services import Services, build_services


__all__ = [
    "__version__",

    # Hashing
    "sha256_hex",
    "hash_file",
    "hash_stream",
    "is_content_hash",

    # Errors
    "DocAnchorError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "DependencyUnavailable",
    "ConsensusRejected",
    "RateLimitExceeded",
    "InternalError",

    # Configuration
    "Settings",

    # Proof records
    "ProofMessage",
    "SubmissionReceipt",
    "DocumentProof",
    "VerificationOutcome",
    "VerificationResult",
    "AnchorResult",

    # Keys and identity
    "IssuerKey",
    "did_key_for",
    "verify_ed25519",
    "DidDocument",
    "PublicKey",
    "IdentityResolver",
    "UniversalResolverClient",
    "DidKeyResolver",
    "CompositeResolver",
    "SignatureVerifier",

    # Consensus log and mirror
    "ConsensusClient",
    "HttpConsensusGateway",
    "LocalConsensusLog",
    "MirrorNodeClient",
    "MirrorReconciler",

    # Trust registry
    "TrustRegistry",
    "ContractRegistry",
    "NullRegistry",
    "TrustRegistryClient",

    # Workflows
    "Orchestrator",
    "Services",
    "build_services",
]
