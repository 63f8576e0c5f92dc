"""
Anchor and verify workflows.

Anchor:  RECEIVED -> SIGNATURE_VERIFIED -> OWNERSHIP_VERIFIED ->
         DEDUP_CHECKED -> SUBMITTED -> INDEXED -> DONE, any -> FAILED.

The signature is checked before anything else is looked at or written:
nothing about a caller's claimed identity is trusted until possession of
its private key is proven. Ownership is checked separately afterwards;
it binds the proof to the paying organization and is not implied by a
valid signature.

Verify:  index lookup -> mirror recovery -> fresh signature check ->
         trust registry. Only a signature re-derived from the recovered
         payload and the currently resolved key counts; the index row
         alone proves nothing. Every matching message in the mirror
         window is tried, so a later post of the same hash by another
         poster cannot shadow the anchored one.

Mirror outages surface as DependencyUnavailable (503) rather than
NOT_VERIFIED, so a client is never told a valid proof is invalid. The
index lookup runs first and needs no mirror, so while the mirror is down
an unanchored hash still answers NOT_VERIFIED and an anchored one answers
503: the difference leaks whether a hash was anchored. Anchoring is not
secret (the topic itself is public), so this is accepted.
"""

import logging
import sqlite3
from enum import Enum
from typing import Optional, Sequence

from .consensus import ConsensusClient
from .errors import AuthorizationError, DependencyUnavailable, DocAnchorError, DuplicateProofError, InternalError
from .logging_config import audit_log
from .mirror import MirrorReconciler
from .organizations import Organization, OrganizationStore
from .proof_index import ProofIndex
from .proofs import AnchorResult, DocumentProof, ProofMessage, VerificationResult
from .registry import TrustRegistryClient
from .security import validate_content_hash, validate_identity, validate_signature
from .signatures import SignatureVerifier
from .util import hash_prefix, hex_to_bytes

logger = logging.getLogger(__name__)


class AnchorState(str, Enum):
    RECEIVED = "RECEIVED"
    SIGNATURE_VERIFIED = "SIGNATURE_VERIFIED"
    OWNERSHIP_VERIFIED = "OWNERSHIP_VERIFIED"
    DEDUP_CHECKED = "DEDUP_CHECKED"
    SUBMITTED = "SUBMITTED"
    INDEXED = "INDEXED"
    DONE = "DONE"
    FAILED = "FAILED"


_ORDER = [
    AnchorState.RECEIVED,
    AnchorState.SIGNATURE_VERIFIED,
    AnchorState.OWNERSHIP_VERIFIED,
    AnchorState.DEDUP_CHECKED,
    AnchorState.SUBMITTED,
    AnchorState.INDEXED,
    AnchorState.DONE,
]


class AnchorRun:
    """Tracks one anchor request through its states. Transitions only move forward."""

    def __init__(self, content_hash: str):
        self.content_hash = content_hash
        self.state = AnchorState.RECEIVED
        self.reason: Optional[str] = None

    def advance(self, state: AnchorState) -> None:
        if self.state is AnchorState.FAILED or _ORDER.index(state) != _ORDER.index(self.state) + 1:
            raise InternalError(f"Illegal anchor transition {self.state.value} -> {state.value}")
        self.state = state
        audit_log.anchor_state(self.content_hash, state.value)

    def fail(self, reason: str) -> None:
        self.state = AnchorState.FAILED
        self.reason = reason
        audit_log.anchor_state(self.content_hash, AnchorState.FAILED.value, reason)


class Orchestrator:
    """
    Composes the collaborators into the anchor and verify workflows.

    All collaborators are constructed once at process start and passed
    in; the orchestrator holds no per-request state.
    """

    def __init__(
        self,
        verifier: SignatureVerifier,
        consensus: ConsensusClient,
        reconciler: MirrorReconciler,
        registry: TrustRegistryClient,
        index: ProofIndex,
        topic_id: str,
        identity_prefixes: Sequence[str] = ("did:",),
        organizations: Optional[OrganizationStore] = None,
        claim_ttl: float = 120.0,
        claim_wait: float = 10.0
    ):
        self._verifier = verifier
        self._consensus = consensus
        self._reconciler = reconciler
        self._registry = registry
        self._index = index
        self._topic_id = topic_id
        self._prefixes = tuple(identity_prefixes)
        self._organizations = organizations
        self._claim_ttl = claim_ttl
        self._claim_wait = claim_wait

    @property
    def topic_id(self) -> str:
        return self._topic_id

    # ============================================================
    # Anchor
    # ============================================================

    def anchor(
        self,
        content_hash: str,
        identity: str,
        signature: str,
        organization: Optional[Organization]
    ) -> AnchorResult:
        """
        Anchor content_hash for identity.

        Returns AnchorResult(conflict=True) with the stored proof when the
        hash was already anchored. Raises ValidationError,
        AuthorizationError, DependencyUnavailable or ConsensusRejected.
        """
        content_hash = validate_content_hash(content_hash)
        identity = validate_identity(identity, self._prefixes)
        signature = validate_signature(signature)

        run = AnchorRun(content_hash)
        audit_log.anchor_request(content_hash, identity, organization.id if organization else None)

        if not self._verifier.verify(bytes.fromhex(content_hash), bytes.fromhex(signature), identity):
            run.fail("INVALID_SIGNATURE")
            raise AuthorizationError(
                "Signature verification failed. The signature is not valid for this document hash and DID.",
                code="INVALID_SIGNATURE"
            )
        run.advance(AnchorState.SIGNATURE_VERIFIED)

        self._check_ownership(run, identity, organization)
        run.advance(AnchorState.OWNERSHIP_VERIFIED)

        existing = self._index.find(content_hash)
        if existing is not None:
            return self._conflict(run, existing)
        run.advance(AnchorState.DEDUP_CHECKED)

        token = self._index.claim(content_hash, self._claim_ttl)
        if token is None:
            return self._await_winner(run)

        message = ProofMessage(content_hash=content_hash, issuer_identity=identity, signature=signature)
        submitted = False
        try:
            # A concurrent anchor may have finished between lookup and claim
            existing = self._index.find(content_hash)
            if existing is not None:
                return self._conflict(run, existing)
            receipt = self._consensus.submit(self._topic_id, message.encode())
            submitted = True
        except DocAnchorError as e:
            run.fail(e.code)
            audit_log.dependency_failure("consensus", e.message)
            raise
        finally:
            if not submitted:
                self._index.release(content_hash, token)
        run.advance(AnchorState.SUBMITTED)

        proof = DocumentProof(
            content_hash=content_hash,
            log_transaction_id=receipt.transaction_id,
            consensus_timestamp=receipt.consensus_timestamp,
            issuer_identity=identity,
        )
        try:
            stored = self._index.insert(proof, claim_token=token)
        except DuplicateProofError:
            # Lost the insert race: report the winner's proof
            self._index.release(content_hash, token)
            winner = self._index.find(content_hash)
            return self._conflict(run, winner)
        except sqlite3.Error as e:
            # The message is on the log but unindexed until reconciled
            logger.error(
                "Proof for %s submitted as %s but not indexed: %s",
                hash_prefix(content_hash), receipt.transaction_id, e
            )
            run.fail("INDEX_WRITE_FAILED")
            raise InternalError("Proof submitted but could not be indexed", code="INDEX_WRITE_FAILED") from e
        run.advance(AnchorState.INDEXED)
        run.advance(AnchorState.DONE)
        audit_log.anchor_decision(content_hash, "ANCHORED", stored.log_transaction_id, stored.consensus_timestamp)
        return AnchorResult(proof=stored)

    def _check_ownership(self, run: AnchorRun, identity: str, organization: Optional[Organization]) -> None:
        if organization is None or not organization.identity:
            run.fail("NO_ORGANIZATION_IDENTITY")
            raise AuthorizationError(
                "Your organization does not have a DID registered.",
                code="NO_ORGANIZATION_IDENTITY"
            )
        if organization.identity != identity:
            run.fail("IDENTITY_MISMATCH")
            audit_log.security_event(
                "IDENTITY_MISMATCH",
                severity="high",
                organization_id=organization.id,
                identity=identity,
            )
            raise AuthorizationError(
                "The provided DID does not belong to your organization.",
                code="IDENTITY_MISMATCH"
            )

    def _conflict(self, run: AnchorRun, existing: DocumentProof) -> AnchorResult:
        audit_log.anchor_decision(
            run.content_hash, "ALREADY_ANCHORED", existing.log_transaction_id, existing.consensus_timestamp
        )
        return AnchorResult(proof=existing, conflict=True)

    def _await_winner(self, run: AnchorRun) -> AnchorResult:
        winner = self._index.wait_for(run.content_hash, self._claim_wait)
        if winner is not None:
            return self._conflict(run, winner)
        run.fail("ANCHOR_IN_PROGRESS")
        raise DependencyUnavailable(
            "proof_index",
            "Another anchor for this document is in progress; retry later",
            code="ANCHOR_IN_PROGRESS"
        )

    # ============================================================
    # Verify
    # ============================================================

    def verify(self, content_hash: str) -> VerificationResult:
        """
        Verify content_hash from first principles.

        Absence of proof is an outcome, not an error. Raises
        ValidationError for a malformed hash and DependencyUnavailable
        if the mirror cannot be queried.
        """
        content_hash = validate_content_hash(content_hash)

        proof = self._index.find(content_hash)
        if proof is None:
            return self._not_verified(content_hash, "NOT_ANCHORED")

        # Newer messages for the same hash may come from other posters
        reason = None
        message = None
        for candidate in self._reconciler.payloads_by_hash(self._topic_id, content_hash):
            if candidate.issuer_identity != proof.issuer_identity:
                reason = reason or "ISSUER_MISMATCH"
                continue
            reason = self._check_payload(candidate)
            if reason is None:
                message = candidate
                break

        if message is None:
            if reason is None:
                audit_log.mirror_inconsistency(content_hash, self._topic_id)
                reason = "MIRROR_NOT_FOUND"
            return self._not_verified(content_hash, reason)

        trusted = self._registry.is_trusted(message.issuer_identity)
        result = VerificationResult.verified(
            proof=proof,
            signature=message.signature,
            is_trusted_issuer=trusted,
            organization_name=self._organization_name(message.issuer_identity),
        )
        audit_log.verify_outcome(content_hash, result.outcome.value)
        return result

    def _check_payload(self, message: ProofMessage) -> Optional[str]:
        hash_bytes = hex_to_bytes(message.content_hash)
        sig_bytes = hex_to_bytes(message.signature)
        if hash_bytes is None or sig_bytes is None:
            return "MALFORMED_PAYLOAD"
        if not self._verifier.verify(hash_bytes, sig_bytes, message.issuer_identity):
            return "SIGNATURE_INVALID"
        return None

    def _organization_name(self, identity: str) -> Optional[str]:
        if self._organizations is None:
            return None
        try:
            org = self._organizations.find_by_identity(identity)
        except sqlite3.Error as e:
            logger.warning("Organization lookup failed for %s: %s", identity, e)
            return None
        return org.name if org else None

    @staticmethod
    def _not_verified(content_hash: str, reason: str) -> VerificationResult:
        audit_log.verify_outcome(content_hash, "NOT_VERIFIED", reason)
        return VerificationResult.not_verified(reason)
