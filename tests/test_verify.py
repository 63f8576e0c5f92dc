"""
Verification workflow tests.

A document verifies only when its proof is recovered from the mirror and
the signature checks out against the issuer's currently resolved key.
"""

import pytest

from docanchor.errors import DependencyUnavailable, ValidationError
from docanchor.hashing import sha256_hex
from docanchor.keys import IssuerKey
from docanchor.mirror import MirrorSource
from docanchor.proofs import DocumentProof, ProofMessage, VerificationOutcome

from conftest import HELLO_HASH, did_document


class DownMirror(MirrorSource):

    def query(self, topic_id, limit, cursor=None):
        raise DependencyUnavailable("mirror", "mirror down")


def test_unknown_hash_not_verified(harness):
    result = harness.orchestrator.verify(HELLO_HASH)

    assert result.outcome is VerificationOutcome.NOT_VERIFIED
    assert result.proof is None
    assert result.reason == "NOT_ANCHORED"


def test_malformed_hash_rejected(harness):
    with pytest.raises(ValidationError):
        harness.orchestrator.verify("not-a-hash")


def test_anchored_hash_verifies(harness):
    anchored = harness.anchor(HELLO_HASH)

    result = harness.orchestrator.verify(HELLO_HASH)

    assert result.is_verified()
    assert result.proof == anchored.proof
    assert result.signature == harness.issuer.sign_hash(HELLO_HASH)
    assert result.is_trusted_issuer is False
    assert result.organization_name == "Acme University"


def test_trusted_issuer_flagged(harness):
    harness.registry.trusted.add(harness.issuer.identity)
    harness.anchor(HELLO_HASH)

    assert harness.orchestrator.verify(HELLO_HASH).is_trusted_issuer is True


def test_registry_outage_does_not_block_verification(harness):
    harness.registry.trusted.add(harness.issuer.identity)
    harness.registry.unavailable = True
    harness.anchor(HELLO_HASH)

    result = harness.orchestrator.verify(HELLO_HASH)

    assert result.is_verified()
    assert result.is_trusted_issuer is False


def test_rotated_key_invalidates_proof(harness):
    harness.anchor(HELLO_HASH)

    rotated = IssuerKey(identity=harness.issuer.identity, signing_key=IssuerKey.generate().signing_key)
    harness.resolver.documents[rotated.identity] = did_document(rotated)

    result = harness.orchestrator.verify(HELLO_HASH)
    assert result.outcome is VerificationOutcome.NOT_VERIFIED
    assert result.reason == "SIGNATURE_INVALID"


def test_deactivated_identity_invalidates_proof(harness):
    harness.anchor(HELLO_HASH)
    del harness.resolver.documents[harness.issuer.identity]

    assert harness.orchestrator.verify(HELLO_HASH).is_verified() is False


def test_index_row_without_log_message_not_verified(harness):
    harness.index.insert(DocumentProof(
        content_hash=HELLO_HASH,
        log_transaction_id="0.0.2@1700000000.000000000-00000000",
        consensus_timestamp="1700000000.000000001",
        issuer_identity=harness.issuer.identity,
    ))

    result = harness.orchestrator.verify(HELLO_HASH)
    assert result.outcome is VerificationOutcome.NOT_VERIFIED
    assert result.reason == "MIRROR_NOT_FOUND"


def test_log_issuer_must_match_index(harness):
    other = IssuerKey.generate()
    harness.resolver.add(other)
    harness.log.submit(
        harness.settings.topic_id,
        ProofMessage(HELLO_HASH, other.identity, other.sign_hash(HELLO_HASH)).encode()
    )
    harness.index.insert(DocumentProof(
        content_hash=HELLO_HASH,
        log_transaction_id="0.0.2@1700000000.000000000-00000000",
        consensus_timestamp="1700000000.000000001",
        issuer_identity=harness.issuer.identity,
    ))

    result = harness.orchestrator.verify(HELLO_HASH)
    assert result.reason == "ISSUER_MISMATCH"


def test_foreign_messages_on_topic_are_skipped(harness):
    harness.anchor(HELLO_HASH)
    harness.log.submit(harness.settings.topic_id, b"not a proof")
    harness.log.submit(harness.settings.topic_id, b'{"hash": 1}')

    assert harness.orchestrator.verify(HELLO_HASH).is_verified()


def test_mirror_window_limits_recoverable_proofs(make_harness):
    harness = make_harness(mirror_page_limit=2, mirror_max_pages=1)
    hashes = [sha256_hex(f"doc-{i}") for i in range(3)]
    for h in hashes:
        harness.anchor(h)

    # The oldest proof has scrolled out of the single-page window
    assert harness.orchestrator.verify(hashes[0]).reason == "MIRROR_NOT_FOUND"
    assert harness.orchestrator.verify(hashes[1]).is_verified()
    assert harness.orchestrator.verify(hashes[2]).is_verified()


def test_wider_mirror_window_recovers_older_proofs(make_harness):
    harness = make_harness(mirror_page_limit=2, mirror_max_pages=2)
    hashes = [sha256_hex(f"doc-{i}") for i in range(3)]
    for h in hashes:
        harness.anchor(h)

    assert harness.orchestrator.verify(hashes[0]).is_verified()


def test_mirror_outage_propagates(make_harness):
    harness = make_harness(mirror=DownMirror())
    harness.anchor(HELLO_HASH)

    with pytest.raises(DependencyUnavailable):
        harness.orchestrator.verify(HELLO_HASH)


def test_later_post_by_another_identity_does_not_shadow_proof(harness):
    harness.anchor(HELLO_HASH)
    squatter = IssuerKey.generate()
    harness.resolver.add(squatter)
    harness.log.submit(
        harness.settings.topic_id,
        ProofMessage(HELLO_HASH, squatter.identity, squatter.sign_hash(HELLO_HASH)).encode()
    )

    result = harness.orchestrator.verify(HELLO_HASH)

    assert result.is_verified()
    assert result.proof.issuer_identity == harness.issuer.identity
    assert result.signature == harness.issuer.sign_hash(HELLO_HASH)


def test_later_forged_post_in_issuers_name_does_not_shadow_proof(harness):
    harness.anchor(HELLO_HASH)
    harness.log.submit(
        harness.settings.topic_id,
        ProofMessage(HELLO_HASH, harness.issuer.identity, "00" * 64).encode()
    )

    assert harness.orchestrator.verify(HELLO_HASH).is_verified()


def test_unanchored_hash_answers_during_mirror_outage(make_harness):
    harness = make_harness(mirror=DownMirror())

    assert harness.orchestrator.verify(HELLO_HASH).reason == "NOT_ANCHORED"
