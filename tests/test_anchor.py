"""
Anchor workflow tests.

Invariants exercised here:
    - nothing is resolved, submitted or written for malformed input
    - the signature is checked before ownership
    - each content hash reaches the consensus log at most once
"""

import sqlite3
import threading

import pytest

from docanchor.errors import AuthorizationError, DependencyUnavailable, InternalError, ValidationError
from docanchor.hashing import sha256_hex
from docanchor.keys import IssuerKey
from docanchor.orchestrator import AnchorRun, AnchorState
from docanchor.proofs import DocumentProof

from conftest import HELLO_HASH


def _flip_first_bit(hex_str: str) -> str:
    raw = bytearray(bytes.fromhex(hex_str))
    raw[0] ^= 0x01
    return raw.hex()


def test_anchor_submits_and_indexes(harness):
    result = harness.anchor(HELLO_HASH)

    assert result.conflict is False
    assert result.proof.content_hash == HELLO_HASH
    assert result.proof.issuer_identity == harness.issuer.identity
    assert result.proof.log_transaction_id
    assert harness.consensus.calls == 1
    assert harness.index.find(HELLO_HASH) == result.proof


def test_anchor_accepts_uppercase_hash(harness):
    result = harness.orchestrator.anchor(
        HELLO_HASH.upper(), harness.issuer.identity, harness.issuer.sign_hash(HELLO_HASH), harness.organization
    )
    assert result.proof.content_hash == HELLO_HASH


@pytest.mark.parametrize("bad_hash", ["", "abc", "zz" * 32, HELLO_HASH + "00"])
def test_malformed_hash_rejected_before_any_network(harness, bad_hash):
    with pytest.raises(ValidationError):
        harness.orchestrator.anchor(bad_hash, harness.issuer.identity, "00" * 64, harness.organization)
    assert harness.resolver.calls == 0
    assert harness.consensus.calls == 0


def test_malformed_identity_rejected(harness):
    with pytest.raises(ValidationError) as exc:
        harness.orchestrator.anchor(HELLO_HASH, "mailto:someone", harness.issuer.sign_hash(HELLO_HASH), harness.organization)
    assert exc.value.field == "did"
    assert harness.resolver.calls == 0


def test_short_signature_rejected(harness):
    with pytest.raises(ValidationError):
        harness.orchestrator.anchor(HELLO_HASH, harness.issuer.identity, "ab" * 63, harness.organization)
    assert harness.consensus.calls == 0


def test_invalid_signature_rejected(harness):
    bad = _flip_first_bit(harness.issuer.sign_hash(HELLO_HASH))
    with pytest.raises(AuthorizationError) as exc:
        harness.orchestrator.anchor(HELLO_HASH, harness.issuer.identity, bad, harness.organization)

    assert exc.value.code == "INVALID_SIGNATURE"
    assert exc.value.status_code == 403
    assert harness.consensus.calls == 0
    assert harness.index.find(HELLO_HASH) is None


def test_signature_for_other_hash_rejected(harness):
    other = sha256_hex("world")
    with pytest.raises(AuthorizationError) as exc:
        harness.orchestrator.anchor(HELLO_HASH, harness.issuer.identity, harness.issuer.sign_hash(other), harness.organization)
    assert exc.value.code == "INVALID_SIGNATURE"


def test_unresolvable_identity_is_an_invalid_signature(harness):
    stranger = IssuerKey.generate()
    with pytest.raises(AuthorizationError) as exc:
        harness.anchor(HELLO_HASH, key=stranger)
    assert exc.value.code == "INVALID_SIGNATURE"


def test_resolver_outage_is_an_invalid_signature(harness):
    harness.resolver.unavailable = True
    with pytest.raises(AuthorizationError) as exc:
        harness.anchor(HELLO_HASH)
    assert exc.value.code == "INVALID_SIGNATURE"
    assert harness.consensus.calls == 0


def test_signature_checked_before_ownership(harness):
    # Identity belongs to nobody and the signature is bad: the signature failure wins
    stranger = IssuerKey.generate()
    harness.resolver.add(stranger)
    bad = _flip_first_bit(stranger.sign_hash(HELLO_HASH))
    with pytest.raises(AuthorizationError) as exc:
        harness.orchestrator.anchor(HELLO_HASH, stranger.identity, bad, harness.organization)
    assert exc.value.code == "INVALID_SIGNATURE"


def test_valid_signature_for_foreign_identity_rejected(harness):
    other = IssuerKey.generate()
    harness.resolver.add(other)

    with pytest.raises(AuthorizationError) as exc:
        harness.anchor(HELLO_HASH, key=other)

    assert exc.value.code == "IDENTITY_MISMATCH"
    assert harness.consensus.calls == 0
    assert harness.index.find(HELLO_HASH) is None


def test_organization_without_identity_rejected(harness):
    org, _ = harness.services.organizations.create("No Identity Inc")
    with pytest.raises(AuthorizationError) as exc:
        harness.anchor(HELLO_HASH, organization=org)
    assert exc.value.code == "NO_ORGANIZATION_IDENTITY"


def test_second_anchor_returns_existing_proof(harness):
    first = harness.anchor(HELLO_HASH)
    second = harness.anchor(HELLO_HASH)

    assert second.conflict is True
    assert second.proof == first.proof
    assert harness.consensus.calls == 1


def test_consensus_failure_releases_claim(harness):
    harness.consensus.error = DependencyUnavailable("consensus", "gateway down")

    with pytest.raises(DependencyUnavailable) as exc:
        harness.anchor(HELLO_HASH)

    assert exc.value.retryable is True
    assert harness.index.find(HELLO_HASH) is None
    assert harness.index.is_claimed(HELLO_HASH) is False

    harness.consensus.error = None
    result = harness.anchor(HELLO_HASH)
    assert result.conflict is False
    assert harness.consensus.calls == 2


def test_live_claim_without_proof_reports_in_progress(make_harness):
    harness = make_harness(anchor_claim_wait=0.1)
    token = harness.index.claim(HELLO_HASH, 60)
    assert token is not None

    with pytest.raises(DependencyUnavailable) as exc:
        harness.anchor(HELLO_HASH)

    assert exc.value.code == "ANCHOR_IN_PROGRESS"
    assert harness.consensus.calls == 0


def test_expired_claim_is_taken_over(harness):
    assert harness.index.claim(HELLO_HASH, -1) is not None

    result = harness.anchor(HELLO_HASH)

    assert result.conflict is False
    assert harness.index.is_claimed(HELLO_HASH) is False


def test_concurrent_anchors_submit_once(make_harness):
    harness = make_harness(delay=0.2)
    workers = 8
    barrier = threading.Barrier(workers)
    results, errors = [], []
    lock = threading.Lock()

    def run():
        barrier.wait()
        try:
            r = harness.anchor(HELLO_HASH)
        except Exception as e:
            with lock:
                errors.append(e)
            return
        with lock:
            results.append(r)

    threads = [threading.Thread(target=run) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(results) == workers
    assert harness.consensus.calls == 1
    assert sum(1 for r in results if not r.conflict) == 1
    assert len({r.proof.log_transaction_id for r in results}) == 1
    assert harness.index.count() == 1


class IndexedDuringSubmit:
    """Consensus backend that lets another writer index the hash first."""

    def __init__(self, backend, index, winner):
        self.backend = backend
        self.index = index
        self.winner = winner

    def submit(self, topic_id, payload):
        receipt = self.backend.submit(topic_id, payload)
        self.index.insert(self.winner)
        return receipt


def test_losing_the_insert_race_reports_the_winner(harness):
    winner = DocumentProof(
        content_hash=HELLO_HASH,
        log_transaction_id="winner-tx",
        consensus_timestamp="1700000000.000000001",
        issuer_identity=harness.issuer.identity,
    )
    harness.consensus.backend = IndexedDuringSubmit(harness.consensus.backend, harness.index, winner)

    result = harness.anchor(HELLO_HASH)

    assert result.conflict is True
    assert result.proof.log_transaction_id == "winner-tx"
    assert harness.index.find(HELLO_HASH).log_transaction_id == "winner-tx"
    assert harness.index.is_claimed(HELLO_HASH) is False


def test_index_failure_after_submit_is_internal(harness, monkeypatch):
    def broken_insert(proof, claim_token=None):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(harness.index, "insert", broken_insert)

    with pytest.raises(InternalError) as exc:
        harness.anchor(HELLO_HASH)

    assert exc.value.code == "INDEX_WRITE_FAILED"
    assert harness.consensus.calls == 1
    assert harness.index.find(HELLO_HASH) is None
    # The claim stays until it expires so the hash is not submitted twice
    assert harness.index.is_claimed(HELLO_HASH) is True


def test_anchor_run_moves_forward_only():
    run = AnchorRun(HELLO_HASH)
    run.advance(AnchorState.SIGNATURE_VERIFIED)

    with pytest.raises(InternalError):
        run.advance(AnchorState.SUBMITTED)

    run.fail("BOOM")
    assert run.state is AnchorState.FAILED
    with pytest.raises(InternalError):
        run.advance(AnchorState.OWNERSHIP_VERIFIED)
