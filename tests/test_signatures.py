import logging

import pytest

from docanchor.hashing import sha256_bytes
from docanchor.identity import DidDocument
from docanchor.keys import IssuerKey
from docanchor.signatures import FailureReason, SignatureVerifier

from conftest import FakeResolver


@pytest.fixture
def key():
    return IssuerKey.generate()


@pytest.fixture
def resolver(key):
    return FakeResolver(key)


@pytest.fixture
def verifier(resolver):
    return SignatureVerifier(resolver)


def _sign(key, digest: bytes) -> bytes:
    return bytes.fromhex(key.sign_hash(digest.hex()))


def test_valid_signature(verifier, key):
    digest = sha256_bytes(b"hello")
    check = verifier.check(digest, _sign(key, digest), key.identity)

    assert check.valid
    assert check.reason is None
    assert check.method_id == f"{key.identity}#key-1"
    assert verifier.verify(digest, _sign(key, digest), key.identity) is True


def test_any_bit_flip_in_signature_fails(verifier, key):
    digest = sha256_bytes(b"hello")
    sig = bytearray(_sign(key, digest))
    for i in (0, 31, 63):
        tampered = bytearray(sig)
        tampered[i] ^= 0x80
        assert verifier.check(digest, bytes(tampered), key.identity).reason is FailureReason.BAD_SIGNATURE


def test_bit_flip_in_hash_fails(verifier, key):
    digest = sha256_bytes(b"hello")
    sig = _sign(key, digest)
    tampered = bytearray(digest)
    tampered[5] ^= 0x01
    assert verifier.verify(bytes(tampered), sig, key.identity) is False


def test_length_checks_need_no_resolution(verifier, resolver, key):
    digest = sha256_bytes(b"hello")

    assert verifier.check(digest[:31], _sign(key, digest), key.identity).reason is FailureReason.BAD_HASH_LENGTH
    assert verifier.check(digest, b"\x00" * 63, key.identity).reason is FailureReason.BAD_SIGNATURE_LENGTH
    assert resolver.calls == 0


def test_unknown_identity(verifier):
    stranger = IssuerKey.generate()
    digest = sha256_bytes(b"hello")
    assert verifier.check(digest, _sign(stranger, digest), stranger.identity).reason is FailureReason.IDENTITY_NOT_FOUND


def test_resolution_failure(verifier, resolver, key):
    resolver.unavailable = True
    digest = sha256_bytes(b"hello")
    assert verifier.check(digest, _sign(key, digest), key.identity).reason is FailureReason.RESOLUTION_FAILED


def test_document_without_ed25519_key(verifier, resolver, key):
    resolver.documents[key.identity] = DidDocument(id=key.identity, verification_methods=[])
    digest = sha256_bytes(b"hello")
    assert verifier.check(digest, _sign(key, digest), key.identity).reason is FailureReason.NO_VERIFICATION_METHOD


def test_malformed_published_key(verifier, resolver, key):
    method = dict(key.verification_method(), publicKeyMultibase="z111")
    resolver.documents[key.identity] = DidDocument.from_dict({"id": key.identity, "verificationMethod": [method]})
    digest = sha256_bytes(b"hello")
    assert verifier.check(digest, _sign(key, digest), key.identity).reason is FailureReason.MALFORMED_KEY


def test_failures_are_audited_without_key_material(verifier, key, caplog):
    caplog.set_level(logging.DEBUG, logger="docanchor.audit")
    digest = sha256_bytes(b"hello")
    sig = bytearray(_sign(key, digest))
    sig[0] ^= 0x01

    verifier.verify(digest, bytes(sig), key.identity)

    events = [r.extra_fields for r in caplog.records if getattr(r, "extra_fields", None)]
    failed = [e for e in events if e["event_type"] == "SIGNATURE_CHECK_FAILED"]
    assert failed
    assert failed[-1]["reason"] == "BAD_SIGNATURE"
    assert digest.hex() not in str(failed[-1])
    assert bytes(sig).hex() not in str(failed[-1])
