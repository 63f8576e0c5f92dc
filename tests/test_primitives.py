"""
Hashing, wire format, key encoding and timestamp tests.
"""

import io
import os
import tempfile
import json
import unittest

from docanchor.hashing import hash_file, hash_stream, is_content_hash, sha256_bytes, sha256_hex
from docanchor.keys import (
    IssuerKey,
    MalformedKeyError,
    did_key_for,
    ed25519_from_multibase,
    public_key_multibase,
    verify_ed25519,
)
from docanchor.proofs import MalformedMessageError, ProofMessage
from docanchor.util import consensus_timestamp, hash_prefix, mask_sensitive, parse_consensus_timestamp

HELLO_HASH = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


class TestHashing(unittest.TestCase):

    def test_known_vector(self):
        self.assertEqual(sha256_hex("hello"), HELLO_HASH)
        self.assertEqual(sha256_hex(b"hello"), HELLO_HASH)
        self.assertEqual(sha256_bytes(b"hello").hex(), HELLO_HASH)

    def test_stream_matches_one_shot(self):
        data = b"x" * (3 * 1024 * 1024 + 17)
        self.assertEqual(hash_stream(io.BytesIO(data)), sha256_hex(data))

    def test_file(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "doc.txt")
            with open(path, "wb") as f:
                f.write(b"hello")
            self.assertEqual(hash_file(path), HELLO_HASH)

    def test_is_content_hash(self):
        self.assertTrue(is_content_hash(HELLO_HASH))
        self.assertTrue(is_content_hash(HELLO_HASH.upper()))
        self.assertFalse(is_content_hash(HELLO_HASH[:-1]))
        self.assertFalse(is_content_hash("g" * 64))
        self.assertFalse(is_content_hash(None))


class TestProofMessage(unittest.TestCase):

    def test_wire_format_is_compact_and_ordered(self):
        message = ProofMessage("ab", "did:key:z6Mk", "cd")
        self.assertEqual(message.encode(), b'{"hash":"ab","did":"did:key:z6Mk","signature":"cd"}')

    def test_decode_ignores_extra_fields_and_order(self):
        data = json.dumps({"signature": "cd", "extra": 1, "did": "did:x", "hash": "ab"}).encode()
        self.assertEqual(ProofMessage.decode(data), ProofMessage("ab", "did:x", "cd"))

    def test_decode_rejects_foreign_payloads(self):
        for data in (b"", b"not json", b"[1,2]", b'{"hash":"ab","did":"x"}', b'{"hash":1,"did":"x","signature":"y"}'):
            with self.assertRaises(MalformedMessageError):
                ProofMessage.decode(data)


class TestKeys(unittest.TestCase):

    def setUp(self):
        self.key = IssuerKey.generate()

    def test_did_key_prefix(self):
        self.assertTrue(self.key.identity.startswith("did:key:z6Mk"))
        self.assertEqual(did_key_for(self.key.verify_key), self.key.identity)

    def test_multibase_round_trip(self):
        encoded = public_key_multibase(self.key.verify_key)
        self.assertEqual(ed25519_from_multibase(encoded), self.key.verify_key)

    def test_multibase_rejects_other_bases(self):
        with self.assertRaises(MalformedKeyError):
            ed25519_from_multibase("f" + self.key.verify_key.hex())

    def test_signature_over_raw_digest(self):
        sig = self.key.sign_hash(HELLO_HASH)
        self.assertEqual(len(sig), 128)
        self.assertTrue(verify_ed25519(bytes.fromhex(HELLO_HASH), bytes.fromhex(sig), self.key.verify_key))
        # Not over the hex text
        self.assertFalse(verify_ed25519(HELLO_HASH.encode(), bytes.fromhex(sig), self.key.verify_key))

    def test_key_file_round_trip(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "issuer.json")
            self.key.to_file(path)
            loaded = IssuerKey.from_file(path)
        self.assertEqual(loaded.identity, self.key.identity)
        self.assertEqual(loaded.sign_hash(HELLO_HASH), self.key.sign_hash(HELLO_HASH))


class TestUtil(unittest.TestCase):

    def test_consensus_timestamp_format(self):
        self.assertEqual(consensus_timestamp(1_700_000_000_000_000_042), "1700000000.000000042")
        self.assertEqual(parse_consensus_timestamp("1700000000.000000042"), 1_700_000_000_000_000_042)
        self.assertEqual(parse_consensus_timestamp("1700000000.5"), 1_700_000_000_500_000_000)

    def test_hash_prefix(self):
        self.assertEqual(hash_prefix(HELLO_HASH), HELLO_HASH[:12] + "…")
        self.assertEqual(hash_prefix("abc"), "abc")
        self.assertEqual(hash_prefix(None), "")

    def test_mask_sensitive(self):
        self.assertEqual(mask_sensitive("secretkey"), "*****tkey")
        self.assertEqual(mask_sensitive("abc"), "***")


if __name__ == "__main__":
    unittest.main()
