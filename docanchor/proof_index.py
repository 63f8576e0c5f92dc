"""
Proof index: content hash -> anchoring metadata.

A row exists only after consensus submission succeeded for that hash.
Rows are never updated or deleted. The PRIMARY KEY on content_hash is
what resolves concurrent anchors of the same document.
"""

import sqlite3
import time
from datetime import datetime
from typing import Optional

from .db import Database
from .errors import DuplicateProofError
from .proofs import DocumentProof
from .util import generate_id


def _parse_created_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def _row_to_proof(row: sqlite3.Row) -> DocumentProof:
    return DocumentProof(
        content_hash=row['content_hash'],
        log_transaction_id=row['log_transaction_id'],
        consensus_timestamp=row['consensus_timestamp'],
        issuer_identity=row['issuer_identity'],
        created_at=_parse_created_at(row['created_at']),
    )


class ProofIndex:

    def __init__(self, db: Database, poll_interval: float = 0.05):
        self._db = db
        self._poll_interval = poll_interval

    def find(self, content_hash: str) -> Optional[DocumentProof]:
        cur = self._db.connection().execute(
            "SELECT content_hash, log_transaction_id, consensus_timestamp, issuer_identity, created_at "
            "FROM document_proofs WHERE content_hash=?",
            (content_hash,)
        )
        row = cur.fetchone()
        return _row_to_proof(row) if row else None

    def insert(self, proof: DocumentProof, claim_token: Optional[str] = None) -> DocumentProof:
        """
        Persist a proof and drop the caller's claim in one transaction.

        Raises DuplicateProofError if the hash is already indexed; the
        caller reports the existing row instead.
        """
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    "INSERT INTO document_proofs(content_hash, log_transaction_id, consensus_timestamp, issuer_identity) "
                    "VALUES(?,?,?,?)",
                    (proof.content_hash, proof.log_transaction_id, proof.consensus_timestamp, proof.issuer_identity)
                )
                if claim_token:
                    conn.execute(
                        "DELETE FROM anchor_claims WHERE content_hash=? AND claim_token=?",
                        (proof.content_hash, claim_token)
                    )
        except sqlite3.IntegrityError as e:
            raise DuplicateProofError(proof.content_hash) from e
        stored = self.find(proof.content_hash)
        return stored if stored else proof

    # ============================================================
    # Submission claims
    # ============================================================

    def claim(self, content_hash: str, ttl_seconds: float) -> Optional[str]:
        """
        Reserve the right to submit content_hash to the consensus log.

        Returns a claim token, or None if another live claim holds the
        hash. Claims past their expiry are taken over; they belong to
        anchors that crashed between submission and indexing.
        """
        token = generate_id()
        now = time.time()
        expires_at = now + ttl_seconds
        try:
            with self._db.transaction() as conn:
                conn.execute(
                    "INSERT INTO anchor_claims(content_hash, claim_token, expires_at) VALUES(?,?,?)",
                    (content_hash, token, expires_at)
                )
            return token
        except sqlite3.IntegrityError:
            pass

        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE anchor_claims SET claim_token=?, expires_at=? WHERE content_hash=? AND expires_at<?",
                (token, expires_at, content_hash, now)
            )
            taken_over = cur.rowcount == 1
        return token if taken_over else None

    def release(self, content_hash: str, claim_token: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM anchor_claims WHERE content_hash=? AND claim_token=?",
                (content_hash, claim_token)
            )

    def is_claimed(self, content_hash: str) -> bool:
        cur = self._db.connection().execute(
            "SELECT 1 FROM anchor_claims WHERE content_hash=? AND expires_at>=?",
            (content_hash, time.time())
        )
        return cur.fetchone() is not None

    def wait_for(self, content_hash: str, timeout: float) -> Optional[DocumentProof]:
        """
        Poll for a proof being written by a concurrent anchor.

        Stops early once the competing claim is gone without a proof.
        """
        deadline = time.monotonic() + timeout
        while True:
            proof = self.find(content_hash)
            if proof is not None:
                return proof
            if time.monotonic() >= deadline or not self.is_claimed(content_hash):
                return self.find(content_hash)
            time.sleep(self._poll_interval)

    def count(self) -> int:
        cur = self._db.connection().execute("SELECT COUNT(*) AS cnt FROM document_proofs")
        return cur.fetchone()['cnt']
