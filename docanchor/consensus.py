"""
Consensus log backends.

A backend submits a proof payload to an append-only topic and returns
the transaction id and consensus timestamp once the log reports
finality. The acknowledgement never echoes the payload.

A timeout is ambiguous: the message may have reached consensus even
though no acknowledgement arrived. Callers must check the proof index
before resubmitting.
"""

import hashlib
import os
import sqlite3
import time
from abc import ABC, abstractmethod
from typing import Optional

import requests

from .db import Database
from .errors import ConsensusRejected, DependencyUnavailable
from .mirror import MirrorMessage, MirrorPage, MirrorSource
from .proofs import SubmissionReceipt
from .util import b64e, consensus_timestamp, parse_consensus_timestamp

MAX_MESSAGE_BYTES = 1024
SUCCESS = "SUCCESS"


class ConsensusClient(ABC):

    @abstractmethod
    def submit(self, topic_id: str, payload: bytes) -> SubmissionReceipt:
        """
        Submit payload and wait for finality.

        Raises DependencyUnavailable on network failure or timeout and
        ConsensusRejected on a non-success status.
        """


class HttpConsensusGateway(ConsensusClient):
    """
    Submits through an HTTP consensus gateway.

    POST {base_url}/api/v1/topics/{topic_id}/messages  {"message": <base64>}
    -> {"status": "SUCCESS", "transactionId": ..., "consensusTimestamp": ...,
        "sequenceNumber": ...}
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    def submit(self, topic_id: str, payload: bytes) -> SubmissionReceipt:
        url = f"{self._base_url}/api/v1/topics/{topic_id}/messages"
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            r = self._session.post(url, json={"message": b64e(payload)}, headers=headers, timeout=self._timeout)
        except requests.Timeout as e:
            raise DependencyUnavailable(
                "consensus",
                "Consensus submission timed out; outcome unknown",
                code="CONSENSUS_TIMEOUT"
            ) from e
        except requests.RequestException as e:
            raise DependencyUnavailable("consensus", f"Consensus submission failed: {e}") from e

        if r.status_code >= 500:
            raise DependencyUnavailable("consensus", f"Consensus gateway returned {r.status_code}")

        try:
            body = r.json()
        except ValueError as e:
            raise DependencyUnavailable("consensus", "Consensus gateway returned invalid JSON") from e

        status = str(body.get("status", "UNKNOWN")).upper()
        if r.status_code >= 400 or status != SUCCESS:
            raise ConsensusRejected(status if status != SUCCESS else f"HTTP_{r.status_code}", body.get("message"))

        tx_id = body.get("transactionId")
        ts = body.get("consensusTimestamp")
        if not tx_id or not ts:
            raise DependencyUnavailable("consensus", "No consensus timestamp received")
        seq = body.get("sequenceNumber")
        return SubmissionReceipt(
            transaction_id=str(tx_id),
            consensus_timestamp=str(ts),
            sequence_number=int(seq) if seq is not None else None,
        )


class LocalConsensusLog(ConsensusClient, MirrorSource):
    """
    Append-only topic log in SQLite.

    Each message gets the next sequence number on its topic, a strictly
    increasing consensus timestamp and a running hash chaining it to its
    predecessor. The same instance serves the mirror read path.
    """

    def __init__(self, db: Database, operator_id: str = "0.0.2"):
        self._db = db
        self._operator_id = operator_id

    @staticmethod
    def running_hash(prev: Optional[str], topic_id: str, seq: int, ts: str, message: bytes) -> str:
        h = hashlib.sha384()
        h.update(bytes.fromhex(prev) if prev else b"")
        h.update(topic_id.encode("utf-8"))
        h.update(seq.to_bytes(8, "big"))
        h.update(ts.encode("ascii"))
        h.update(message)
        return h.hexdigest()

    def submit(self, topic_id: str, payload: bytes) -> SubmissionReceipt:
        if len(payload) > MAX_MESSAGE_BYTES:
            raise ConsensusRejected("MESSAGE_SIZE_TOO_BIG")

        conn = self._db.connection()
        try:
            # Serialize sequence allocation across writers
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT sequence_number, consensus_timestamp, running_hash FROM consensus_messages "
                "WHERE topic_id=? ORDER BY sequence_number DESC LIMIT 1",
                (topic_id,)
            ).fetchone()
            prev_seq = row["sequence_number"] if row else 0
            prev_ns = parse_consensus_timestamp(row["consensus_timestamp"]) if row else 0
            prev_hash = row["running_hash"] if row else None

            seq = prev_seq + 1
            ts = consensus_timestamp(max(time.time_ns(), prev_ns + 1))
            valid_start = consensus_timestamp(time.time_ns())
            tx_id = f"{self._operator_id}@{valid_start}-{os.urandom(4).hex()}"
            running = self.running_hash(prev_hash, topic_id, seq, ts, payload)

            conn.execute(
                "INSERT INTO consensus_messages(topic_id, sequence_number, consensus_timestamp, "
                "transaction_id, message, running_hash) VALUES(?,?,?,?,?,?)",
                (topic_id, seq, ts, tx_id, payload, running)
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DependencyUnavailable("consensus", f"Local consensus log write failed: {e}") from e

        return SubmissionReceipt(transaction_id=tx_id, consensus_timestamp=ts, sequence_number=seq)

    def query(self, topic_id: str, limit: int, cursor: Optional[str] = None) -> MirrorPage:
        params = [topic_id]
        sql = (
            "SELECT topic_id, sequence_number, consensus_timestamp, message, running_hash "
            "FROM consensus_messages WHERE topic_id=?"
        )
        if cursor:
            sql += " AND sequence_number<?"
            params.append(int(cursor))
        sql += " ORDER BY sequence_number DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection().execute(sql, params).fetchall()
        messages = [
            MirrorMessage(
                topic_id=row["topic_id"],
                sequence_number=row["sequence_number"],
                consensus_timestamp=row["consensus_timestamp"],
                message=b64e(bytes(row["message"])),
                running_hash=row["running_hash"],
            )
            for row in rows
        ]
        next_cursor = None
        if len(messages) == limit and messages[-1].sequence_number > 1:
            next_cursor = str(messages[-1].sequence_number)
        return MirrorPage(messages=messages, next_cursor=next_cursor)

    def verify_chain(self, topic_id: str) -> bool:
        """Recompute the running hash chain of a topic from the first message."""
        rows = self._db.connection().execute(
            "SELECT sequence_number, consensus_timestamp, message, running_hash FROM consensus_messages "
            "WHERE topic_id=? ORDER BY sequence_number ASC",
            (topic_id,)
        ).fetchall()
        prev = None
        for expected_seq, row in enumerate(rows, start=1):
            if row["sequence_number"] != expected_seq:
                return False
            running = self.running_hash(prev, topic_id, row["sequence_number"], row["consensus_timestamp"], bytes(row["message"]))
            if running != row["running_hash"]:
                return False
            prev = running
        return True
