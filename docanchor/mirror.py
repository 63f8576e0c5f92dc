"""
Mirror reconciliation.

The consensus acknowledgement does not return the stored message, so
verification reads the payload back from a replicated, paginated read
index of the topic (a "mirror").

The reconciler scans pages newest-first and stops after max_pages. With
the default of one page only the most recent page_limit messages are
searchable: older proofs remain on the log but cannot be recovered
through this path. Widen MIRROR_MAX_PAGES, or index messages by hash at
submission time, before a topic outgrows that window.
"""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, List, Optional
from urllib.parse import urljoin

import requests

from .errors import DependencyUnavailable
from .proofs import MalformedMessageError, ProofMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MirrorMessage:
    topic_id: str
    sequence_number: int
    consensus_timestamp: str
    message: str  # base64 framing of the submitted bytes
    running_hash: Optional[str] = None

    def payload(self) -> bytes:
        return base64.b64decode(self.message, validate=True)


@dataclass
class MirrorPage:
    messages: List[MirrorMessage] = field(default_factory=list)
    next_cursor: Optional[str] = None


class MirrorSource(ABC):
    """Read-only, paginated, newest-first view of a topic's messages."""

    @abstractmethod
    def query(self, topic_id: str, limit: int, cursor: Optional[str] = None) -> MirrorPage:
        """
        Return up to limit messages in descending sequence order.

        cursor is the opaque next_cursor of a previous page. Raises
        DependencyUnavailable on transport failure.
        """


class MirrorNodeClient(MirrorSource):
    """
    REST client for a Hedera mirror node.

    GET {base_url}/api/v1/topics/{topic_id}/messages?limit=N&order=desc
    Follows links.next for subsequent pages.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def query(self, topic_id: str, limit: int, cursor: Optional[str] = None) -> MirrorPage:
        if cursor:
            url = urljoin(self._base_url + "/", cursor.lstrip("/"))
            params = None
        else:
            url = f"{self._base_url}/api/v1/topics/{topic_id}/messages"
            params = {"limit": limit, "order": "desc"}

        try:
            r = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as e:
            raise DependencyUnavailable("mirror", f"Mirror node query failed: {e}") from e
        if r.status_code == 404:
            return MirrorPage()
        if r.status_code >= 400:
            raise DependencyUnavailable("mirror", f"Mirror node query failed: {r.status_code}")

        try:
            body = r.json()
        except ValueError as e:
            raise DependencyUnavailable("mirror", "Mirror node returned invalid JSON") from e

        messages = []
        for m in body.get("messages") or []:
            try:
                messages.append(MirrorMessage(
                    topic_id=m.get("topic_id", topic_id),
                    sequence_number=int(m["sequence_number"]),
                    consensus_timestamp=m["consensus_timestamp"],
                    message=m["message"],
                    running_hash=m.get("running_hash"),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed mirror record on topic %s", topic_id)
        next_link = (body.get("links") or {}).get("next")
        return MirrorPage(messages=messages, next_cursor=next_link or None)


class MirrorReconciler:
    """Recovers the original ProofMessage for a content hash."""

    def __init__(self, source: MirrorSource, page_limit: int = 100, max_pages: int = 1):
        self._source = source
        self._page_limit = max(1, page_limit)
        self._max_pages = max(1, max_pages)

    @property
    def window(self) -> int:
        """Number of most recent messages searchable."""
        return self._page_limit * self._max_pages

    def payloads_by_hash(self, topic_id: str, content_hash: str, issuer: Optional[str] = None) -> Iterator[ProofMessage]:
        """
        Yield every message in the scan window whose hash matches,
        most recent first. With issuer set, messages naming any other
        identity are skipped.

        Anyone able to post to the topic can append a message for a hash
        they did not anchor, so callers must not stop at the first match.
        """
        wanted = content_hash.lower()
        cursor = None
        for _ in range(self._max_pages):
            page = self._source.query(topic_id, self._page_limit, cursor)
            for record in page.messages:
                message = self._parse(record)
                if message is None or message.content_hash.lower() != wanted:
                    continue
                if issuer is not None and message.issuer_identity != issuer:
                    continue
                yield message
            if not page.next_cursor or not page.messages:
                return
            cursor = page.next_cursor

    def find_payload_by_hash(
        self,
        topic_id: str,
        content_hash: str,
        issuer: Optional[str] = None
    ) -> Optional[ProofMessage]:
        """Most recent matching message, or None if none is within the window."""
        return next(self.payloads_by_hash(topic_id, content_hash, issuer), None)

    @staticmethod
    def _parse(record: MirrorMessage) -> Optional[ProofMessage]:
        try:
            return ProofMessage.decode(record.payload())
        except (binascii.Error, ValueError, MalformedMessageError):
            # Topics may carry foreign messages
            return None
