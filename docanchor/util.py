"""
Utility functions for docanchor.

Provides encoding helpers, consensus timestamp formatting and
log-safe truncation of identifiers.
"""

import base64
import secrets
import time
from datetime import datetime, timezone
from typing import Optional, Union


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'), validate=True)


def b64url_decode(s: str) -> bytes:
    """URL-safe base64 decode string to bytes (handles missing padding)."""
    padding = 4 - (len(s) % 4)
    if padding != 4:
        s += '=' * padding
    return base64.urlsafe_b64decode(s.encode('ascii'))


def hex_to_bytes(s: str) -> Optional[bytes]:
    """Decode a hex string, returning None instead of raising."""
    try:
        return bytes.fromhex(s)
    except (ValueError, TypeError):
        return None


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def consensus_timestamp(ns: Optional[int] = None) -> str:
    """
    Format a nanosecond epoch as a consensus timestamp.

    Consensus timestamps are "<seconds>.<nanoseconds>" strings with the
    nanosecond part zero-padded to nine digits, e.g. "1700000000.000000042".
    """
    if ns is None:
        ns = time.time_ns()
    seconds, nanos = divmod(ns, 1_000_000_000)
    return f"{seconds}.{nanos:09d}"


def parse_consensus_timestamp(ts: str) -> int:
    """Parse a "<seconds>.<nanoseconds>" timestamp back to nanoseconds."""
    seconds, _, nanos = ts.partition('.')
    return int(seconds) * 1_000_000_000 + int(nanos.ljust(9, '0') or 0)


def hash_prefix(value: Union[str, bytes, None], length: int = 12) -> str:
    """
    Truncate a hash for diagnostics.

    Logs and error payloads only ever carry this prefix.
    """
    if value is None:
        return ''
    if isinstance(value, bytes):
        value = value.hex()
    return value[:length] + ('…' if len(value) > length else '')


def mask_sensitive(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    Useful for logging API keys.
    """
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]


def generate_api_key(length: int = 32) -> str:
    """Generate a cryptographically secure random API key."""
    return secrets.token_hex(length)


def generate_id(length: int = 16) -> str:
    """Generate a cryptographically secure random ID."""
    return secrets.token_hex(length)
