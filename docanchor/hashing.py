"""
Document hashing.

All content hashes are SHA-256 with lowercase hexadecimal output.
Only the digest ever leaves the caller's machine; document bytes are
hashed locally and discarded.
"""

import hashlib
import re
from pathlib import Path
from typing import BinaryIO, Union

CONTENT_HASH_PATTERN = re.compile(r'^[a-fA-F0-9]{64}$')

CHUNK_SIZE = 1024 * 1024


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as lowercase hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def sha256_bytes(data: Union[bytes, str]) -> bytes:
    """Compute SHA-256 hash and return the raw 32-byte digest."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def hash_stream(stream: BinaryIO) -> str:
    """Hash a binary stream in fixed-size chunks."""
    h = hashlib.sha256()
    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b''):
        h.update(chunk)
    return h.hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    """Compute the content hash of a file without loading it whole."""
    with open(path, 'rb') as f:
        return hash_stream(f)


def is_content_hash(value: str) -> bool:
    """True if value is a 64-character hexadecimal digest."""
    return isinstance(value, str) and bool(CONTENT_HASH_PATTERN.match(value))
