"""
Security module for docanchor.

Provides input validation for anchor and verify requests, bearer-token
extraction and client identification for rate limiting.
"""

import re
from typing import Dict, Optional, Sequence

from .errors import AuthenticationError, ValidationError

# ============================================================
# Input Validation
# ============================================================

HEX_PATTERN = re.compile(r'^[0-9a-f]+$')
IDENTITY_PATTERN = re.compile(r'^[a-z0-9]+:[a-zA-Z0-9_.%-]+(:[a-zA-Z0-9_.%-]*)*$')

CONTENT_HASH_HEX_LENGTH = 64
SIGNATURE_HEX_LENGTH = 128
MAX_IDENTITY_LENGTH = 512


def _require_text(value, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(field_name, "must be a string")
    value = value.strip()
    if not value:
        raise ValidationError(field_name, "cannot be empty")
    return value


def validate_hex(value: str, field_name: str, expected_length: Optional[int] = None) -> str:
    """
    Normalize a hex field to lowercase and check its length.

    Raises:
        ValidationError: naming ``field_name`` when the value is not hex
        or has the wrong length
    """
    value = _require_text(value, field_name).lower()
    if expected_length and len(value) != expected_length:
        raise ValidationError(field_name, f"must be {expected_length} hex characters, got {len(value)}")
    if not HEX_PATTERN.match(value):
        raise ValidationError(field_name, "must contain only hex digits")
    return value


def validate_content_hash(value: str, field_name: str = "documentHash") -> str:
    """A SHA-256 content hash: 64 hex characters."""
    return validate_hex(value, field_name, expected_length=CONTENT_HASH_HEX_LENGTH)


def validate_signature(value: str, field_name: str = "signature") -> str:
    """An Ed25519 signature: 64 bytes, hex encoded."""
    return validate_hex(value, field_name, expected_length=SIGNATURE_HEX_LENGTH)


def validate_identity(value: str, prefixes: Sequence[str], field_name: str = "did") -> str:
    """
    Validate an identity string against the accepted scheme prefixes.

    Raises:
        ValidationError: If validation fails
    """
    value = _require_text(value, field_name)

    if len(value) > MAX_IDENTITY_LENGTH:
        raise ValidationError(field_name, f"must not exceed {MAX_IDENTITY_LENGTH} characters")

    if not any(value.startswith(p) for p in prefixes):
        raise ValidationError(field_name, f"must start with one of: {', '.join(prefixes)}")

    if not IDENTITY_PATTERN.match(value):
        raise ValidationError(field_name, "invalid identifier format")

    return value


# ============================================================
# Credentials
# ============================================================

def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Extract the API key from an "Authorization: Bearer <key>" header.

    Raises:
        AuthenticationError: If the header is missing or malformed
    """
    if not authorization:
        raise AuthenticationError("Missing Authorization header", code="MISSING_API_KEY")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise AuthenticationError(
            "Invalid Authorization header format. Expected: Bearer <API_KEY>",
            code="MALFORMED_AUTHORIZATION"
        )

    if not parts[1]:
        raise AuthenticationError("API key is required", code="MISSING_API_KEY")

    return parts[1]


# ============================================================
# Rate Limiting Helpers
# ============================================================

def extract_client_id(headers: Dict[str, str], remote_addr: Optional[str] = None) -> str:
    """
    Extract a client identifier from request headers for rate limiting.
    Falls back to the peer address, then to a default.
    """
    authorization = headers.get("authorization", "")
    if authorization.startswith("Bearer ") and len(authorization) > 7:
        return f"api:{authorization[7:15]}"

    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    if remote_addr:
        return f"ip:{remote_addr}"

    return "anonymous"
