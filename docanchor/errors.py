"""
Error taxonomy for docanchor.

Every error carries a stable machine-readable code and the HTTP status
the API layer maps it to. Network-facing adapters raise the typed,
retryable errors below; the orchestrator is the only place that turns
an unverifiable signature into an AuthorizationError.
"""

from typing import Any, Dict, Optional


class DocAnchorError(Exception):
    """Base class for all docanchor errors."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DocAnchorError):
    """Raised when input validation fails."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}", details={"field": field})


class AuthenticationError(DocAnchorError):
    """Missing or invalid caller credentials."""

    code = "UNAUTHENTICATED"
    status_code = 401


class AuthorizationError(DocAnchorError):
    """Signature invalid, or identity not bound to the caller's organization."""

    code = "FORBIDDEN"
    status_code = 403


class ConflictError(DocAnchorError):
    """The content hash has already been anchored."""

    code = "ALREADY_ANCHORED"
    status_code = 409

    def __init__(self, message: str, proof: Any = None):
        super().__init__(message)
        self.proof = proof


class DependencyUnavailable(DocAnchorError):
    """A network collaborator failed or timed out. Safe to retry."""

    code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(self, dependency: str, message: str, code: Optional[str] = None):
        self.dependency = dependency
        super().__init__(message, code=code, details={"dependency": dependency})


class ConsensusRejected(DependencyUnavailable):
    """The consensus log reported a non-success finality status."""

    code = "CONSENSUS_REJECTED"
    status_code = 502
    retryable = False

    def __init__(self, status: str, message: Optional[str] = None):
        self.status = status
        super().__init__("consensus", message or f"Consensus status {status}")
        self.details["status"] = status


class RateLimitExceeded(DocAnchorError):
    """Too many requests from one client inside the limiter window."""

    code = "RATE_LIMIT"
    status_code = 429
    retryable = True

    def __init__(self, retry_after: Optional[float] = None):
        super().__init__("Too many requests")
        self.retry_after = retry_after


class InternalError(DocAnchorError):
    """Unexpected failure."""


class DuplicateProofError(Exception):
    """Raised by the proof index when a content hash is already stored."""

    def __init__(self, content_hash: str):
        super().__init__(content_hash)
        self.content_hash = content_hash
