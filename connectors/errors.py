"""Connector error taxonomy.

Propagation policy:
- ConfigError and AuthError abort immediately (fatal for the connector run).
- Every other error is caught at the smallest enclosing scope (one ticket,
  one sub-resource, one follow-up message) and turned into a count/log line.
"""

from typing import Optional

BODY_PREVIEW_CHARS = 200


class HelpdeskError(Exception):
    """Base exception for export/migration errors."""


class ConfigError(HelpdeskError):
    """Required credentials are missing or a connector id is unknown."""

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = missing or []


class ApiError(HelpdeskError):
    """Non-2xx response from a helpdesk API."""

    def __init__(self, message: str, status_code: int = 0, endpoint: str = "", response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = (response_body or "")[:BODY_PREVIEW_CHARS]

    @classmethod
    def from_response(cls, source: str, status_code: int, endpoint: str, body: str) -> "ApiError":
        """Build the most specific error for a status code."""
        preview = (body or "")[:BODY_PREVIEW_CHARS]
        message = f"{source} API error: {status_code} for {endpoint}"
        if preview:
            message += f" - {preview}"
        if status_code in (401, 403):
            return AuthError(message, status_code, endpoint, body)
        if status_code == 404:
            return NotFoundError(message, status_code, endpoint, body)
        return cls(message, status_code, endpoint, body)


class AuthError(ApiError):
    """Authentication failed (401/403)."""


class NotFoundError(ApiError):
    """Resource not found (404)."""


class RateLimitExceeded(ApiError):
    """Rate limit (429) persisted beyond the retry budget."""

    def __init__(self, message: str, endpoint: str = "", retries: int = 0):
        super().__init__(message, 429, endpoint)
        self.retries = retries


class MalformedResponse(HelpdeskError):
    """Response body could not be decoded."""

    def __init__(self, message: str, endpoint: str = "", body: str = ""):
        super().__init__(message)
        self.endpoint = endpoint
        self.response_body = (body or "")[:BODY_PREVIEW_CHARS]


class PartialFailure(HelpdeskError):
    """Counted, non-fatal failures of sub-resources or follow-up messages."""

    def __init__(self, message: str, failed: int = 0):
        super().__init__(message)
        self.failed = failed
