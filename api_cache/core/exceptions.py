"""Exceptions raised by api-cache components."""

from typing import Any, Dict, Optional


class ApiCacheError(Exception):
    """Base class for api-cache errors.

    Carries an optional ``context`` dictionary with the identifiers involved
    (client, key, table) so callers can log or report them.
    """

    def __init__(self, message: str = "", context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = dict(context or {})


class ValidationError(ApiCacheError, ValueError):
    """Invalid input: bad client identifier, missing store fields, unhashable params."""

    pass


class CompressionError(ApiCacheError):
    """Data could not be compressed or is not valid compressed data."""

    pass


class RateLimitExceeded(ApiCacheError):
    """Raised by callers that attempt a live request while rate limited.

    The rate limiter itself only reports ``allow_request() == False``; raising
    is the calling client's convention.
    """

    def __init__(self, client_name: str, available_in: int, message: str = ""):
        message = message or (
            f"Rate limit exceeded for client '{client_name}'. Available in {available_in} seconds."
        )
        super().__init__(message, {"client": client_name, "available_in": available_in})
        self.client_name = client_name
        self.available_in = available_in


class MigrationRowError(ApiCacheError):
    """A single row failed during table conversion or validation."""

    def __init__(self, client_name: str, key: Optional[str], cause: Exception):
        super().__init__(
            f"Row {key!r} of client '{client_name}' failed: {cause}",
            {"client": client_name, "key": key},
        )
        self.client_name = client_name
        self.key = key
        self.cause = cause
