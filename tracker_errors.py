"""
Error taxonomy for the Arena tracker.

Every error carries the HTTP status code the API layer should answer with,
so routes can turn any TrackerError into a classified JSON error envelope
without looking at upstream response bodies.
"""

from typing import Optional


class TrackerError(Exception):
    """Base error for tracker operations."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message or self.public_message)
        if status_code is not None:
            self.status_code = status_code

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(TrackerError):
    """Missing or malformed request input."""

    status_code = 400
    public_message = "Invalid request"


class NotFound(TrackerError):
    """Player, Riot ID or match absent."""

    status_code = 404
    public_message = "Not found"


class UpstreamError(TrackerError):
    """Riot API request failed; carries the upstream status code."""

    status_code = 502
    public_message = "Failed to fetch data from Riot API"

    def __init__(self, message: str = "", status_code: Optional[int] = None,
                 upstream_status: Optional[int] = None):
        super().__init__(message, status_code)
        self.upstream_status = upstream_status if upstream_status is not None else status_code


class UpstreamAuthError(UpstreamError):
    """Bad or expired API credential. Fatal for a whole sync."""

    status_code = 403
    public_message = "Riot API key is invalid or expired"


class UpstreamRateLimited(UpstreamError):
    """Upstream rate limit hit. Surfaced to the caller as retry-later."""

    status_code = 429
    public_message = "Rate limit exceeded. Please try again in a moment."

    def __init__(self, message: str = "", retry_after: Optional[int] = None):
        super().__init__(message, upstream_status=429)
        self.retry_after = retry_after


class UpstreamTransientError(UpstreamError):
    """Other upstream 5xx or network failure."""


class MalformedMatchData(TrackerError):
    """Upstream payload did not match the expected shape."""

    status_code = 502
    public_message = "Malformed match data"


class StorageError(TrackerError):
    """Persistent store read or write failure."""

    status_code = 500
    public_message = "Database error"


# Names used by the match fetcher contract
AuthError = UpstreamAuthError
RateLimited = UpstreamRateLimited
