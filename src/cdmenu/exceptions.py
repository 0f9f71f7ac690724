"""Bitbucket API exceptions."""

from __future__ import annotations


class BitbucketError(Exception):
    """Base exception for Bitbucket operations."""


class BitbucketApiError(BitbucketError):
    """Raised when the Bitbucket API returns a non-success response."""

    def __init__(self, status_code: int, body: str = "", message: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"API error: Status {status_code}: {body}")


class BitbucketAuthError(BitbucketApiError):
    """Raised on 401 responses."""

    def __init__(self, body: str = "") -> None:
        super().__init__(401, body, "Authentication failed - check username and app password")


class BitbucketRateLimitError(BitbucketApiError):
    """Raised on 429 responses."""

    def __init__(self, body: str = "") -> None:
        super().__init__(429, body, "Rate limited - please wait before retrying")


class BitbucketNotFoundError(BitbucketApiError):
    """Raised on 404 responses."""

    def __init__(self, resource: str, body: str = "") -> None:
        self.resource = resource
        super().__init__(404, body, f"Resource not found: {resource}")


class BitbucketTransportError(BitbucketError):
    """Raised when the request produced no usable response (timeout, refused, bad encoding)."""

    def __init__(self, cause: Exception, *, timed_out: bool = False) -> None:
        self.cause = cause
        self.timed_out = timed_out
        super().__init__(f"HTTP error: {cause}")
