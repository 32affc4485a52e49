"""Typed failures raised by the Bitbucket REST client."""

from __future__ import annotations


class BitbucketApiError(RuntimeError):
    """Raised when a Bitbucket API request fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        endpoint: str,
        details: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        self.details = details


class BitbucketNotFoundError(BitbucketApiError):
    """Raised when the requested project, repository or pull request is missing."""


class BitbucketAuthError(BitbucketApiError):
    """Raised when Bitbucket rejects the configured credentials."""


class BitbucketInvalidRequestError(BitbucketApiError):
    """Raised when Bitbucket rejects the request parameters."""


class BitbucketUnavailableError(BitbucketApiError):
    """Raised when Bitbucket cannot be reached or keeps failing server-side."""
