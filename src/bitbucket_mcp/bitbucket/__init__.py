"""Bitbucket Server REST access."""

from .client import BitbucketClient
from .errors import (
    BitbucketApiError,
    BitbucketAuthError,
    BitbucketInvalidRequestError,
    BitbucketNotFoundError,
    BitbucketUnavailableError,
)

__all__ = [
    "BitbucketApiError",
    "BitbucketAuthError",
    "BitbucketClient",
    "BitbucketInvalidRequestError",
    "BitbucketNotFoundError",
    "BitbucketUnavailableError",
]
