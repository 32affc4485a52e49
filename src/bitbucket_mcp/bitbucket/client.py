"""Thin httpx wrapper around the Bitbucket Server REST API."""

from __future__ import annotations

import time
from typing import Any

import httpx

from bitbucket_mcp.bitbucket.errors import (
    BitbucketApiError,
    BitbucketAuthError,
    BitbucketInvalidRequestError,
    BitbucketNotFoundError,
    BitbucketUnavailableError,
)
from bitbucket_mcp.config import ServerConfig

REST_API_PATH = "/rest/api/1.0"
SEARCH_API_PATH = "/rest/search/latest/search"
MAX_GET_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
INVALID_REQUEST_STATUSES = frozenset({400, 409, 422})


class BitbucketClient:
    """Authenticated client bound to one Bitbucket Server instance."""

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = config.base_url
        credentials = config.credentials
        headers: dict[str, str] = {"Accept": "application/json"}
        auth: tuple[str, str] | None = None
        if credentials.token:
            headers["Authorization"] = f"Bearer {credentials.token}"
        elif credentials.username and credentials.password:
            auth = (credentials.username, credentials.password)
        self._http = httpx.Client(
            base_url=f"{config.base_url}{REST_API_PATH}",
            headers=headers,
            auth=auth,
            timeout=config.timeout_seconds,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> BitbucketClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_json(self, path: str, params: dict[str, object] | None = None) -> dict[str, Any]:
        """GET a JSON object."""
        response = self._get_with_retries(path, params=params)
        return _ensure_mapping(response, path)

    def get_text(self, path: str, params: dict[str, object] | None = None) -> str:
        """GET a plain-text body such as a unified diff."""
        response = self._get_with_retries(path, params=params, accept="text/plain")
        return response.text

    def post_json(self, path: str, body: dict[str, object]) -> dict[str, Any]:
        """POST a JSON body and return the JSON object response."""
        response = self._send("POST", path, json=_drop_none(body))
        _raise_for_status(response, path)
        return _ensure_mapping(response, path)

    def search(self, body: dict[str, object]) -> dict[str, Any]:
        """POST to the code search API, which lives outside the core REST path."""
        url = f"{self._base_url}{SEARCH_API_PATH}"
        response = self._send("POST", url, json=body)
        _raise_for_status(response, SEARCH_API_PATH)
        return _ensure_mapping(response, SEARCH_API_PATH)

    def _get_with_retries(
        self,
        path: str,
        params: dict[str, object] | None,
        accept: str | None = None,
    ) -> httpx.Response:
        headers = {"Accept": accept} if accept else None
        query = _drop_none(params or {})
        for attempt_number in range(1, MAX_GET_ATTEMPTS + 1):
            response = self._send("GET", path, params=query, headers=headers)
            if response.status_code < 400:
                return response
            should_retry = _is_retryable_status(response.status_code) and (
                attempt_number < MAX_GET_ATTEMPTS
            )
            if not should_retry:
                _raise_for_status(response, path)
            _sleep_for_retry(_retry_delay_seconds(response, attempt_number))
        raise RuntimeError("Unexpected retry loop exit without a response.")

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, url, **kwargs)
        except httpx.TransportError as error:
            raise BitbucketUnavailableError(
                f"Bitbucket is unreachable: {error}",
                status_code=0,
                endpoint=url,
            ) from error


def _drop_none(payload: dict[str, object]) -> dict[str, object]:
    return {key: value for key, value in payload.items() if value is not None}


def _ensure_mapping(response: httpx.Response, endpoint: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as error:
        raise BitbucketApiError(
            f"Expected JSON response from '{endpoint}'.",
            status_code=response.status_code,
            endpoint=endpoint,
        ) from error
    if not isinstance(payload, dict):
        raise BitbucketApiError(
            f"Expected JSON object from '{endpoint}'.",
            status_code=response.status_code,
            endpoint=endpoint,
        )
    return payload


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def _retry_delay_seconds(response: httpx.Response, attempt_number: int) -> float:
    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        try:
            seconds = float(retry_after)
        except ValueError:
            seconds = -1.0
        if seconds >= 0:
            return seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


def _sleep_for_retry(seconds: float) -> None:
    """Sleep between attempts (patched out in tests)."""
    time.sleep(seconds)


def error_messages(response: httpx.Response) -> tuple[str, ...]:
    """Extract ``errors[].message`` strings from a Bitbucket error body."""
    try:
        payload = response.json()
    except ValueError:
        return ()
    if not isinstance(payload, dict):
        return ()
    errors = payload.get("errors")
    if not isinstance(errors, list):
        return ()
    messages: list[str] = []
    for item in errors:
        if isinstance(item, dict) and isinstance(item.get("message"), str):
            messages.append(item["message"])
    return tuple(messages)


def _raise_for_status(response: httpx.Response, endpoint: str) -> None:
    status = response.status_code
    if status < 400:
        return
    details = error_messages(response)
    message = f"Bitbucket API request failed with status {status} for '{endpoint}'."
    if details:
        message = f"{message} {details[0]}"
    error_type: type[BitbucketApiError] = BitbucketApiError
    if status == 404:
        error_type = BitbucketNotFoundError
    elif status in (401, 403):
        error_type = BitbucketAuthError
    elif status in INVALID_REQUEST_STATUSES:
        error_type = BitbucketInvalidRequestError
    elif _is_retryable_status(status):
        error_type = BitbucketUnavailableError
    raise error_type(message, status_code=status, endpoint=endpoint, details=details)
