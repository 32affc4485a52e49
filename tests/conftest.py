from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import httpx
import pytest

from bitbucket_mcp.server import StdioServer, create_server

BASE_ENV = {
    "BITBUCKET_URL": "https://bitbucket.example.com",
    "BITBUCKET_TOKEN": "test-token",
    "BITBUCKET_DEFAULT_PROJECT": "DEFAULT",
}


class FakeBitbucket:
    """Canned Bitbucket responses keyed by (method, path), recording every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[httpx.Response]] = {}

    def route(self, method: str, path: str, *responses: httpx.Response) -> None:
        self._routes[(method, path)] = list(responses)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(
                404,
                json={"errors": [{"message": f"No route for {request.url.path}"}]},
            )
        template = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(
            template.status_code,
            headers=template.headers,
            content=template.content,
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def fake_bitbucket() -> FakeBitbucket:
    return FakeBitbucket()


@pytest.fixture
def server_factory(
    tmp_path: Path, fake_bitbucket: FakeBitbucket
) -> Iterator[Callable[..., StdioServer]]:
    created: list[StdioServer] = []

    def factory(**env_overrides: str | None) -> StdioServer:
        environ = dict(BASE_ENV)
        for key, value in env_overrides.items():
            if value is None:
                environ.pop(key, None)
            else:
                environ[key] = value
        server = create_server(environ=environ, transport=fake_bitbucket.transport, cwd=tmp_path)
        created.append(server)
        return server

    yield factory
    for server in created:
        server.close()


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("bitbucket_mcp.bitbucket.client._sleep_for_retry", lambda _: None)
