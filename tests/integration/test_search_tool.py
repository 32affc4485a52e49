from __future__ import annotations

import json

import httpx

SEARCH_PATH = "/rest/search/latest/search"

SEARCH_RESULT = {
    "scope": {"type": "PROJECT"},
    "code": {
        "count": 2,
        "isLastPage": False,
        "nextStart": 1,
        "values": [
            {
                "repository": {"slug": "repo"},
                "file": "src/app.py",
                "hitCount": 3,
                "hitContexts": [[{"line": 1, "text": "def app():"}]],
                "pathMatches": [],
            }
        ],
    },
}


def _search(server, **arguments: object) -> dict[str, object]:
    return server.handle_payload(
        {"id": "req-search", "method": "search", "params": {"query": "app", **arguments}}
    )


def test_search_scopes_query_and_summarizes_results(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("POST", SEARCH_PATH, httpx.Response(200, json=SEARCH_RESULT))
    server = server_factory()

    response = _search(server, repository="repo", limit=500, start=2)
    result = json.loads(response["result"]["content"][0]["text"])

    assert json.loads(fake_bitbucket.requests[-1].content) == {
        "query": "app project:DEFAULT repo:DEFAULT/repo",
        "entities": {"code": {"start": 2, "limit": 100}},
    }
    assert result["originalQuery"] == "app"
    assert result["project"] == "DEFAULT"
    assert result["repository"] == "repo"
    assert result["type"] == "code"
    assert result["total"] == 2
    assert result["showing"] == 1
    assert result["isLastPage"] is False
    assert result["nextStart"] == 1
    assert result["results"][0]["file"] == "src/app.py"
    assert result["results"][0]["hitCount"] == 3


def test_search_without_any_project_is_global(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("POST", SEARCH_PATH, httpx.Response(200, json={"code": {"values": []}}))
    server = server_factory(BITBUCKET_DEFAULT_PROJECT=None)

    response = _search(server, type="file")
    result = json.loads(response["result"]["content"][0]["text"])

    assert result["query"] == '"app"'
    assert result["project"] == "global"
    assert result["total"] == 0
    assert result["isLastPage"] is True


def test_search_missing_endpoint_is_reported_unavailable(server_factory, fake_bitbucket) -> None:
    server = server_factory()

    response = _search(server)

    assert response["error"] == {
        "code": "UPSTREAM_UNAVAILABLE",
        "message": "Search API endpoint not available on this Bitbucket instance",
    }


def test_search_upstream_query_error_is_invalid_params(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route(
        "POST",
        SEARCH_PATH,
        httpx.Response(400, json={"errors": [{"message": "Query too short"}]}),
    )
    server = server_factory()

    response = _search(server)

    assert response["error"] == {"code": "INVALID_PARAMS", "message": "Search error: Query too short"}


def test_search_rejects_unknown_type(server_factory, fake_bitbucket) -> None:
    server = server_factory()

    response = _search(server, type="commit")

    assert response["error"]["code"] == "INVALID_PARAMS"
    assert fake_bitbucket.requests == []
