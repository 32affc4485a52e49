from __future__ import annotations

import json

import httpx

PR_ROOT = "/rest/api/1.0/projects/DEFAULT/repos/repo/pull-requests"

ACTIVITIES = {
    "values": [
        {"id": 1, "action": "OPENED"},
        {"id": 2, "action": "COMMENTED", "comment": {"text": "Looks good"}},
        {"id": 3, "action": "APPROVED"},
        {"id": 4, "action": "REVIEWED"},
        {"id": 5, "action": "UNAPPROVED"},
    ]
}


def _call(server, name: str, **arguments: object) -> dict[str, object]:
    return server.handle_payload(
        {
            "id": f"req-{name}",
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
    )


def _json_result(response: dict[str, object]) -> object:
    assert response["ok"] is True, response
    return json.loads(response["result"]["content"][0]["text"])


def _sent_body(fake_bitbucket) -> dict[str, object]:
    return json.loads(fake_bitbucket.requests[-1].content)


def test_create_pull_request_builds_refs_and_reviewers(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("POST", PR_ROOT, httpx.Response(201, json={"id": 42, "state": "OPEN"}))
    server = server_factory()

    result = _json_result(
        _call(
            server,
            "create_pull_request",
            repository="repo",
            title="Add feature",
            description="Details",
            sourceBranch="feature/x",
            targetBranch="main",
            reviewers=["alice", "bob"],
        )
    )

    assert result == {"id": 42, "state": "OPEN"}
    assert _sent_body(fake_bitbucket) == {
        "title": "Add feature",
        "description": "Details",
        "fromRef": {
            "id": "refs/heads/feature/x",
            "repository": {"slug": "repo", "project": {"key": "DEFAULT"}},
        },
        "toRef": {
            "id": "refs/heads/main",
            "repository": {"slug": "repo", "project": {"key": "DEFAULT"}},
        },
        "reviewers": [{"user": {"name": "alice"}}, {"user": {"name": "bob"}}],
    }


def test_create_pull_request_requires_title(server_factory, fake_bitbucket) -> None:
    server = server_factory()

    response = _call(
        server, "create_pull_request", repository="repo", sourceBranch="a", targetBranch="b"
    )

    assert response["error"] == {
        "code": "INVALID_PARAMS",
        "message": "create_pull_request title must be a non-empty string.",
    }
    assert fake_bitbucket.requests == []


def test_get_pull_request_returns_upstream_payload(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("GET", f"{PR_ROOT}/7", httpx.Response(200, json={"id": 7, "title": "T"}))
    server = server_factory()

    assert _json_result(_call(server, "get_pull_request", repository="repo", prId=7)) == {
        "id": 7,
        "title": "T",
    }


def test_merge_pull_request_defaults_strategy(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("POST", f"{PR_ROOT}/7/merge", httpx.Response(200, json={"state": "MERGED"}))
    server = server_factory()

    _json_result(_call(server, "merge_pull_request", repository="repo", prId=7))

    assert _sent_body(fake_bitbucket) == {"version": -1, "strategy": "merge-commit"}


def test_merge_pull_request_passes_message_and_strategy(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("POST", f"{PR_ROOT}/7/merge", httpx.Response(200, json={"state": "MERGED"}))
    server = server_factory()

    _json_result(
        _call(
            server,
            "merge_pull_request",
            repository="repo",
            prId=7,
            message="Ship it",
            strategy="squash",
        )
    )

    assert _sent_body(fake_bitbucket) == {
        "version": -1,
        "message": "Ship it",
        "strategy": "squash",
    }


def test_merge_pull_request_rejects_unknown_strategy(server_factory) -> None:
    server = server_factory()

    response = _call(server, "merge_pull_request", repository="repo", prId=7, strategy="rebase")

    assert response["error"]["code"] == "INVALID_PARAMS"


def test_merge_conflict_maps_to_invalid_params(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route(
        "POST",
        f"{PR_ROOT}/7/merge",
        httpx.Response(409, json={"errors": [{"message": "The pull request has conflicts."}]}),
    )
    server = server_factory()

    response = _call(server, "merge_pull_request", repository="repo", prId=7)

    assert response["error"]["code"] == "INVALID_PARAMS"
    assert response["error"]["message"].endswith("The pull request has conflicts.")


def test_decline_pull_request_sends_message(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route(
        "POST", f"{PR_ROOT}/7/decline", httpx.Response(200, json={"state": "DECLINED"})
    )
    server = server_factory()

    _json_result(_call(server, "decline_pull_request", repository="repo", prId=7, message="No"))

    assert _sent_body(fake_bitbucket) == {"version": -1, "message": "No"}


def test_add_comment_with_parent_creates_reply(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("POST", f"{PR_ROOT}/7/comments", httpx.Response(201, json={"id": 9}))
    server = server_factory()

    _json_result(_call(server, "add_comment", repository="repo", prId=7, text="Hi", parentId=3))

    assert _sent_body(fake_bitbucket) == {"text": "Hi", "parent": {"id": 3}}


def test_add_comment_without_parent_is_top_level(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("POST", f"{PR_ROOT}/7/comments", httpx.Response(201, json={"id": 9}))
    server = server_factory()

    _json_result(_call(server, "add_comment", repository="repo", prId=7, text="Hi"))

    assert _sent_body(fake_bitbucket) == {"text": "Hi"}


def test_activity_tools_filter_by_action(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route("GET", f"{PR_ROOT}/7/activities", httpx.Response(200, json=ACTIVITIES))
    server = server_factory()

    reviews = _json_result(_call(server, "get_reviews", repository="repo", prId=7))
    comments = _json_result(_call(server, "get_comments", repository="repo", prId=7))
    activities = _json_result(_call(server, "get_activities", repository="repo", prId=7))

    assert [item["id"] for item in reviews] == [3, 4]
    assert [item["id"] for item in comments] == [2]
    assert activities == ACTIVITIES


def test_pull_request_id_must_be_positive(server_factory, fake_bitbucket) -> None:
    server = server_factory()

    response = _call(server, "get_pull_request", repository="repo", prId=0)

    assert response["error"] == {
        "code": "INVALID_PARAMS",
        "message": "get_pull_request prId must be a positive integer.",
    }
    assert fake_bitbucket.requests == []


def test_auth_failure_maps_to_unauthorized(server_factory, fake_bitbucket) -> None:
    fake_bitbucket.route(
        "GET",
        f"{PR_ROOT}/7",
        httpx.Response(401, json={"errors": [{"message": "Authentication failed."}]}),
    )
    server = server_factory()

    response = _call(server, "get_pull_request", repository="repo", prId=7)

    assert response["error"]["code"] == "UNAUTHORIZED"
