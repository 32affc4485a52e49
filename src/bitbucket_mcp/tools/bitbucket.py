"""Bitbucket Server tools exposed over MCP."""

from __future__ import annotations

from typing import Any

from bitbucket_mcp.bitbucket import BitbucketApiError, BitbucketClient, BitbucketNotFoundError
from bitbucket_mcp.config import ServerConfig
from bitbucket_mcp.diff import resolve_budget, truncate_diff
from bitbucket_mcp.tools.arguments import (
    invalid_params,
    json_content,
    optional_choice,
    optional_int,
    optional_string,
    optional_string_list,
    require_positive_int,
    require_string,
    text_content,
)
from bitbucket_mcp.tools.registry import ToolDispatchError, ToolHandler, ToolRegistry, ToolSpec

DEFAULT_PAGE_LIMIT = 25
MAX_PAGE_LIMIT = 1000
MAX_SEARCH_LIMIT = 100
DEFAULT_FILE_LINES_LIMIT = 100
MAX_FILE_LINES_LIMIT = 1000
DEFAULT_BROWSE_LIMIT = 50
DEFAULT_CONTEXT_LINES = 10

MERGE_STRATEGIES = ("merge-commit", "squash", "fast-forward")
SEARCH_TYPES = ("code", "file")
REVIEW_ACTIONS = frozenset({"APPROVED", "REVIEWED"})
COMMENT_ACTIONS = frozenset({"COMMENTED"})

_PROJECT_DESCRIPTION = (
    "Bitbucket project key. If omitted, uses BITBUCKET_DEFAULT_PROJECT environment variable."
)


def register_bitbucket_tools(
    registry: ToolRegistry,
    client: BitbucketClient,
    config: ServerConfig,
) -> None:
    """Register Bitbucket tools, skipping mutating ones in read-only mode."""
    for spec in build_bitbucket_tool_specs(client, config):
        if config.read_only and not spec.read_only:
            continue
        registry.register(spec)


def build_bitbucket_tool_specs(client: BitbucketClient, config: ServerConfig) -> list[ToolSpec]:
    pr_properties = {
        "project": _string_prop(_PROJECT_DESCRIPTION),
        "repository": _string_prop("Repository slug containing the pull request."),
        "prId": _int_prop("Pull request ID number."),
    }
    pr_required = ("repository", "prId")
    return [
        ToolSpec(
            name="list_projects",
            title="List Bitbucket Projects",
            description=(
                "Discover and list all Bitbucket projects you have access to. Returns project "
                "keys, names, descriptions and visibility settings."
            ),
            input_schema=_object_schema(
                {
                    "limit": _int_prop("Number of projects to return (default: 25, max: 1000)"),
                    "start": _int_prop("Start index for pagination (default: 0)"),
                }
            ),
            handler=_list_projects_handler(client),
        ),
        ToolSpec(
            name="list_repositories",
            title="List Bitbucket Repositories",
            description=(
                "Browse repositories within a project or across all accessible projects. "
                "Returns repository names, slugs, clone URLs, and project associations."
            ),
            input_schema=_object_schema(
                {
                    "project": _string_prop(
                        "Project key to list repositories from. If omitted, uses "
                        "BITBUCKET_DEFAULT_PROJECT or lists all accessible repositories."
                    ),
                    "limit": _int_prop("Number of repositories to return (default: 25, max: 1000)"),
                    "start": _int_prop("Start index for pagination (default: 0)"),
                }
            ),
            handler=_list_repositories_handler(client, config),
        ),
        ToolSpec(
            name="create_pull_request",
            title="Create Pull Request",
            description=(
                "Create a new pull request from a source branch into a target branch, "
                "optionally assigning reviewers."
            ),
            input_schema=_object_schema(
                {
                    "project": _string_prop(_PROJECT_DESCRIPTION),
                    "repository": _string_prop("Repository slug where the pull request is created."),
                    "title": _string_prop("Title summarizing the changes."),
                    "description": _string_prop("Markdown description for reviewers."),
                    "sourceBranch": _string_prop("Branch containing the changes."),
                    "targetBranch": _string_prop("Branch the changes are merged into."),
                    "reviewers": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Bitbucket usernames to assign as reviewers.",
                    },
                },
                required=("repository", "title", "sourceBranch", "targetBranch"),
            ),
            handler=_create_pull_request_handler(client, config),
            read_only=False,
        ),
        ToolSpec(
            name="get_pull_request",
            title="Get Pull Request Details",
            description=(
                "Retrieve status, reviewers, refs and metadata of a single pull request."
            ),
            input_schema=_object_schema(pr_properties, required=pr_required),
            handler=_get_pull_request_handler(client, config),
        ),
        ToolSpec(
            name="merge_pull_request",
            title="Merge Pull Request",
            description="Merge an approved pull request into its target branch.",
            input_schema=_object_schema(
                {
                    **pr_properties,
                    "message": _string_prop("Custom merge commit message."),
                    "strategy": {
                        "type": "string",
                        "enum": list(MERGE_STRATEGIES),
                        "description": "Merge strategy (default: merge-commit).",
                    },
                },
                required=pr_required,
            ),
            handler=_merge_pull_request_handler(client, config),
            read_only=False,
        ),
        ToolSpec(
            name="decline_pull_request",
            title="Decline Pull Request",
            description="Decline a pull request, closing it without merging.",
            input_schema=_object_schema(
                {
                    **pr_properties,
                    "message": _string_prop("Reason for declining the pull request."),
                },
                required=pr_required,
            ),
            handler=_decline_pull_request_handler(client, config),
            read_only=False,
        ),
        ToolSpec(
            name="add_comment",
            title="Add Comment to Pull Request",
            description="Add a top-level comment or a threaded reply to a pull request.",
            input_schema=_object_schema(
                {
                    **pr_properties,
                    "text": _string_prop("Comment text. Supports Markdown."),
                    "parentId": _int_prop("ID of the parent comment to reply to."),
                },
                required=(*pr_required, "text"),
            ),
            handler=_add_comment_handler(client, config),
            read_only=False,
        ),
        ToolSpec(
            name="get_diff",
            title="Get Pull Request Diff",
            description=(
                "Retrieve the unified diff of a pull request. Large files are cut to a head "
                "and tail window per file unless maxLinesPerFile is 0."
            ),
            input_schema=_object_schema(
                {
                    **pr_properties,
                    "contextLines": _int_prop(
                        "Number of context lines around changes (default: 10)."
                    ),
                    "maxLinesPerFile": _int_prop(
                        "Maximum content lines per file (default: "
                        "BITBUCKET_DIFF_MAX_LINES_PER_FILE). Set to 0 for no limit."
                    ),
                },
                required=pr_required,
            ),
            handler=_get_diff_handler(client, config),
        ),
        ToolSpec(
            name="get_reviews",
            title="Get Pull Request Reviews",
            description="Fetch approval and review activities of a pull request.",
            input_schema=_object_schema(pr_properties, required=pr_required),
            handler=_activities_handler(client, config, "get_reviews", REVIEW_ACTIONS),
        ),
        ToolSpec(
            name="get_activities",
            title="Get Pull Request Activities",
            description="Retrieve the complete activity timeline of a pull request.",
            input_schema=_object_schema(pr_properties, required=pr_required),
            handler=_activities_handler(client, config, "get_activities", None),
        ),
        ToolSpec(
            name="get_comments",
            title="Get Pull Request Comments",
            description="Retrieve only the comment activities of a pull request.",
            input_schema=_object_schema(pr_properties, required=pr_required),
            handler=_activities_handler(client, config, "get_comments", COMMENT_ACTIONS),
        ),
        ToolSpec(
            name="search",
            title="Search Code or Files",
            description=(
                "Search code and file names across repositories, optionally scoped to a "
                "project and repository."
            ),
            input_schema=_object_schema(
                {
                    "query": _string_prop("Search query string."),
                    "project": _string_prop("Project key to limit the search scope."),
                    "repository": _string_prop("Repository slug to limit the search scope."),
                    "type": {
                        "type": "string",
                        "enum": list(SEARCH_TYPES),
                        "description": '"file" quotes the query for exact filename matching.',
                    },
                    "limit": _int_prop("Number of results to return (default: 25, max: 100)"),
                    "start": _int_prop("Start index for pagination (default: 0)"),
                },
                required=("query",),
            ),
            handler=_search_handler(client, config),
        ),
        ToolSpec(
            name="get_file_content",
            title="Get File Content",
            description="Read a file from a repository, paginated by line.",
            input_schema=_object_schema(
                {
                    "project": _string_prop(_PROJECT_DESCRIPTION),
                    "repository": _string_prop("Repository slug containing the file."),
                    "filePath": _string_prop("Path to the file in the repository."),
                    "branch": _string_prop("Branch or commit hash to read from."),
                    "limit": _int_prop("Maximum lines per request (default: 100, max: 1000)."),
                    "start": _int_prop("Starting line number, 0-based (default: 0)."),
                },
                required=("repository", "filePath"),
            ),
            handler=_get_file_content_handler(client, config),
        ),
        ToolSpec(
            name="browse_repository",
            title="Browse Repository",
            description="List files and directories at a path of a repository.",
            input_schema=_object_schema(
                {
                    "project": _string_prop(_PROJECT_DESCRIPTION),
                    "repository": _string_prop("Repository slug to browse."),
                    "path": _string_prop('Directory path (empty or "/" for the root).'),
                    "branch": _string_prop("Branch or commit hash to browse."),
                    "limit": _int_prop("Maximum number of items to return (default: 50)."),
                },
                required=("repository",),
            ),
            handler=_browse_repository_handler(client, config),
        ),
    ]


def resolve_project(provided: str | None, config: ServerConfig) -> str:
    """Return the explicit project key or the configured default."""
    project = provided or config.default_project
    if not project:
        raise invalid_params(
            "Project must be provided either as a parameter or through "
            "BITBUCKET_DEFAULT_PROJECT environment variable"
        )
    return project


def _string_prop(description: str) -> dict[str, object]:
    return {"type": "string", "description": description}


def _int_prop(description: str) -> dict[str, object]:
    return {"type": "integer", "description": description}


def _object_schema(
    properties: dict[str, dict[str, object]],
    required: tuple[str, ...] = (),
) -> dict[str, object]:
    schema: dict[str, object] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = list(required)
    return schema


def _repo_path(project: str, repository: str) -> str:
    return f"/projects/{project}/repos/{repository}"


def _pull_request_path(project: str, repository: str, pr_id: int) -> str:
    return f"{_repo_path(project, repository)}/pull-requests/{pr_id}"


def _pull_request_target(
    arguments: dict[str, object], config: ServerConfig, tool: str
) -> str:
    project = resolve_project(optional_string(arguments, "project", tool), config)
    repository = require_string(arguments, "repository", tool)
    pr_id = require_positive_int(arguments, "prId", tool)
    return _pull_request_path(project, repository, pr_id)


def _page_params(
    arguments: dict[str, object],
    tool: str,
    default_limit: int,
    max_limit: int | None,
) -> tuple[int, int]:
    limit = optional_int(arguments, "limit", tool, default=default_limit, minimum=1)
    start = optional_int(arguments, "start", tool, default=0, minimum=0)
    if max_limit is not None and limit > max_limit:
        limit = max_limit
    return limit, start


def _list_projects_handler(client: BitbucketClient) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        limit, start = _page_params(arguments, "list_projects", DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT)
        data = client.get_json("/projects", params={"limit": limit, "start": start})
        projects = _values(data)
        return json_content(
            {
                "total": data.get("size") or len(projects),
                "showing": len(projects),
                "projects": [
                    {
                        "key": project.get("key"),
                        "name": project.get("name"),
                        "description": project.get("description"),
                        "public": project.get("public"),
                        "type": project.get("type"),
                    }
                    for project in projects
                ],
            }
        )

    return handler


def _list_repositories_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "list_repositories"
        project = optional_string(arguments, "project", tool) or config.default_project
        limit, start = _page_params(arguments, tool, DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT)
        endpoint = f"/projects/{project}/repos" if project else "/repos"
        data = client.get_json(endpoint, params={"limit": limit, "start": start})
        repositories = _values(data)
        return json_content(
            {
                "project": project or "all",
                "total": data.get("size") or len(repositories),
                "showing": len(repositories),
                "repositories": [
                    {
                        "slug": repo.get("slug"),
                        "name": repo.get("name"),
                        "description": repo.get("description"),
                        "project": (repo.get("project") or {}).get("key"),
                        "public": repo.get("public"),
                        "cloneUrl": _http_clone_url(repo),
                        "state": repo.get("state"),
                    }
                    for repo in repositories
                ],
            }
        )

    return handler


def _create_pull_request_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "create_pull_request"
        project = resolve_project(optional_string(arguments, "project", tool), config)
        repository = require_string(arguments, "repository", tool)
        title = require_string(arguments, "title", tool)
        description = optional_string(arguments, "description", tool)
        source_branch = require_string(arguments, "sourceBranch", tool)
        target_branch = require_string(arguments, "targetBranch", tool)
        reviewers = optional_string_list(arguments, "reviewers", tool)

        def ref(branch: str) -> dict[str, object]:
            return {
                "id": f"refs/heads/{branch}",
                "repository": {"slug": repository, "project": {"key": project}},
            }

        body: dict[str, object] = {
            "title": title,
            "description": description,
            "fromRef": ref(source_branch),
            "toRef": ref(target_branch),
        }
        if reviewers is not None:
            body["reviewers"] = [{"user": {"name": name}} for name in reviewers]
        data = client.post_json(f"{_repo_path(project, repository)}/pull-requests", body)
        return json_content(data)

    return handler


def _get_pull_request_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        path = _pull_request_target(arguments, config, "get_pull_request")
        return json_content(client.get_json(path))

    return handler


def _merge_pull_request_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "merge_pull_request"
        path = _pull_request_target(arguments, config, tool)
        message = optional_string(arguments, "message", tool)
        strategy = optional_choice(arguments, "strategy", tool, MERGE_STRATEGIES)
        data = client.post_json(
            f"{path}/merge",
            {"version": -1, "message": message, "strategy": strategy or "merge-commit"},
        )
        return json_content(data)

    return handler


def _decline_pull_request_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "decline_pull_request"
        path = _pull_request_target(arguments, config, tool)
        message = optional_string(arguments, "message", tool)
        data = client.post_json(f"{path}/decline", {"version": -1, "message": message})
        return json_content(data)

    return handler


def _add_comment_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "add_comment"
        path = _pull_request_target(arguments, config, tool)
        text = require_string(arguments, "text", tool)
        parent_id = optional_int(arguments, "parentId", tool, default=None, minimum=1)
        body: dict[str, object] = {"text": text}
        if parent_id is not None:
            body["parent"] = {"id": parent_id}
        return json_content(client.post_json(f"{path}/comments", body))

    return handler


def _get_diff_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "get_diff"
        path = _pull_request_target(arguments, config, tool)
        context_lines = optional_int(
            arguments, "contextLines", tool, default=DEFAULT_CONTEXT_LINES, minimum=0
        )
        max_lines_per_file = optional_int(
            arguments, "maxLinesPerFile", tool, default=None, minimum=0
        )
        diff_text = client.get_text(f"{path}/diff", params={"contextLines": context_lines})
        budget = resolve_budget(max_lines_per_file, config.max_lines_per_file)
        return text_content(truncate_diff(diff_text, budget))

    return handler


def _activities_handler(
    client: BitbucketClient,
    config: ServerConfig,
    tool: str,
    actions: frozenset[str] | None,
) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        path = _pull_request_target(arguments, config, tool)
        data = client.get_json(f"{path}/activities")
        if actions is None:
            return json_content(data)
        return json_content([item for item in _values(data) if item.get("action") in actions])

    return handler


def build_search_query(
    query: str,
    project: str | None,
    repository: str | None,
    search_type: str | None,
) -> str:
    """Decorate a search query with project/repo filters."""
    filters = ""
    if project:
        filters += f" project:{project}"
        if repository:
            filters += f" repo:{project}/{repository}"
    if search_type == "file" and "ext:" not in query and not query.startswith('"'):
        return f'"{query}"{filters}'
    return f"{query}{filters}"


def _search_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "search"
        query = require_string(arguments, "query", tool)
        project = optional_string(arguments, "project", tool) or config.default_project
        repository = optional_string(arguments, "repository", tool)
        search_type = optional_choice(arguments, "type", tool, SEARCH_TYPES)
        limit, start = _page_params(arguments, tool, DEFAULT_PAGE_LIMIT, MAX_SEARCH_LIMIT)
        search_query = build_search_query(query, project, repository, search_type)

        try:
            data = client.search(
                {
                    "query": search_query,
                    "entities": {"code": {"start": start, "limit": limit}},
                }
            )
        except BitbucketNotFoundError as error:
            raise ToolDispatchError(
                code="UPSTREAM_UNAVAILABLE",
                message="Search API endpoint not available on this Bitbucket instance",
            ) from error
        except BitbucketApiError as error:
            if error.details:
                raise invalid_params(f"Search error: {error.details[0]}") from error
            raise

        code_results = data.get("code") or {}
        values = _values(code_results)
        return json_content(
            {
                "query": search_query,
                "originalQuery": query,
                "project": project or "global",
                "repository": repository or "all",
                "type": search_type or "code",
                "scope": data.get("scope") or {},
                "total": code_results.get("count") or 0,
                "showing": len(values),
                "isLastPage": code_results.get("isLastPage", True),
                "nextStart": code_results.get("nextStart"),
                "results": [
                    {
                        "repository": item.get("repository"),
                        "file": item.get("file"),
                        "hitCount": item.get("hitCount") or 0,
                        "pathMatches": item.get("pathMatches") or [],
                        "hitContexts": item.get("hitContexts") or [],
                    }
                    for item in values
                ],
            }
        )

    return handler


def _get_file_content_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "get_file_content"
        project = resolve_project(optional_string(arguments, "project", tool), config)
        repository = require_string(arguments, "repository", tool)
        file_path = require_string(arguments, "filePath", tool).lstrip("/")
        branch = optional_string(arguments, "branch", tool)
        limit, start = _page_params(
            arguments, tool, DEFAULT_FILE_LINES_LIMIT, MAX_FILE_LINES_LIMIT
        )
        data = client.get_json(
            f"{_repo_path(project, repository)}/browse/{file_path}",
            params={"limit": limit, "start": start, "at": branch},
        )
        lines = data.get("lines") or []
        return json_content(
            {
                "project": project,
                "repository": repository,
                "filePath": file_path,
                "branch": branch or "default",
                "isLastPage": data.get("isLastPage"),
                "size": data.get("size"),
                "showing": len(lines),
                "startLine": start,
                "lines": [line.get("text") for line in lines if isinstance(line, dict)],
            }
        )

    return handler


def _browse_repository_handler(client: BitbucketClient, config: ServerConfig) -> ToolHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        tool = "browse_repository"
        project = resolve_project(optional_string(arguments, "project", tool), config)
        repository = require_string(arguments, "repository", tool)
        path = (optional_string(arguments, "path", tool) or "").strip("/")
        branch = optional_string(arguments, "branch", tool)
        limit = optional_int(arguments, "limit", tool, default=DEFAULT_BROWSE_LIMIT, minimum=1)
        browse_path = f"/{path}" if path else ""
        data = client.get_json(
            f"{_repo_path(project, repository)}/browse{browse_path}",
            params={"limit": limit, "at": branch},
        )
        children = data.get("children") or {}
        items = _values(children)
        return json_content(
            {
                "project": project,
                "repository": repository,
                "path": path or "root",
                "branch": branch or data.get("revision") or "default",
                "isLastPage": children.get("isLastPage", False),
                "size": children.get("size", 0),
                "showing": len(items),
                "items": [
                    {
                        "name": (item.get("path") or {}).get("name"),
                        "path": (item.get("path") or {}).get("toString"),
                        "type": item.get("type"),
                        "size": item.get("size"),
                    }
                    for item in items
                ],
            }
        )

    return handler


def _values(payload: dict[str, Any]) -> list[dict[str, Any]]:
    raw = payload.get("values")
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


def _http_clone_url(repo: dict[str, Any]) -> str | None:
    links = repo.get("links") or {}
    for link in links.get("clone") or []:
        if isinstance(link, dict) and link.get("name") == "http":
            return link.get("href")
    return None
