"""Tool registry and dispatch layer.

This module:
- defines the tools exposed to the host (public contract surface)
- builds the immutable runtime context from host-provided config
- creates a correlation_id per invocation
- parses arguments into per-tool structs before any network activity
- emits exactly one invocation telemetry event per call, reflecting the actual outcome
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .ado_client import JSON_PATCH_CONTENT_TYPE, AdoClient, ApiRequest
from .classifier import classify_exception
from .config import AppConfig
from .errors import INVALID_PARAMS, UPSTREAM_ERROR, AdoError, error_to_result
from .patch_document import build_create_document, build_update_document, to_json_patch
from .telemetry import INVOCATION, TelemetrySink, build_event, new_correlation_id
from .tool_requests import (
    AdoApiCallArgs,
    CreateWorkItemArgs,
    GetBuildArgs,
    GetPipelineRunArgs,
    GetPrCommentsArgs,
    GetPullRequestArgs,
    GetReleaseArgs,
    GetRepoArgs,
    GetRepoFileArgs,
    GetTestPlanArgs,
    GetWikiPageArgs,
    GetWorkItemArgs,
    GetWorkItemsArgs,
    ListBuildsArgs,
    ListPipelinesArgs,
    ListPullRequestsArgs,
    ListReleasesArgs,
    ListRepoBranchesArgs,
    ListReposArgs,
    ListTestPlansArgs,
    ListWikiPagesArgs,
    QueryWorkItemsArgs,
    SearchCodeArgs,
    SearchWikiPagesArgs,
    ToolName,
    UpdateWorkItemArgs,
    parse_arguments,
)

logger = logging.getLogger(__name__)

# Azure DevOps accepts at most this many ids per work item batch read.
WORK_ITEMS_BATCH_SIZE = 200

_PROJECT_PROP: dict[str, Any] = {
    "type": "string",
    "description": "Project name (defaults to the configured project)",
}


def _top_prop(default: int) -> dict[str, Any]:
    return {"type": "integer", "minimum": 1, "default": default, "description": "Max results"}


TOOL_METADATA: dict[str, dict[str, Any]] = {
    ToolName.GET_WIKI_PAGE.value: {
        "description": "Retrieve a wiki page by ID or path.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project": _PROJECT_PROP,
                "wiki": {"type": "string", "description": "Wiki name (defaults to the project wiki)"},
                "pageId": {"type": "string", "description": "Wiki page ID"},
                "path": {"type": "string", "description": "Wiki page path"},
                "includeContent": {"type": "boolean", "default": True},
            },
        },
    },
    ToolName.LIST_WIKI_PAGES.value: {
        "description": "List pages in a wiki.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project": _PROJECT_PROP,
                "wiki": {"type": "string", "description": "Wiki name"},
                "recursive": {"type": "boolean", "default": False, "description": "Include sub-pages"},
            },
        },
    },
    ToolName.SEARCH_WIKI_PAGES.value: {
        "description": "Search wiki pages by content or title.",
        "inputSchema": {
            "type": "object",
            "required": ["query"],
            "properties": {
                "project": _PROJECT_PROP,
                "query": {"type": "string", "minLength": 1},
                "wiki": {"type": "string", "description": "Wiki to search (defaults to the project wiki)"},
                "$top": _top_prop(10),
            },
        },
    },
    ToolName.LIST_REPOS.value: {
        "description": "List repositories in the project.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project": _PROJECT_PROP,
                "includeLinks": {"type": "boolean", "default": False},
            },
        },
    },
    ToolName.GET_REPO.value: {
        "description": "Get repository details by name.",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {
                "project": _PROJECT_PROP,
                "repo": {"type": "string", "minLength": 1},
            },
        },
    },
    ToolName.GET_REPO_FILE.value: {
        "description": "Get file content from a repository branch.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "path"],
            "properties": {
                "project": _PROJECT_PROP,
                "repo": {"type": "string", "minLength": 1},
                "path": {"type": "string", "minLength": 1},
                "branch": {"type": "string", "default": "main"},
                "download": {"type": "boolean", "default": True, "description": "Include file content"},
            },
        },
    },
    ToolName.LIST_REPO_BRANCHES.value: {
        "description": "List branches in a repository.",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {
                "project": _PROJECT_PROP,
                "repo": {"type": "string", "minLength": 1},
                "includeLinks": {"type": "boolean", "default": False},
            },
        },
    },
    ToolName.SEARCH_CODE.value: {
        "description": "Search code across repositories.",
        "inputSchema": {
            "type": "object",
            "required": ["searchText"],
            "properties": {
                "project": _PROJECT_PROP,
                "searchText": {"type": "string", "minLength": 1},
                "repo": {"type": "string", "description": "Restrict to one repository"},
                "$top": _top_prop(10),
            },
        },
    },
    ToolName.GET_WORK_ITEM.value: {
        "description": "Get work item details by ID.",
        "inputSchema": {
            "type": "object",
            "required": ["workItemId"],
            "properties": {
                "project": _PROJECT_PROP,
                "workItemId": {"type": "integer", "minimum": 1},
                "fields": {"type": "string", "description": "Comma-separated field names"},
                "expand": {"type": "string", "default": "all", "description": "all, relations, fields, links, none"},
            },
        },
    },
    ToolName.GET_WORK_ITEMS.value: {
        "description": "Get multiple work items by IDs.",
        "inputSchema": {
            "type": "object",
            "required": ["workItemIds"],
            "properties": {
                "project": _PROJECT_PROP,
                "workItemIds": {"type": "array", "items": {"type": "integer"}, "minItems": 1},
                "fields": {"type": "string", "description": "Comma-separated field names"},
                "expand": {"type": "string", "default": "all"},
            },
        },
    },
    ToolName.QUERY_WORK_ITEMS.value: {
        "description": "Query work items using WIQL (Work Item Query Language).",
        "inputSchema": {
            "type": "object",
            "required": ["wiql"],
            "properties": {
                "project": _PROJECT_PROP,
                "wiql": {"type": "string", "minLength": 1},
                "$top": _top_prop(100),
            },
        },
    },
    ToolName.CREATE_WORK_ITEM.value: {
        "description": "Create a new work item.",
        "inputSchema": {
            "type": "object",
            "required": ["type", "title"],
            "properties": {
                "project": _PROJECT_PROP,
                "type": {"type": "string", "description": "Work item type (e.g., Task, Bug, User Story)"},
                "title": {"type": "string", "minLength": 1},
                "description": {"type": "string"},
                "fields": {"type": "object", "description": "Additional fields, including Custom.* fields"},
            },
        },
    },
    ToolName.UPDATE_WORK_ITEM.value: {
        "description": "Update fields of a work item and add or remove its links.",
        "inputSchema": {
            "type": "object",
            "required": ["workItemId"],
            "properties": {
                "project": _PROJECT_PROP,
                "workItemId": {"type": "integer", "minimum": 1},
                "fields": {"type": "object", "description": "Fields to replace"},
                "links": {
                    "type": "array",
                    "description": "Links to add",
                    "items": {
                        "type": "object",
                        "required": ["rel", "url"],
                        "properties": {
                            "rel": {"type": "string"},
                            "url": {"type": "string"},
                            "attributes": {"type": "object"},
                        },
                    },
                },
                "removeLinks": {
                    "type": "array",
                    "description": "Link URLs to remove (case-insensitive, trailing slash ignored)",
                    "items": {"type": "string"},
                },
            },
        },
    },
    ToolName.LIST_PULL_REQUESTS.value: {
        "description": "List pull requests in a repository.",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {
                "project": _PROJECT_PROP,
                "repo": {"type": "string", "minLength": 1},
                "status": {"type": "string", "enum": ["active", "completed", "abandoned", "all"], "default": "active"},
                "$top": _top_prop(10),
            },
        },
    },
    ToolName.GET_PULL_REQUEST.value: {
        "description": "Get pull request details.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "pullRequestId"],
            "properties": {
                "project": _PROJECT_PROP,
                "repo": {"type": "string", "minLength": 1},
                "pullRequestId": {"type": "integer", "minimum": 1},
                "includeCommits": {"type": "boolean", "default": False},
                "includeWorkItems": {"type": "boolean", "default": False},
            },
        },
    },
    ToolName.GET_PR_COMMENTS.value: {
        "description": "Get pull request review comment threads.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "pullRequestId"],
            "properties": {
                "project": _PROJECT_PROP,
                "repo": {"type": "string", "minLength": 1},
                "pullRequestId": {"type": "integer", "minimum": 1},
                "$top": _top_prop(100),
            },
        },
    },
    ToolName.LIST_BUILDS.value: {
        "description": "List recent builds.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project": _PROJECT_PROP,
                "definitionId": {"type": "integer"},
                "status": {"type": "string", "description": "Build status filter"},
                "result": {"type": "string", "description": "Build result filter"},
                "$top": _top_prop(10),
            },
        },
    },
    ToolName.GET_BUILD.value: {
        "description": "Get build details by ID.",
        "inputSchema": {
            "type": "object",
            "required": ["buildId"],
            "properties": {
                "project": _PROJECT_PROP,
                "buildId": {"type": "integer", "minimum": 1},
            },
        },
    },
    ToolName.LIST_PIPELINES.value: {
        "description": "List pipelines in the project.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project": _PROJECT_PROP,
                "$top": _top_prop(10),
            },
        },
    },
    ToolName.GET_PIPELINE_RUN.value: {
        "description": "Get pipeline run details.",
        "inputSchema": {
            "type": "object",
            "required": ["pipelineId", "runId"],
            "properties": {
                "project": _PROJECT_PROP,
                "pipelineId": {"type": "integer", "minimum": 1},
                "runId": {"type": "integer", "minimum": 1},
            },
        },
    },
    ToolName.LIST_RELEASES.value: {
        "description": "List releases.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project": _PROJECT_PROP,
                "definitionId": {"type": "integer"},
                "status": {"type": "string", "description": "Release status filter"},
                "$top": _top_prop(10),
            },
        },
    },
    ToolName.GET_RELEASE.value: {
        "description": "Get release details.",
        "inputSchema": {
            "type": "object",
            "required": ["releaseId"],
            "properties": {
                "project": _PROJECT_PROP,
                "releaseId": {"type": "integer", "minimum": 1},
            },
        },
    },
    ToolName.LIST_TEST_PLANS.value: {
        "description": "List test plans.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "project": _PROJECT_PROP,
                "$top": _top_prop(10),
            },
        },
    },
    ToolName.GET_TEST_PLAN.value: {
        "description": "Get test plan details.",
        "inputSchema": {
            "type": "object",
            "required": ["planId"],
            "properties": {
                "project": _PROJECT_PROP,
                "planId": {"type": "integer", "minimum": 1},
            },
        },
    },
    ToolName.ADO_API_CALL.value: {
        "description": "Make a generic Azure DevOps REST API call and return the response body unmodified.",
        "inputSchema": {
            "type": "object",
            "required": ["endpoint"],
            "properties": {
                "project": _PROJECT_PROP,
                "endpoint": {"type": "string", "description": "API endpoint (e.g., /git/repositories)"},
                "method": {
                    "type": "string",
                    "enum": ["GET", "POST", "PATCH", "PUT", "DELETE"],
                    "default": "GET",
                },
                "params": {"type": "object", "description": "Query parameters"},
                "body": {"description": "Request body (for POST/PATCH/PUT)"},
            },
        },
    },
}


@dataclass(frozen=True, slots=True)
class Runtime:
    """Immutable per-process dependencies shared across tool calls."""

    config: AppConfig
    telemetry: TelemetrySink
    client: AdoClient


def build_runtime(config: AppConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> Runtime:
    """Wire the telemetry sink and REST client for ``config``."""
    telemetry = TelemetrySink(
        sink_path=config.telemetry_log_path,
        max_bytes=config.telemetry_max_bytes,
        max_backups=config.telemetry_max_backups,
    )
    client = AdoClient(
        organization=config.organization,
        default_project=config.project,
        pat=config.pat,
        limits=config.limits,
        telemetry=telemetry,
        transport=transport,
    )
    return Runtime(config=config, telemetry=telemetry, client=client)


@dataclass(frozen=True, slots=True)
class ToolContext:
    """What a handler may use: the runtime plus the invocation's correlation id."""

    runtime: Runtime
    correlation_id: str

    async def call(self, request: ApiRequest) -> object:
        return await self.runtime.client.request(request, correlation_id=self.correlation_id)


def _seg(value: object) -> str:
    return quote(str(value), safe="")


def _expect_dict(data: object, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise AdoError(kind=UPSTREAM_ERROR, message=f"Unexpected {what} response")
    return data


def _values(data: dict[str, Any]) -> list[dict[str, Any]]:
    value = data.get("value")
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def _count(data: dict[str, Any], items: list[Any]) -> int:
    count = data.get("count")
    return count if isinstance(count, int) else len(items)


def _display_name(identity: object) -> str | None:
    if isinstance(identity, dict):
        name = identity.get("displayName")
        return name if isinstance(name, str) else None
    return None


def _work_item_params(*, expand: str | None, fields: str | None) -> dict[str, Any]:
    # Azure DevOps rejects $expand combined with an explicit field list.
    if fields:
        return {"fields": fields}
    return {"$expand": expand} if expand else {}


# Wiki


def _flatten_wiki_pages(page: dict[str, Any]) -> list[dict[str, Any]]:
    pages = [{"id": page.get("id"), "path": page.get("path"), "url": page.get("url")}]
    for sub in page.get("subPages") or []:
        if isinstance(sub, dict):
            pages.extend(_flatten_wiki_pages(sub))
    return pages


async def _tool_get_wiki_page(ctx: ToolContext, args: GetWikiPageArgs) -> dict[str, Any]:
    wiki = _seg(args.wiki or ctx.runtime.config.wiki)
    params: dict[str, Any] = {}
    if args.page_id:
        endpoint = f"/wiki/wikis/{wiki}/pages/{_seg(args.page_id)}"
    else:
        endpoint = f"/wiki/wikis/{wiki}/pages"
        params["path"] = args.path
    if args.include_content:
        params["includeContent"] = True

    data = _expect_dict(await ctx.call(ApiRequest(endpoint=endpoint, query_params=params, project=args.project)), "wiki page")
    return {
        "page": {
            "pageId": data.get("id"),
            "path": data.get("path"),
            "content": data.get("content"),
            "url": data.get("url"),
            "gitItemPath": data.get("gitItemPath"),
        }
    }


async def _tool_list_wiki_pages(ctx: ToolContext, args: ListWikiPagesArgs) -> dict[str, Any]:
    wiki = _seg(args.wiki or ctx.runtime.config.wiki)
    params = {"path": "/", "recursionLevel": "full" if args.recursive else "oneLevel"}
    data = _expect_dict(
        await ctx.call(ApiRequest(endpoint=f"/wiki/wikis/{wiki}/pages", query_params=params, project=args.project)),
        "wiki pages",
    )
    if "value" in data:
        pages = [{"id": p.get("id"), "path": p.get("path"), "url": p.get("url")} for p in _values(data)]
    else:
        pages = _flatten_wiki_pages(data)
    return {"count": len(pages), "pages": pages}


async def _tool_search_wiki_pages(ctx: ToolContext, args: SearchWikiPagesArgs) -> dict[str, Any]:
    project = ctx.runtime.client.resolve_project(args.project)
    wiki = args.wiki or ctx.runtime.config.wiki
    body = {"searchText": args.query, "$top": args.top, "filters": {"Project": [project], "Wiki": [wiki]}}
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint="/search/wikisearchresults",
                method="POST",
                body=body,
                project=args.project,
                service="almsearch",
            )
        ),
        "wiki search",
    )
    results = []
    for r in data.get("results") or []:
        if not isinstance(r, dict):
            continue
        hit_wiki = r.get("wiki")
        wiki_name = hit_wiki.get("name") if isinstance(hit_wiki, dict) else None
        results.append({"fileName": r.get("fileName"), "path": r.get("path"), "wiki": wiki_name})
    return {"count": len(results), "pages": results}


# Repositories


async def _tool_list_repos(ctx: ToolContext, args: ListReposArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint="/git/repositories",
                query_params={"includeLinks": args.include_links},
                project=args.project,
            )
        ),
        "repositories",
    )
    repos = _values(data)
    return {
        "count": _count(data, repos),
        "repositories": [
            {
                "id": r.get("id"),
                "name": r.get("name"),
                "url": r.get("url"),
                "defaultBranch": r.get("defaultBranch"),
                "size": r.get("size"),
            }
            for r in repos
        ],
    }


async def _tool_get_repo(ctx: ToolContext, args: GetRepoArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(ApiRequest(endpoint=f"/git/repositories/{_seg(args.repo)}", project=args.project)),
        "repository",
    )
    return {
        "repository": {
            "id": data.get("id"),
            "name": data.get("name"),
            "url": data.get("url"),
            "defaultBranch": data.get("defaultBranch"),
            "size": data.get("size"),
            "remoteUrl": data.get("remoteUrl"),
        }
    }


async def _tool_get_repo_file(ctx: ToolContext, args: GetRepoFileArgs) -> dict[str, Any]:
    params = {
        "path": args.path,
        "versionDescriptor.version": args.branch,
        "versionDescriptor.versionType": "branch",
        "includeContent": args.download,
        "$format": "json",
    }
    data = _expect_dict(
        await ctx.call(
            ApiRequest(endpoint=f"/git/repositories/{_seg(args.repo)}/items", query_params=params, project=args.project)
        ),
        "file",
    )
    return {
        "file": {
            "path": data.get("path"),
            "branch": args.branch,
            "content": data.get("content"),
            "objectId": data.get("objectId"),
            "commitId": data.get("commitId"),
            "url": data.get("url"),
            "isFolder": data.get("isFolder", False),
        }
    }


async def _tool_list_repo_branches(ctx: ToolContext, args: ListRepoBranchesArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint=f"/git/repositories/{_seg(args.repo)}/refs",
                query_params={"filter": "heads/", "includeLinks": args.include_links},
                project=args.project,
            )
        ),
        "branches",
    )
    refs = _values(data)
    branches = []
    for b in refs:
        name = b.get("name")
        if isinstance(name, str):
            name = name.removeprefix("refs/heads/")
        branches.append({"name": name, "objectId": b.get("objectId"), "url": b.get("url")})
    return {"count": _count(data, refs), "branches": branches}


async def _tool_search_code(ctx: ToolContext, args: SearchCodeArgs) -> dict[str, Any]:
    project = ctx.runtime.client.resolve_project(args.project)
    filters: dict[str, list[str]] = {"Project": [project]}
    if args.repo:
        filters["Repository"] = [args.repo]
    body = {"searchText": args.search_text, "$top": args.top, "filters": filters}
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint="/search/codesearchresults",
                method="POST",
                body=body,
                project=args.project,
                service="almsearch",
            )
        ),
        "code search",
    )
    results = [r for r in data.get("results") or [] if isinstance(r, dict)]
    return {
        "count": _count(data, results),
        "results": [
            {
                "fileName": r.get("fileName"),
                "path": r.get("path"),
                "repository": r["repository"].get("name") if isinstance(r.get("repository"), dict) else None,
                "matches": r.get("matches"),
            }
            for r in results
        ],
    }


# Work items


def _work_item_summary(wi: dict[str, Any], *, relations: bool = False) -> dict[str, Any]:
    out = {"id": wi.get("id"), "rev": wi.get("rev"), "fields": wi.get("fields"), "url": wi.get("url")}
    if relations:
        out["relations"] = wi.get("relations")
    return out


async def _tool_get_work_item(ctx: ToolContext, args: GetWorkItemArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint=f"/wit/workitems/{args.work_item_id}",
                query_params=_work_item_params(expand=args.expand, fields=args.fields),
                project=args.project,
            )
        ),
        "work item",
    )
    return {"workItem": _work_item_summary(data, relations=True)}


async def _fetch_work_items(
    ctx: ToolContext,
    ids: list[int],
    *,
    project: str | None,
    expand: str | None,
    fields: str | None,
) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for i in range(0, len(ids), WORK_ITEMS_BATCH_SIZE):
        batch = ids[i : i + WORK_ITEMS_BATCH_SIZE]
        params = {"ids": ",".join(str(x) for x in batch)}
        params.update(_work_item_params(expand=expand, fields=fields))
        data = _expect_dict(
            await ctx.call(ApiRequest(endpoint="/wit/workitems", query_params=params, project=project)),
            "work items",
        )
        items.extend(_values(data))
    return items


async def _tool_get_work_items(ctx: ToolContext, args: GetWorkItemsArgs) -> dict[str, Any]:
    items = await _fetch_work_items(
        ctx,
        list(args.work_item_ids),
        project=args.project,
        expand=args.expand,
        fields=args.fields,
    )
    return {"count": len(items), "workItems": [_work_item_summary(wi) for wi in items]}


async def _tool_query_work_items(ctx: ToolContext, args: QueryWorkItemsArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint="/wit/wiql",
                method="POST",
                query_params={"$top": args.top},
                body={"query": args.wiql},
                project=args.project,
            )
        ),
        "WIQL",
    )
    refs = data.get("workItems") or []
    ids = [r["id"] for r in refs if isinstance(r, dict) and isinstance(r.get("id"), int)][: args.top]
    if not ids:
        return {"count": 0, "workItems": []}

    items = await _fetch_work_items(ctx, ids, project=args.project, expand="all", fields=None)
    return {
        "count": len(items),
        "workItems": [{"id": wi.get("id"), "fields": wi.get("fields"), "url": wi.get("url")} for wi in items],
    }


async def _tool_create_work_item(ctx: ToolContext, args: CreateWorkItemArgs) -> dict[str, Any]:
    document = build_create_document(title=args.title, description=args.description, fields=args.fields)
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint=f"/wit/workitems/${_seg(args.type)}",
                method="POST",
                body=to_json_patch(document),
                content_type=JSON_PATCH_CONTENT_TYPE,
                project=args.project,
            )
        ),
        "work item",
    )
    return {"workItem": _work_item_summary(data)}


async def _current_relations(ctx: ToolContext, args: UpdateWorkItemArgs) -> list[Any]:
    """Read back the relation list; an empty list skips removal."""
    try:
        data = await ctx.call(
            ApiRequest(
                endpoint=f"/wit/workitems/{args.work_item_id}",
                query_params={"$expand": "relations"},
                project=args.project,
            )
        )
    except AdoError as exc:
        logger.warning("Could not fetch current relations for removal: %s", exc.message)
        return []
    if not isinstance(data, dict) or not isinstance(data.get("relations"), list):
        return []
    return data["relations"]


async def _tool_update_work_item(ctx: ToolContext, args: UpdateWorkItemArgs) -> dict[str, Any]:
    relations: list[Any] = []
    if args.remove_links:
        relations = await _current_relations(ctx, args)

    document = build_update_document(
        fields=args.fields,
        current_relations=relations,
        remove_urls=args.remove_links,
        add_relations=args.relations_to_add,
    )
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint=f"/wit/workitems/{args.work_item_id}",
                method="PATCH",
                body=to_json_patch(document),
                content_type=JSON_PATCH_CONTENT_TYPE,
                project=args.project,
            )
        ),
        "work item",
    )
    return {"workItem": _work_item_summary(data, relations=True)}


# Pull requests


async def _tool_list_pull_requests(ctx: ToolContext, args: ListPullRequestsArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint=f"/git/repositories/{_seg(args.repo)}/pullrequests",
                query_params={"searchCriteria.status": args.status, "$top": args.top},
                project=args.project,
            )
        ),
        "pull requests",
    )
    prs = _values(data)
    return {
        "count": _count(data, prs),
        "pullRequests": [
            {
                "pullRequestId": pr.get("pullRequestId"),
                "title": pr.get("title"),
                "status": pr.get("status"),
                "createdBy": _display_name(pr.get("createdBy")),
                "creationDate": pr.get("creationDate"),
                "url": pr.get("url"),
            }
            for pr in prs
        ],
    }


async def _tool_get_pull_request(ctx: ToolContext, args: GetPullRequestArgs) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if args.include_commits:
        params["includeCommits"] = True
    if args.include_work_items:
        params["includeWorkItemRefs"] = True
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint=f"/git/repositories/{_seg(args.repo)}/pullrequests/{args.pull_request_id}",
                query_params=params,
                project=args.project,
            )
        ),
        "pull request",
    )
    return {
        "pullRequest": {
            "pullRequestId": data.get("pullRequestId"),
            "title": data.get("title"),
            "description": data.get("description"),
            "status": data.get("status"),
            "createdBy": data.get("createdBy"),
            "reviewers": data.get("reviewers"),
            "commits": data.get("commits"),
            "workItemRefs": data.get("workItemRefs"),
            "url": data.get("url"),
        }
    }


async def _tool_get_pr_comments(ctx: ToolContext, args: GetPrCommentsArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(
                endpoint=f"/git/repositories/{_seg(args.repo)}/pullrequests/{args.pull_request_id}/threads",
                query_params={"$top": args.top},
                project=args.project,
            )
        ),
        "pull request threads",
    )
    threads = _values(data)
    return {
        "count": _count(data, threads),
        "threads": [
            {
                "id": t.get("id"),
                "status": t.get("status"),
                "comments": [
                    {
                        "id": c.get("id"),
                        "content": c.get("content"),
                        "author": _display_name(c.get("author")),
                        "publishedDate": c.get("publishedDate"),
                    }
                    for c in t.get("comments") or []
                    if isinstance(c, dict)
                ],
            }
            for t in threads
        ],
    }


# Builds and pipelines


async def _tool_list_builds(ctx: ToolContext, args: ListBuildsArgs) -> dict[str, Any]:
    params: dict[str, Any] = {"$top": args.top}
    if args.definition_id is not None:
        params["definitions"] = args.definition_id
    if args.status:
        params["statusFilter"] = args.status
    if args.result:
        params["resultFilter"] = args.result
    data = _expect_dict(
        await ctx.call(ApiRequest(endpoint="/build/builds", query_params=params, project=args.project)),
        "builds",
    )
    builds = _values(data)
    return {
        "count": _count(data, builds),
        "builds": [
            {
                "id": b.get("id"),
                "buildNumber": b.get("buildNumber"),
                "status": b.get("status"),
                "result": b.get("result"),
                "definition": b["definition"].get("name") if isinstance(b.get("definition"), dict) else None,
                "requestedBy": _display_name(b.get("requestedBy")),
                "startTime": b.get("startTime"),
                "finishTime": b.get("finishTime"),
                "url": b.get("url"),
            }
            for b in builds
        ],
    }


async def _tool_get_build(ctx: ToolContext, args: GetBuildArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(ApiRequest(endpoint=f"/build/builds/{args.build_id}", project=args.project)),
        "build",
    )
    return {
        "build": {
            "id": data.get("id"),
            "buildNumber": data.get("buildNumber"),
            "status": data.get("status"),
            "result": data.get("result"),
            "definition": data.get("definition"),
            "logs": data.get("logs"),
            "url": data.get("url"),
        }
    }


async def _tool_list_pipelines(ctx: ToolContext, args: ListPipelinesArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(ApiRequest(endpoint="/pipelines", query_params={"$top": args.top}, project=args.project)),
        "pipelines",
    )
    pipelines = _values(data)
    return {
        "count": _count(data, pipelines),
        "pipelines": [
            {"id": p.get("id"), "name": p.get("name"), "folder": p.get("folder"), "url": p.get("url")}
            for p in pipelines
        ],
    }


async def _tool_get_pipeline_run(ctx: ToolContext, args: GetPipelineRunArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(endpoint=f"/pipelines/{args.pipeline_id}/runs/{args.run_id}", project=args.project)
        ),
        "pipeline run",
    )
    return {
        "run": {
            "id": data.get("id"),
            "name": data.get("name"),
            "state": data.get("state"),
            "result": data.get("result"),
            "createdDate": data.get("createdDate"),
            "finishedDate": data.get("finishedDate"),
            "url": data.get("url"),
        }
    }


# Releases


async def _tool_list_releases(ctx: ToolContext, args: ListReleasesArgs) -> dict[str, Any]:
    params: dict[str, Any] = {"$top": args.top}
    if args.definition_id is not None:
        params["definitionId"] = args.definition_id
    if args.status:
        params["statusFilter"] = args.status
    data = _expect_dict(
        await ctx.call(
            ApiRequest(endpoint="/release/releases", query_params=params, project=args.project, service="vsrm")
        ),
        "releases",
    )
    releases = _values(data)
    return {
        "count": _count(data, releases),
        "releases": [
            {
                "id": r.get("id"),
                "name": r.get("name"),
                "status": r.get("status"),
                "createdOn": r.get("createdOn"),
                "url": r.get("url"),
            }
            for r in releases
        ],
    }


async def _tool_get_release(ctx: ToolContext, args: GetReleaseArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(
            ApiRequest(endpoint=f"/release/releases/{args.release_id}", project=args.project, service="vsrm")
        ),
        "release",
    )
    return {
        "release": {
            "id": data.get("id"),
            "name": data.get("name"),
            "status": data.get("status"),
            "environments": data.get("environments"),
            "url": data.get("url"),
        }
    }


# Test plans


async def _tool_list_test_plans(ctx: ToolContext, args: ListTestPlansArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(ApiRequest(endpoint="/testplan/plans", project=args.project)),
        "test plans",
    )
    plans = _values(data)[: args.top]
    return {
        "count": len(plans),
        "testPlans": [
            {"id": tp.get("id"), "name": tp.get("name"), "areaPath": tp.get("areaPath"), "state": tp.get("state")}
            for tp in plans
        ],
    }


async def _tool_get_test_plan(ctx: ToolContext, args: GetTestPlanArgs) -> dict[str, Any]:
    data = _expect_dict(
        await ctx.call(ApiRequest(endpoint=f"/testplan/plans/{args.plan_id}", project=args.project)),
        "test plan",
    )
    return {
        "testPlan": {
            "id": data.get("id"),
            "name": data.get("name"),
            "areaPath": data.get("areaPath"),
            "state": data.get("state"),
            "rootSuite": data.get("rootSuite"),
        }
    }


# Generic


async def _tool_ado_api_call(ctx: ToolContext, args: AdoApiCallArgs) -> dict[str, Any]:
    request = ApiRequest(
        endpoint=args.endpoint,
        method=args.method.upper(),
        query_params=args.params,
        body=args.body,
        project=args.project,
    )
    return {"data": await ctx.call(request)}


Handler = Callable[[ToolContext, Any], Awaitable[dict[str, Any]]]

_TOOL_FUNCS: dict[ToolName, Handler] = {
    ToolName.GET_WIKI_PAGE: _tool_get_wiki_page,
    ToolName.LIST_WIKI_PAGES: _tool_list_wiki_pages,
    ToolName.SEARCH_WIKI_PAGES: _tool_search_wiki_pages,
    ToolName.LIST_REPOS: _tool_list_repos,
    ToolName.GET_REPO: _tool_get_repo,
    ToolName.GET_REPO_FILE: _tool_get_repo_file,
    ToolName.LIST_REPO_BRANCHES: _tool_list_repo_branches,
    ToolName.SEARCH_CODE: _tool_search_code,
    ToolName.GET_WORK_ITEM: _tool_get_work_item,
    ToolName.GET_WORK_ITEMS: _tool_get_work_items,
    ToolName.QUERY_WORK_ITEMS: _tool_query_work_items,
    ToolName.CREATE_WORK_ITEM: _tool_create_work_item,
    ToolName.UPDATE_WORK_ITEM: _tool_update_work_item,
    ToolName.LIST_PULL_REQUESTS: _tool_list_pull_requests,
    ToolName.GET_PULL_REQUEST: _tool_get_pull_request,
    ToolName.GET_PR_COMMENTS: _tool_get_pr_comments,
    ToolName.LIST_BUILDS: _tool_list_builds,
    ToolName.GET_BUILD: _tool_get_build,
    ToolName.LIST_PIPELINES: _tool_list_pipelines,
    ToolName.GET_PIPELINE_RUN: _tool_get_pipeline_run,
    ToolName.LIST_RELEASES: _tool_list_releases,
    ToolName.GET_RELEASE: _tool_get_release,
    ToolName.LIST_TEST_PLANS: _tool_list_test_plans,
    ToolName.GET_TEST_PLAN: _tool_get_test_plan,
    ToolName.ADO_API_CALL: _tool_ado_api_call,
}

_unhandled = set(ToolName) - set(_TOOL_FUNCS)
if _unhandled or set(TOOL_METADATA) != {t.value for t in ToolName}:
    raise RuntimeError(f"Tool table is not exhaustive: {sorted(t.value for t in _unhandled)}")


def _project_from_args(runtime: Runtime, arguments: Mapping[str, Any]) -> str:
    project = arguments.get("project")
    return runtime.client.resolve_project(project if isinstance(project, str) else None)


async def dispatch_tool(name: str, arguments: Mapping[str, Any], *, runtime: Runtime) -> dict[str, Any]:
    """Dispatch a tool call.

    Always returns an envelope that includes correlation_id. Exactly one
    invocation event is written to the telemetry sink, whatever the outcome.
    """
    correlation_id = new_correlation_id()
    project = _project_from_args(runtime, arguments)
    start = runtime.telemetry.measure_start()

    outcome = "failed"
    reason: str | None = None
    status_code: int | None = None
    try:
        tool = ToolName.parse(name)
        args = parse_arguments(tool, arguments)
        result = await _TOOL_FUNCS[tool](ToolContext(runtime=runtime, correlation_id=correlation_id), args)

        outcome = "succeeded"
        out: dict[str, Any] = {"ok": True, "correlation_id": correlation_id}
        out.update(result)
        return out

    except AdoError as err:
        outcome = "denied" if err.kind == INVALID_PARAMS else "failed"
        reason = err.kind
        status_code = err.status_code
        logger.warning("Tool %s %s: %s", name, outcome, err.message)
        error = error_to_result(err)
        error["correlation_id"] = correlation_id
        return error
    except Exception as exc:  # pylint: disable=broad-exception-caught
        err = classify_exception(exc)
        reason = err.kind
        logger.exception("Tool %s failed unexpectedly", name)
        error = error_to_result(err)
        error["correlation_id"] = correlation_id
        return error
    finally:
        runtime.telemetry.write_event(
            build_event(
                kind=INVOCATION,
                name=name,
                project=project,
                outcome=outcome,
                correlation_id=correlation_id,
                status_code=status_code,
                reason=reason,
                duration_ms=runtime.telemetry.measure_duration_ms(start),
            )
        )
