"""Tool names and per-tool argument structs.

Every tool has a frozen dataclass describing its arguments. Field metadata names
the wire argument and its JSON type; fields without a default are required.
``parse_arguments`` validates by construction, so a handler only ever sees a
well-formed struct.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import MISSING, dataclass, field, fields
from enum import Enum
from typing import Any

from .errors import invalid_params
from .patch_document import Relation


class ToolName(str, Enum):
    """The closed set of tools exposed to the host."""

    GET_WIKI_PAGE = "get_wiki_page"
    LIST_WIKI_PAGES = "list_wiki_pages"
    SEARCH_WIKI_PAGES = "search_wiki_pages"
    LIST_REPOS = "list_repos"
    GET_REPO = "get_repo"
    GET_REPO_FILE = "get_repo_file"
    LIST_REPO_BRANCHES = "list_repo_branches"
    SEARCH_CODE = "search_code"
    GET_WORK_ITEM = "get_work_item"
    GET_WORK_ITEMS = "get_work_items"
    QUERY_WORK_ITEMS = "query_work_items"
    CREATE_WORK_ITEM = "create_work_item"
    UPDATE_WORK_ITEM = "update_work_item"
    LIST_PULL_REQUESTS = "list_pull_requests"
    GET_PULL_REQUEST = "get_pull_request"
    GET_PR_COMMENTS = "get_pr_comments"
    LIST_BUILDS = "list_builds"
    GET_BUILD = "get_build"
    LIST_PIPELINES = "list_pipelines"
    GET_PIPELINE_RUN = "get_pipeline_run"
    LIST_RELEASES = "list_releases"
    GET_RELEASE = "get_release"
    LIST_TEST_PLANS = "list_test_plans"
    GET_TEST_PLAN = "get_test_plan"
    ADO_API_CALL = "ado_api_call"

    @classmethod
    def parse(cls, name: str) -> ToolName:
        try:
            return cls(name)
        except ValueError:
            raise invalid_params(
                f"Unknown tool: {name}",
                remediation=f"Available tools: {', '.join(sorted(t.value for t in cls))}",
            ) from None


def arg(
    wire_name: str | None = None,
    *,
    kind: type = str,
    default: Any = MISSING,
    default_factory: Any = MISSING,
    minimum: int | None = None,
    items: type | None = None,
) -> Any:
    """Declare an argument field; ``items`` types the elements of a list argument."""
    return field(
        default=default,
        default_factory=default_factory,
        metadata={"wire_name": wire_name, "kind": kind, "minimum": minimum, "items": items},
    )


def _project() -> Any:
    return arg(default=None)


def _top(default: int) -> Any:
    return arg("$top", kind=int, default=default, minimum=1)


@dataclass(frozen=True, slots=True)
class GetWikiPageArgs:
    project: str | None = _project()
    wiki: str | None = arg(default=None)
    page_id: str | None = arg("pageId", default=None)
    path: str | None = arg(default=None)
    include_content: bool = arg("includeContent", kind=bool, default=True)

    def validate(self) -> None:
        if not self.page_id and not self.path:
            raise invalid_params("Either pageId or path must be provided")


@dataclass(frozen=True, slots=True)
class ListWikiPagesArgs:
    project: str | None = _project()
    wiki: str | None = arg(default=None)
    recursive: bool = arg(kind=bool, default=False)


@dataclass(frozen=True, slots=True)
class SearchWikiPagesArgs:
    query: str = arg()
    project: str | None = _project()
    wiki: str | None = arg(default=None)
    top: int = _top(10)


@dataclass(frozen=True, slots=True)
class ListReposArgs:
    project: str | None = _project()
    include_links: bool = arg("includeLinks", kind=bool, default=False)


@dataclass(frozen=True, slots=True)
class GetRepoArgs:
    repo: str = arg()
    project: str | None = _project()


@dataclass(frozen=True, slots=True)
class GetRepoFileArgs:
    repo: str = arg()
    path: str = arg()
    project: str | None = _project()
    branch: str = arg(default="main")
    download: bool = arg(kind=bool, default=True)


@dataclass(frozen=True, slots=True)
class ListRepoBranchesArgs:
    repo: str = arg()
    project: str | None = _project()
    include_links: bool = arg("includeLinks", kind=bool, default=False)


@dataclass(frozen=True, slots=True)
class SearchCodeArgs:
    search_text: str = arg("searchText")
    project: str | None = _project()
    repo: str | None = arg(default=None)
    top: int = _top(10)


@dataclass(frozen=True, slots=True)
class GetWorkItemArgs:
    work_item_id: int = arg("workItemId", kind=int, minimum=1)
    project: str | None = _project()
    fields: str | None = arg(default=None)
    expand: str = arg(default="all")


@dataclass(frozen=True, slots=True)
class GetWorkItemsArgs:
    work_item_ids: list = arg("workItemIds", kind=list, items=int, minimum=1)
    project: str | None = _project()
    fields: str | None = arg(default=None)
    expand: str = arg(default="all")

    def validate(self) -> None:
        if not self.work_item_ids:
            raise invalid_params("Field 'workItemIds' must contain at least one id")


@dataclass(frozen=True, slots=True)
class QueryWorkItemsArgs:
    wiql: str = arg()
    project: str | None = _project()
    top: int = _top(100)


@dataclass(frozen=True, slots=True)
class CreateWorkItemArgs:
    type: str = arg()
    title: str = arg()
    project: str | None = _project()
    description: str | None = arg(default=None)
    fields: dict = arg(kind=dict, default_factory=dict)


@dataclass(frozen=True, slots=True)
class UpdateWorkItemArgs:
    work_item_id: int = arg("workItemId", kind=int, minimum=1)
    project: str | None = _project()
    fields: dict = arg(kind=dict, default_factory=dict)
    links: list = arg(kind=list, default_factory=list)
    remove_links: list = arg("removeLinks", kind=list, default_factory=list)

    def validate(self) -> None:
        for link in self.links:
            if not isinstance(link, Mapping):
                raise invalid_params("Each entry of 'links' must be an object with rel and url")
            if not isinstance(link.get("rel"), str) or not link.get("rel"):
                raise invalid_params("Each entry of 'links' requires a 'rel' string")
            if not isinstance(link.get("url"), str) or not link.get("url"):
                raise invalid_params("Each entry of 'links' requires a 'url' string")
            attributes = link.get("attributes")
            if attributes is not None and not isinstance(attributes, Mapping):
                raise invalid_params("Link 'attributes' must be an object")
        for url in self.remove_links:
            if not isinstance(url, str):
                raise invalid_params("Field 'removeLinks' must contain URL strings")
        if not self.fields and not self.links and not self.remove_links:
            raise invalid_params("At least one field update or link operation is required")

    @property
    def relations_to_add(self) -> list[Relation]:
        return [Relation(rel=link["rel"], url=link["url"], attributes=link.get("attributes")) for link in self.links]


@dataclass(frozen=True, slots=True)
class ListPullRequestsArgs:
    repo: str = arg()
    project: str | None = _project()
    status: str = arg(default="active")
    top: int = _top(10)


@dataclass(frozen=True, slots=True)
class GetPullRequestArgs:
    repo: str = arg()
    pull_request_id: int = arg("pullRequestId", kind=int, minimum=1)
    project: str | None = _project()
    include_commits: bool = arg("includeCommits", kind=bool, default=False)
    include_work_items: bool = arg("includeWorkItems", kind=bool, default=False)


@dataclass(frozen=True, slots=True)
class GetPrCommentsArgs:
    repo: str = arg()
    pull_request_id: int = arg("pullRequestId", kind=int, minimum=1)
    project: str | None = _project()
    top: int = _top(100)


@dataclass(frozen=True, slots=True)
class ListBuildsArgs:
    project: str | None = _project()
    definition_id: int | None = arg("definitionId", kind=int, default=None)
    status: str | None = arg(default=None)
    result: str | None = arg(default=None)
    top: int = _top(10)


@dataclass(frozen=True, slots=True)
class GetBuildArgs:
    build_id: int = arg("buildId", kind=int, minimum=1)
    project: str | None = _project()


@dataclass(frozen=True, slots=True)
class ListPipelinesArgs:
    project: str | None = _project()
    top: int = _top(10)


@dataclass(frozen=True, slots=True)
class GetPipelineRunArgs:
    pipeline_id: int = arg("pipelineId", kind=int, minimum=1)
    run_id: int = arg("runId", kind=int, minimum=1)
    project: str | None = _project()


@dataclass(frozen=True, slots=True)
class ListReleasesArgs:
    project: str | None = _project()
    definition_id: int | None = arg("definitionId", kind=int, default=None)
    status: str | None = arg(default=None)
    top: int = _top(10)


@dataclass(frozen=True, slots=True)
class GetReleaseArgs:
    release_id: int = arg("releaseId", kind=int, minimum=1)
    project: str | None = _project()


@dataclass(frozen=True, slots=True)
class ListTestPlansArgs:
    project: str | None = _project()
    top: int = _top(10)


@dataclass(frozen=True, slots=True)
class GetTestPlanArgs:
    plan_id: int = arg("planId", kind=int, minimum=1)
    project: str | None = _project()


@dataclass(frozen=True, slots=True)
class AdoApiCallArgs:
    endpoint: str = arg()
    project: str | None = _project()
    method: str = arg(default="GET")
    params: dict = arg(kind=dict, default_factory=dict)
    body: Any = arg(kind=object, default=None)


TOOL_ARGUMENTS: dict[ToolName, type] = {
    ToolName.GET_WIKI_PAGE: GetWikiPageArgs,
    ToolName.LIST_WIKI_PAGES: ListWikiPagesArgs,
    ToolName.SEARCH_WIKI_PAGES: SearchWikiPagesArgs,
    ToolName.LIST_REPOS: ListReposArgs,
    ToolName.GET_REPO: GetRepoArgs,
    ToolName.GET_REPO_FILE: GetRepoFileArgs,
    ToolName.LIST_REPO_BRANCHES: ListRepoBranchesArgs,
    ToolName.SEARCH_CODE: SearchCodeArgs,
    ToolName.GET_WORK_ITEM: GetWorkItemArgs,
    ToolName.GET_WORK_ITEMS: GetWorkItemsArgs,
    ToolName.QUERY_WORK_ITEMS: QueryWorkItemsArgs,
    ToolName.CREATE_WORK_ITEM: CreateWorkItemArgs,
    ToolName.UPDATE_WORK_ITEM: UpdateWorkItemArgs,
    ToolName.LIST_PULL_REQUESTS: ListPullRequestsArgs,
    ToolName.GET_PULL_REQUEST: GetPullRequestArgs,
    ToolName.GET_PR_COMMENTS: GetPrCommentsArgs,
    ToolName.LIST_BUILDS: ListBuildsArgs,
    ToolName.GET_BUILD: GetBuildArgs,
    ToolName.LIST_PIPELINES: ListPipelinesArgs,
    ToolName.GET_PIPELINE_RUN: GetPipelineRunArgs,
    ToolName.LIST_RELEASES: ListReleasesArgs,
    ToolName.GET_RELEASE: GetReleaseArgs,
    ToolName.LIST_TEST_PLANS: ListTestPlansArgs,
    ToolName.GET_TEST_PLAN: GetTestPlanArgs,
    ToolName.ADO_API_CALL: AdoApiCallArgs,
}


def wire_name(f: Any) -> str:
    return f.metadata.get("wire_name") or f.name


def is_required(f: Any) -> bool:
    return f.default is MISSING and f.default_factory is MISSING


def required_arguments(tool: ToolName) -> list[str]:
    """Wire names of the arguments a tool requires."""
    return [wire_name(f) for f in fields(TOOL_ARGUMENTS[tool]) if is_required(f)]


def _coerce(key: str, value: Any, kind: type, minimum: int | None, items: type | None = None) -> Any:
    if kind is object:
        return value
    if kind is int:
        # Hosts sometimes send numeric ids as strings.
        if isinstance(value, str):
            text = value.strip()
            if text.isascii() and text.isdigit():
                value = int(text)
        if isinstance(value, bool) or not isinstance(value, int):
            raise invalid_params(f"Field '{key}' must be an integer")
        if minimum is not None and value < minimum:
            raise invalid_params(f"Field '{key}' must be >= {minimum}")
        return value
    if kind is bool:
        if not isinstance(value, bool):
            raise invalid_params(f"Field '{key}' must be a boolean")
        return value
    if kind is str:
        if not isinstance(value, str):
            raise invalid_params(f"Field '{key}' must be a string")
        return value
    if kind is list:
        if not isinstance(value, list):
            raise invalid_params(f"Field '{key}' must be an array")
        if items is not None:
            return [_coerce(key, v, items, minimum) for v in value]
        return value
    if kind is dict:
        if not isinstance(value, Mapping):
            raise invalid_params(f"Field '{key}' must be an object")
        return dict(value)
    raise TypeError(f"Unsupported argument kind: {kind!r}")


def parse_arguments(tool: ToolName, arguments: Mapping[str, Any]) -> Any:
    """Build the argument struct for ``tool``.

    Raises:
        AdoError: InvalidParams for missing required arguments or wrong types.
    """
    cls = TOOL_ARGUMENTS[tool]
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = wire_name(f)
        value = arguments.get(key)
        if value is None or (isinstance(value, str) and not value and f.metadata["kind"] is str):
            if is_required(f):
                raise invalid_params(f"Missing required field: {key}")
            continue
        kwargs[f.name] = _coerce(key, value, f.metadata["kind"], f.metadata["minimum"], f.metadata["items"])

    parsed = cls(**kwargs)
    validate = getattr(parsed, "validate", None)
    if validate is not None:
        validate()
    return parsed
