"""Argument struct parsing: required fields, defaults and types."""

from __future__ import annotations

from dataclasses import fields

import pytest
from ado_mcp.errors import INVALID_PARAMS, AdoError
from ado_mcp.tool_requests import TOOL_ARGUMENTS, ToolName, parse_arguments, required_arguments, wire_name
from ado_mcp.tool_requests import AdoApiCallArgs, GetRepoFileArgs, GetWikiPageArgs
from ado_mcp.tool_requests import ListPullRequestsArgs, QueryWorkItemsArgs, UpdateWorkItemArgs
from ado_mcp.tools import TOOL_METADATA


def test_every_tool_has_an_argument_struct() -> None:
    assert set(TOOL_ARGUMENTS) == set(ToolName)


@pytest.mark.parametrize("tool", list(ToolName))
def test_schema_required_matches_struct(tool: ToolName) -> None:
    schema = TOOL_METADATA[tool.value]["inputSchema"]

    assert sorted(schema.get("required", [])) == sorted(required_arguments(tool))


@pytest.mark.parametrize("tool", list(ToolName))
def test_schema_properties_cover_struct_arguments(tool: ToolName) -> None:
    props = TOOL_METADATA[tool.value]["inputSchema"]["properties"]

    assert {wire_name(f) for f in fields(TOOL_ARGUMENTS[tool])} == set(props)


def test_unknown_tool_is_invalid_params_with_hint() -> None:
    with pytest.raises(AdoError) as exc:
        ToolName.parse("delete_everything")

    assert exc.value.kind == INVALID_PARAMS
    assert "Unknown tool" in exc.value.message
    assert exc.value.remediation is not None
    assert "get_work_item" in exc.value.remediation


def test_missing_required_argument() -> None:
    with pytest.raises(AdoError) as exc:
        parse_arguments(ToolName.GET_REPO_FILE, {"repo": "web"})

    assert exc.value.kind == INVALID_PARAMS
    assert exc.value.message == "Missing required field: path"


def test_empty_string_counts_as_missing() -> None:
    with pytest.raises(AdoError) as exc:
        parse_arguments(ToolName.QUERY_WORK_ITEMS, {"wiql": ""})

    assert exc.value.message == "Missing required field: wiql"


def test_defaults_are_applied() -> None:
    args = parse_arguments(ToolName.GET_REPO_FILE, {"repo": "web", "path": "/README.md"})

    assert args == GetRepoFileArgs(repo="web", path="/README.md", project=None, branch="main", download=True)

    prs = parse_arguments(ToolName.LIST_PULL_REQUESTS, {"repo": "web"})
    assert prs == ListPullRequestsArgs(repo="web", status="active", top=10)

    query = parse_arguments(ToolName.QUERY_WORK_ITEMS, {"wiql": "SELECT [System.Id] FROM WorkItems"})
    assert isinstance(query, QueryWorkItemsArgs)
    assert query.top == 100

    generic = parse_arguments(ToolName.ADO_API_CALL, {"endpoint": "/projects"})
    assert generic == AdoApiCallArgs(endpoint="/projects", method="GET", params={}, body=None)


def test_wire_names_map_to_struct_fields() -> None:
    args = parse_arguments(ToolName.LIST_PULL_REQUESTS, {"repo": "web", "$top": 3, "status": "all", "project": "P"})

    assert args.top == 3
    assert args.project == "P"


def test_numeric_string_ids_are_accepted() -> None:
    args = parse_arguments(ToolName.GET_WORK_ITEM, {"workItemId": "42"})

    assert args.work_item_id == 42


@pytest.mark.parametrize("value", [True, "forty-two", 1.5, 0, "²", "٣"])
def test_invalid_integer_ids_are_rejected(value: object) -> None:
    with pytest.raises(AdoError) as exc:
        parse_arguments(ToolName.GET_WORK_ITEM, {"workItemId": value})

    assert exc.value.kind == INVALID_PARAMS


def test_numeric_string_id_lists_are_accepted() -> None:
    args = parse_arguments(ToolName.GET_WORK_ITEMS, {"workItemIds": ["1", 2, " 3 "]})

    assert args.work_item_ids == [1, 2, 3]


@pytest.mark.parametrize("ids", [["²"], [0], [True], []])
def test_invalid_id_lists_are_rejected(ids: list) -> None:
    with pytest.raises(AdoError) as exc:
        parse_arguments(ToolName.GET_WORK_ITEMS, {"workItemIds": ids})

    assert exc.value.kind == INVALID_PARAMS


def test_wrong_types_are_rejected() -> None:
    with pytest.raises(AdoError):
        parse_arguments(ToolName.CREATE_WORK_ITEM, {"type": "Bug", "title": "t", "fields": ["not", "a", "dict"]})
    with pytest.raises(AdoError):
        parse_arguments(ToolName.LIST_REPOS, {"includeLinks": "yes"})
    with pytest.raises(AdoError):
        parse_arguments(ToolName.GET_WORK_ITEMS, {"workItemIds": [1, "two"]})


def test_wiki_page_requires_page_id_or_path() -> None:
    with pytest.raises(AdoError) as exc:
        parse_arguments(ToolName.GET_WIKI_PAGE, {})

    assert "pageId or path" in exc.value.message
    assert parse_arguments(ToolName.GET_WIKI_PAGE, {"path": "/Home"}) == GetWikiPageArgs(path="/Home")


def test_update_requires_some_operation() -> None:
    with pytest.raises(AdoError) as exc:
        parse_arguments(ToolName.UPDATE_WORK_ITEM, {"workItemId": 5, "fields": {}, "links": [], "removeLinks": []})

    assert exc.value.kind == INVALID_PARAMS


def test_update_validates_links() -> None:
    with pytest.raises(AdoError):
        parse_arguments(ToolName.UPDATE_WORK_ITEM, {"workItemId": 5, "links": [{"rel": "Related"}]})
    with pytest.raises(AdoError):
        parse_arguments(ToolName.UPDATE_WORK_ITEM, {"workItemId": 5, "removeLinks": [3]})

    args = parse_arguments(
        ToolName.UPDATE_WORK_ITEM,
        {"workItemId": 5, "links": [{"rel": "Related", "url": "https://x/1"}]},
    )
    assert isinstance(args, UpdateWorkItemArgs)
    assert [r.url for r in args.relations_to_add] == ["https://x/1"]
