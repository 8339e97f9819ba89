"""Error-path tests for tool dispatch.

Validation failures must happen before any network call, and every call emits
exactly one invocation event carrying its actual outcome.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import ado_mcp.tools as tools
import pytest
from ado_mcp.ado_client import ApiRequest
from ado_mcp.auth import PersonalAccessToken
from ado_mcp.classifier import classify_http_failure
from ado_mcp.config import AppConfig
from ado_mcp.telemetry import INVOCATION, TelemetryEvent


@dataclass
class DummyTelemetry:
    events: list[TelemetryEvent] = field(default_factory=list)

    def write_event(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def measure_start(self) -> float:
        return time.monotonic()

    def measure_duration_ms(self, start: float) -> int:
        return int((time.monotonic() - start) * 1000)


class ExplodingAdo:
    """Fails every request with the configured exception."""

    def __init__(self, exc: Exception) -> None:
        self._exc = exc
        self.calls: list[ApiRequest] = []

    def resolve_project(self, project: str | None) -> str:
        return project or "proj"

    async def request(self, request: ApiRequest, *, correlation_id: str | None = None) -> Any:
        self.calls.append(request)
        raise self._exc


def _runtime(exc: Exception) -> tuple[tools.Runtime, ExplodingAdo, DummyTelemetry]:
    cfg = AppConfig(organization="org", project="proj", wiki="proj.wiki", pat=PersonalAccessToken("x"))
    client = ExplodingAdo(exc)
    telemetry = DummyTelemetry()
    return tools.Runtime(config=cfg, telemetry=telemetry, client=client), client, telemetry


@pytest.mark.asyncio
async def test_unknown_tool_never_calls_upstream() -> None:
    runtime, client, telemetry = _runtime(AssertionError("no call expected"))

    out = await tools.dispatch_tool("drop_database", {}, runtime=runtime)

    assert out["ok"] is False
    assert out["code"] == "InvalidParams"
    assert "Unknown tool" in out["message"]
    assert out["correlation_id"]
    assert client.calls == []
    assert [(e.kind, e.name, e.outcome) for e in telemetry.events] == [(INVOCATION, "drop_database", "denied")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("name", "arguments", "missing"),
    [
        ("get_work_item", {}, "workItemId"),
        ("get_repo_file", {"repo": "web"}, "path"),
        ("create_work_item", {"type": "Bug"}, "title"),
        ("get_pipeline_run", {"pipelineId": 1}, "runId"),
        ("ado_api_call", {"method": "GET"}, "endpoint"),
    ],
)
async def test_missing_arguments_are_rejected_before_network(name: str, arguments: dict[str, Any], missing: str) -> None:
    runtime, client, telemetry = _runtime(AssertionError("no call expected"))

    out = await tools.dispatch_tool(name, arguments, runtime=runtime)

    assert out["code"] == "InvalidParams"
    assert out["message"] == f"Missing required field: {missing}"
    assert client.calls == []
    assert len(telemetry.events) == 1
    assert telemetry.events[0].reason == "InvalidParams"


@pytest.mark.asyncio
@pytest.mark.parametrize("work_item_id", ["²", "4x", True])
async def test_malformed_ids_are_invalid_params_not_internal(work_item_id: object) -> None:
    runtime, client, telemetry = _runtime(AssertionError("no call expected"))

    out = await tools.dispatch_tool("get_work_item", {"workItemId": work_item_id}, runtime=runtime)

    assert out["code"] == "InvalidParams"
    assert out["message"] == "Field 'workItemId' must be an integer"
    assert client.calls == []
    assert telemetry.events[0].outcome == "denied"


@pytest.mark.asyncio
async def test_expired_credential_envelope_carries_remediation() -> None:
    err = classify_http_failure(
        status_code=401,
        reason_phrase="Unauthorized",
        body={"message": "The Personal Access Token used has expired."},
        organization="org",
    )
    runtime, client, telemetry = _runtime(err)

    out = await tools.dispatch_tool("get_build", {"buildId": 9}, runtime=runtime)

    assert out["ok"] is False
    assert out["code"] == "ExpiredCredential"
    assert out["status_code"] == 401
    assert "https://dev.azure.com/org/_usersSettings/tokens" in out["hint"]
    assert len(client.calls) == 1
    (event,) = telemetry.events
    assert event.outcome == "failed"
    assert event.status_code == 401
    assert event.reason == "ExpiredCredential"


@pytest.mark.asyncio
async def test_upstream_error_keeps_status_and_body() -> None:
    err = classify_http_failure(
        status_code=404,
        reason_phrase="Not Found",
        body={"message": "TF401232: Work item 99 does not exist"},
        organization="org",
    )
    runtime, _, _ = _runtime(err)

    out = await tools.dispatch_tool("get_work_item", {"workItemId": 99}, runtime=runtime)

    assert out["code"] == "UpstreamError"
    assert out["status_code"] == 404
    assert "TF401232" in out["message"]


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_internal_error() -> None:
    runtime, _, telemetry = _runtime(RuntimeError("kaboom"))

    out = await tools.dispatch_tool("list_repos", {}, runtime=runtime)

    assert out["ok"] is False
    assert out["code"] == "InternalError"
    assert "kaboom" in out["message"]
    assert [e.outcome for e in telemetry.events] == ["failed"]


@pytest.mark.asyncio
async def test_unexpected_response_shape_is_upstream_error() -> None:
    class ListAdo(ExplodingAdo):
        async def request(self, request: ApiRequest, *, correlation_id: str | None = None) -> Any:
            self.calls.append(request)
            return ["not", "an", "object"]

    runtime, _, _ = _runtime(RuntimeError("unused"))
    runtime = tools.Runtime(config=runtime.config, telemetry=runtime.telemetry, client=ListAdo(RuntimeError("unused")))

    out = await tools.dispatch_tool("get_repo", {"repo": "web"}, runtime=runtime)

    assert out["code"] == "UpstreamError"
    assert out["message"] == "Unexpected repository response"


@pytest.mark.asyncio
async def test_invocation_event_records_resolved_project() -> None:
    runtime, _, telemetry = _runtime(RuntimeError("x"))

    await tools.dispatch_tool("list_pipelines", {"project": "Other"}, runtime=runtime)
    await tools.dispatch_tool("list_pipelines", {}, runtime=runtime)

    assert [e.project for e in telemetry.events] == ["Other", "proj"]
    assert len({e.correlation_id for e in telemetry.events}) == 2
