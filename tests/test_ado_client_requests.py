"""Azure DevOps client request construction and outcome reporting."""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass, field

import httpx
import pytest
from ado_mcp.ado_client import JSON_PATCH_CONTENT_TYPE, AdoClient, ApiRequest, compose_query
from ado_mcp.auth import PersonalAccessToken
from ado_mcp.config import LimitsConfig
from ado_mcp.errors import EXPIRED_CREDENTIAL, INTERNAL_ERROR, INVALID_PARAMS, UPSTREAM_ERROR, AdoError
from ado_mcp.telemetry import TelemetryEvent


@dataclass
class DummyTelemetry:
    events: list[TelemetryEvent] = field(default_factory=list)

    def write_event(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def measure_start(self) -> float:
        return time.monotonic()

    def measure_duration_ms(self, start: float) -> int:
        return int((time.monotonic() - start) * 1000)


def _client(handler, telemetry: DummyTelemetry | None = None) -> tuple[AdoClient, DummyTelemetry]:
    sink = telemetry or DummyTelemetry()
    client = AdoClient(
        organization="contoso",
        default_project="Fabrikam",
        pat=PersonalAccessToken("pat-value"),
        limits=LimitsConfig(),
        telemetry=sink,  # type: ignore[arg-type]
        transport=httpx.MockTransport(handler),
    )
    return client, sink


@pytest.mark.asyncio
async def test_client_sends_basic_auth_and_api_version() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["auth"] = request.headers.get("Authorization")
        seen["content_type"] = request.headers.get("Content-Type")
        return httpx.Response(200, json={"count": 0, "value": []})

    client, _ = _client(handler)
    out = await client.request(ApiRequest(endpoint="/git/repositories"))

    assert out == {"count": 0, "value": []}
    url = seen["url"]
    assert isinstance(url, httpx.URL)
    assert url.host == "dev.azure.com"
    assert url.path == "/contoso/Fabrikam/_apis/git/repositories"
    assert url.params["api-version"] == "7.1"
    expected = base64.b64encode(b":pat-value").decode("ascii")
    assert seen["auth"] == f"Basic {expected}"
    assert seen["content_type"] == "application/json"


@pytest.mark.asyncio
async def test_explicit_project_overrides_default() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(200, json={})

    client, sink = _client(handler)
    await client.request(ApiRequest(endpoint="/build/builds", project="Other Project"))

    assert seen["path"] == "/contoso/Other Project/_apis/build/builds"
    assert sink.events[0].project == "Other Project"
    assert client.resolve_project(None) == "Fabrikam"
    assert client.resolve_project("") == "Fabrikam"


def test_caller_cannot_override_api_version() -> None:
    query = compose_query({"api-version": "5.0", "$top": 10, "includeLinks": False, "skip": None})

    assert query == {"api-version": "7.1", "$top": "10", "includeLinks": "false"}


@pytest.mark.parametrize("key", ["API-Version", "Api-Version", "API-VERSION"])
def test_caller_cannot_override_api_version_in_any_case(key: str) -> None:
    query = compose_query({key: "5.0", "$top": 10})

    assert query == {"api-version": "7.1", "$top": "10"}


@pytest.mark.asyncio
async def test_patch_request_uses_json_patch_content_type_and_body() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["content_type"] = request.headers.get("Content-Type")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": 7})

    client, _ = _client(handler)
    body = [{"op": "replace", "path": "/fields/System.State", "value": "Done"}]
    out = await client.request(
        ApiRequest(endpoint="/wit/workitems/7", method="PATCH", body=body, content_type=JSON_PATCH_CONTENT_TYPE)
    )

    assert out == {"id": 7}
    assert seen == {"method": "PATCH", "content_type": JSON_PATCH_CONTENT_TYPE, "body": body}


@pytest.mark.asyncio
async def test_service_requests_use_dedicated_host() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["host"] = request.url.host
        return httpx.Response(200, json={"count": 0, "results": []})

    client, _ = _client(handler)
    await client.request(ApiRequest(endpoint="/search/codesearchresults", method="POST", body={}, service="almsearch"))

    assert seen["host"] == "almsearch.dev.azure.com"


@pytest.mark.asyncio
async def test_success_reports_one_dependency_event() -> None:
    client, sink = _client(lambda _r: httpx.Response(200, json={"ok": True}))

    await client.request(ApiRequest(endpoint="/pipelines"), correlation_id="cid")

    assert len(sink.events) == 1
    ev = sink.events[0]
    assert ev.kind == "dependency"
    assert ev.name == "ADO API GET /pipelines"
    assert ev.outcome == "succeeded"
    assert ev.status_code == 200
    assert ev.correlation_id == "cid"


@pytest.mark.asyncio
async def test_expired_token_is_classified_and_reported_once_without_retry() -> None:
    calls = {"n": 0}

    def handler(_request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401, json={"message": "The Personal Access Token used has expired"})

    client, sink = _client(handler)

    with pytest.raises(AdoError) as exc:
        await client.request(ApiRequest(endpoint="/wit/workitems/1"))

    assert exc.value.kind == EXPIRED_CREDENTIAL
    assert calls["n"] == 1
    assert len(sink.events) == 1
    assert sink.events[0].outcome == "failed"
    assert sink.events[0].status_code == 401


@pytest.mark.asyncio
async def test_server_error_is_upstream_error_without_retry() -> None:
    calls = {"n": 0}

    def handler(_request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(503, text="Service Unavailable")

    client, sink = _client(handler)

    with pytest.raises(AdoError) as exc:
        await client.request(ApiRequest(endpoint="/build/builds"))

    assert exc.value.kind == UPSTREAM_ERROR
    assert exc.value.status_code == 503
    assert "Service Unavailable" in exc.value.message
    assert calls["n"] == 1
    assert len(sink.events) == 1


@pytest.mark.asyncio
async def test_transport_failure_is_internal_error_with_status_zero() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client, sink = _client(handler)

    with pytest.raises(AdoError) as exc:
        await client.request(ApiRequest(endpoint="/git/repositories"))

    assert exc.value.kind == INTERNAL_ERROR
    assert "connection refused" in exc.value.message
    assert len(sink.events) == 1
    assert sink.events[0].status_code == 0
    assert sink.events[0].outcome == "failed"


@pytest.mark.asyncio
async def test_empty_body_decodes_to_none() -> None:
    client, _ = _client(lambda _r: httpx.Response(204))

    assert await client.request(ApiRequest(endpoint="/wit/workitems/1", method="DELETE")) is None


def test_unsupported_method_is_rejected_before_network() -> None:
    with pytest.raises(AdoError) as exc:
        ApiRequest(endpoint="/git/repositories", method="TRACE")

    assert exc.value.kind == INVALID_PARAMS


def test_endpoint_must_be_rooted() -> None:
    with pytest.raises(AdoError) as exc:
        ApiRequest(endpoint="git/repositories")

    assert exc.value.kind == INVALID_PARAMS


def test_pat_is_never_in_repr() -> None:
    pat = PersonalAccessToken("super-secret-value")

    assert "super-secret-value" not in repr(pat)
