"""Azure DevOps REST executor.

Provides:
- a single place where the target project is resolved
- the fixed api-version query parameter, which callers cannot override
- the constant Basic Authorization header derived from the PAT
- exactly one HTTP exchange per request (no retries)
- one dependency telemetry event per exchange, success or failure
- classified errors
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from .auth import PersonalAccessToken
from .classifier import classify_exception, classify_response, decode_body
from .config import LimitsConfig
from .errors import invalid_params
from .telemetry import DEPENDENCY, TelemetrySink, build_event

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
JSON_CONTENT_TYPE = "application/json"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
HTTP_METHODS: frozenset[str] = frozenset({"GET", "POST", "PATCH", "PUT", "DELETE"})


@dataclass(frozen=True, slots=True)
class ApiRequest:
    """Description of one outbound Azure DevOps call.

    ``service`` selects a dedicated sub-host (``almsearch``, ``vsrm``) for APIs
    Azure DevOps does not serve from the main host.
    """

    endpoint: str
    method: str = "GET"
    query_params: Mapping[str, Any] = field(default_factory=dict)
    body: Any = None
    content_type: str = JSON_CONTENT_TYPE
    project: str | None = None
    service: str | None = None

    def __post_init__(self) -> None:
        if self.method not in HTTP_METHODS:
            raise invalid_params(
                f"Unsupported HTTP method: {self.method}",
                remediation=f"Use one of: {', '.join(sorted(HTTP_METHODS))}",
            )
        if not self.endpoint.startswith("/"):
            raise invalid_params("Endpoint must start with '/'", remediation="e.g. /git/repositories")


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_query_value(v) for v in value)
    return str(value)


def compose_query(params: Mapping[str, Any]) -> dict[str, str]:
    """Merge caller parameters with the protocol version; the version always wins.

    Query keys are matched case-insensitively upstream, so any caller spelling of
    the version key is dropped.
    """
    query = {
        str(k): _query_value(v)
        for k, v in params.items()
        if v is not None and str(k).casefold() != "api-version"
    }
    query["api-version"] = API_VERSION
    return query


class AdoClient:
    """Minimal Azure DevOps REST client."""

    def __init__(
        self,
        *,
        organization: str,
        default_project: str,
        pat: PersonalAccessToken,
        limits: LimitsConfig,
        telemetry: TelemetrySink,
        api_base_url: str = "https://dev.azure.com",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Create an Azure DevOps REST client.

        Args:
            organization: Organization name used in every URL.
            default_project: Project used when a request names none.
            pat: Credential; only its Authorization header is ever used.
            limits: Transport timeouts.
            telemetry: Sink receiving one dependency event per exchange.
            api_base_url: Scheme and host of the service.
            transport: Optional httpx transport for tests.
        """
        self._organization = organization
        self._default_project = default_project
        self._auth_header = pat.authorization_header
        self._limits = limits
        self._telemetry = telemetry
        self._api_base_url = httpx.URL(api_base_url.rstrip("/"))
        self._transport = transport

    def resolve_project(self, project: str | None) -> str:
        """Explicit project overrides the configured default."""
        if project:
            return project
        return self._default_project

    def _headers(self, content_type: str) -> dict[str, str]:
        return {
            "Authorization": self._auth_header,
            "Content-Type": content_type,
            "Accept": JSON_CONTENT_TYPE,
        }

    def build_url(self, request: ApiRequest) -> str:
        base = self._api_base_url
        if request.service:
            base = base.copy_with(host=f"{request.service}.{base.host}")
        project = quote(self.resolve_project(request.project), safe="")
        organization = quote(self._organization, safe="")
        return f"{str(base).rstrip('/')}/{organization}/{project}/_apis{request.endpoint}"

    async def request(self, request: ApiRequest, *, correlation_id: str | None = None) -> object:
        """Perform one exchange and return the decoded body verbatim.

        Raises:
            AdoError: Classified failure (ExpiredCredential, UpstreamError, InternalError).
        """
        project = self.resolve_project(request.project)
        url = self.build_url(request)
        params = compose_query(request.query_params)

        content: bytes | None = None
        if request.body is not None:
            content = json.dumps(request.body).encode("utf-8")

        timeout = httpx.Timeout(
            timeout=self._limits.total_timeout_s,
            connect=self._limits.connect_timeout_s,
            read=self._limits.read_timeout_s,
        )

        start = self._telemetry.measure_start()
        status_code = 0
        outcome = "failed"
        reason: str | None = None
        try:
            try:
                async with httpx.AsyncClient(
                    follow_redirects=False,
                    timeout=timeout,
                    transport=self._transport,
                ) as client:
                    resp = await client.request(
                        request.method,
                        url,
                        headers=self._headers(request.content_type),
                        params=params,
                        content=content,
                    )
            except httpx.HTTPError as exc:
                err = classify_exception(exc)
                reason = err.kind
                raise err from exc

            status_code = resp.status_code
            if not resp.is_success:
                err = classify_response(resp, organization=self._organization)
                reason = err.kind
                raise err

            outcome = "succeeded"
            return decode_body(resp)
        finally:
            duration = self._telemetry.measure_duration_ms(start)
            logger.debug("%s %s -> %s in %sms", request.method, request.endpoint, status_code, duration)
            self._telemetry.write_event(
                build_event(
                    kind=DEPENDENCY,
                    name=f"ADO API {request.method} {request.endpoint}",
                    project=project,
                    outcome=outcome,
                    correlation_id=correlation_id,
                    status_code=status_code,
                    reason=reason,
                    duration_ms=duration,
                )
            )
