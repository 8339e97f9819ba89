"""Failure classification.

Turns a failed exchange into exactly one AdoError kind. Classification is a pure
function of the failure: it never retries or mutates the request.

Credential expiry is detected heuristically from the 401 response message; Azure
DevOps does not signal it at the protocol level.
"""

from __future__ import annotations

import json

import httpx

from .errors import EXPIRED_CREDENTIAL, INTERNAL_ERROR, UPSTREAM_ERROR, AdoError

EXPIRED_CREDENTIAL_MARKERS: tuple[str, ...] = (
    "expired",
    "Access Denied",
    "Personal Access Token",
)


def credential_remediation(organization: str) -> str:
    """Steps for renewing the personal access token."""
    return (
        "Azure DevOps PAT token has expired or was rejected. Please update your PAT token:\n"
        f"1. Generate a new PAT at: https://dev.azure.com/{organization}/_usersSettings/tokens\n"
        "2. Set AZURE_DEVOPS_PAT to the new token in the MCP client configuration\n"
        "3. Restart the MCP client and the ado-mcp server"
    )


def looks_like_expired_credential(message: str | None) -> bool:
    if not message:
        return False
    return any(marker in message for marker in EXPIRED_CREDENTIAL_MARKERS)


def _response_message(body: object, fallback: str) -> str:
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    if isinstance(body, str) and body:
        return body
    return fallback


def _format_body(body: object) -> str:
    if isinstance(body, str):
        return body
    try:
        return json.dumps(body, indent=2, default=str)
    except (TypeError, ValueError):
        return str(body)


def classify_http_failure(
    *,
    status_code: int,
    reason_phrase: str,
    body: object,
    organization: str,
) -> AdoError:
    """Classify a non-2xx response.

    Args:
        status_code: HTTP status of the response.
        reason_phrase: HTTP reason phrase (may be empty).
        body: Decoded response body (JSON value, text, or None).
        organization: Organization name used in the remediation text.
    """
    if status_code == 401:
        message = _response_message(body, reason_phrase)
        if looks_like_expired_credential(message):
            return AdoError(
                kind=EXPIRED_CREDENTIAL,
                message=f"Azure DevOps rejected the credential: {message}",
                remediation=credential_remediation(organization),
                status_code=status_code,
            )

    return AdoError(
        kind=UPSTREAM_ERROR,
        message=f"Azure DevOps API error: {status_code} - {reason_phrase}\n{_format_body(body)}",
        status_code=status_code,
    )


def decode_body(response: httpx.Response) -> object:
    """Decode a response body as JSON, falling back to text; empty bodies decode to None."""
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


def classify_response(response: httpx.Response, *, organization: str) -> AdoError:
    """Classify a failed httpx response."""
    return classify_http_failure(
        status_code=response.status_code,
        reason_phrase=response.reason_phrase,
        body=decode_body(response),
        organization=organization,
    )


def classify_exception(exc: BaseException) -> AdoError:
    """Classify a failure that produced no HTTP response."""
    if isinstance(exc, AdoError):
        return exc
    text = str(exc) or type(exc).__name__
    if isinstance(exc, httpx.TimeoutException):
        return AdoError(kind=INTERNAL_ERROR, message=f"Request timed out: {text}")
    if isinstance(exc, httpx.TransportError):
        return AdoError(kind=INTERNAL_ERROR, message=f"Network request failed: {text}")
    return AdoError(kind=INTERNAL_ERROR, message=f"Error: {text}")
