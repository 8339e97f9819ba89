"""Typed error diagnosis and serialization helpers.

Every failure surfaced to the host is an AdoError carrying one of a small set of
kinds. Errors must never include the personal access token.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

INVALID_PARAMS = "InvalidParams"
EXPIRED_CREDENTIAL = "ExpiredCredential"
UPSTREAM_ERROR = "UpstreamError"
INTERNAL_ERROR = "InternalError"
CONFIG_ERROR = "Config"


@dataclass(frozen=True, slots=True)
class AdoError(Exception):
    """A classified failure safe to expose to the host."""

    kind: str
    message: str
    remediation: str | None = None
    status_code: int | None = None

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


def invalid_params(message: str, remediation: str | None = None) -> AdoError:
    """Caller error detected before any network activity."""
    return AdoError(kind=INVALID_PARAMS, message=message, remediation=remediation)


def to_error_result(
    *,
    code: str,
    message: str,
    hint: str | None = None,
    status_code: int | None = None,
) -> dict[str, Any]:
    """Build a standard tool error envelope."""
    out: dict[str, Any] = {"ok": False, "code": code, "message": message}
    if hint:
        out["hint"] = hint
    if status_code is not None:
        out["status_code"] = status_code
    return out


def error_to_result(err: AdoError) -> dict[str, Any]:
    """Convert an AdoError into the standard tool envelope."""
    return to_error_result(
        code=err.kind,
        message=err.message,
        hint=err.remediation,
        status_code=err.status_code,
    )


def internal_error(message: str = "Internal error") -> dict[str, Any]:
    """Envelope for unexpected failures."""
    return to_error_result(code=INTERNAL_ERROR, message=message)
