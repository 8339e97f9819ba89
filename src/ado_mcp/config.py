"""Configuration loading for ado-mcp.

Configuration is supplied by the host environment (e.g., MCP client config), not by the agent.
The personal access token is a secret and must never be emitted to agents, logs, or telemetry.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .auth import PersonalAccessToken
from .errors import CONFIG_ERROR, AdoError

DEFAULT_ORGANIZATION = "YourOrganization"
DEFAULT_PROJECT = "YourProject"


@dataclass(frozen=True, slots=True)
class LimitsConfig:
    """Transport timeouts. This layer never retries."""

    total_timeout_s: float = 60.0
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 30.0


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Organization binding and process-wide defaults."""

    organization: str
    project: str
    wiki: str
    pat: PersonalAccessToken = field(repr=False)

    telemetry_log_path: Path | None = None
    telemetry_max_bytes: int = 5 * 1024 * 1024
    telemetry_max_backups: int = 2
    limits: LimitsConfig = field(default_factory=LimitsConfig)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def load_config_from_env() -> AppConfig:
    """Load and validate configuration from environment variables.

    Raises:
        AdoError: If the credential is missing or a path is invalid.
    """
    pat_raw = os.getenv("AZURE_DEVOPS_PAT")
    if not pat_raw or not pat_raw.strip():
        raise AdoError(
            kind=CONFIG_ERROR,
            message="Missing required configuration (AZURE_DEVOPS_PAT)",
        )

    organization = _env_str("AZURE_DEVOPS_ORG", DEFAULT_ORGANIZATION)
    project = _env_str("AZURE_DEVOPS_PROJECT", DEFAULT_PROJECT)
    wiki = _env_str("AZURE_DEVOPS_WIKI", f"{project}.wiki")

    telemetry_path_raw = os.getenv("ADO_MCP_TELEMETRY_LOG_PATH")
    telemetry_path: Path | None = None
    if telemetry_path_raw:
        p = Path(telemetry_path_raw)
        if not p.is_absolute():
            raise AdoError(
                kind=CONFIG_ERROR,
                message="ADO_MCP_TELEMETRY_LOG_PATH must be an absolute path when set",
            )
        telemetry_path = p

    return AppConfig(
        organization=organization,
        project=project,
        wiki=wiki,
        pat=PersonalAccessToken(pat_raw.strip()),
        telemetry_log_path=telemetry_path,
        limits=LimitsConfig(),
    )
