"""Structured telemetry.

Two event kinds are emitted:
- ``invocation``: exactly one per tool call, reflecting the actual outcome
- ``dependency``: exactly one per outbound Azure DevOps HTTP exchange

Events are append-only JSON lines; concurrent writers need no lock because each
event is written as a single line. Events must never contain the access token.
"""

from __future__ import annotations

import json
import sys
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

INVOCATION = "invocation"
DEPENDENCY = "dependency"


def new_correlation_id() -> str:
    """Generate a random correlation id shared by an invocation and its dependencies."""
    return uuid.uuid4().hex


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """A single telemetry event."""

    timestamp: str
    correlation_id: str | None
    kind: str
    name: str
    project: str
    outcome: str
    status_code: int | None
    reason: str | None
    duration_ms: int | None


class TelemetrySink:
    """Writes telemetry events as JSONL to stderr and optionally to a file."""

    def __init__(
        self,
        *,
        sink_path: Path | None,
        max_bytes: int = 5 * 1024 * 1024,
        max_backups: int = 2,
    ) -> None:
        """Create a telemetry sink.

        Rotation is best-effort; failures writing the optional file sink must not
        break tool execution.
        """
        self._sink_path = sink_path
        self._max_bytes = max_bytes
        self._max_backups = max_backups

    def _rotate_if_needed(self) -> None:
        if self._sink_path is None:
            return
        try:
            if not self._sink_path.exists():
                return
            if self._sink_path.stat().st_size < self._max_bytes:
                return

            # log -> log.1 -> log.2
            if self._max_backups > 0:
                oldest = Path(f"{self._sink_path}.{self._max_backups}")
                oldest.unlink(missing_ok=True)
                for i in range(self._max_backups, 1, -1):
                    src = Path(f"{self._sink_path}.{i - 1}")
                    dst = Path(f"{self._sink_path}.{i}")
                    if src.exists():
                        src.replace(dst)
                self._sink_path.replace(Path(f"{self._sink_path}.1"))
            else:
                self._sink_path.write_text("", encoding="utf-8")
        except OSError:  # pragma: no cover
            return

    def write_event(self, event: TelemetryEvent) -> None:
        """Write a telemetry event to stderr and optionally to a JSONL file."""
        payload: dict[str, object] = {
            "timestamp": event.timestamp,
            "kind": event.kind,
            "name": event.name,
            "project": event.project,
            "outcome": event.outcome,
        }
        if event.correlation_id is not None:
            payload["correlation_id"] = event.correlation_id
        if event.status_code is not None:
            payload["status_code"] = event.status_code
        if event.reason is not None:
            payload["reason"] = event.reason
        if event.duration_ms is not None:
            payload["duration_ms"] = event.duration_ms

        line = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        print(line, file=sys.stderr)
        if self._sink_path is not None:
            try:
                self._sink_path.parent.mkdir(parents=True, exist_ok=True)
                self._rotate_if_needed()
                with self._sink_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError:  # pragma: no cover
                return

    def measure_start(self) -> float:
        """Return a monotonic start timestamp for duration measurement."""
        return time.monotonic()

    def measure_duration_ms(self, start: float) -> int:
        """Convert a monotonic start timestamp into elapsed milliseconds."""
        return int((time.monotonic() - start) * 1000)


def build_event(
    *,
    kind: str,
    name: str,
    project: str,
    outcome: str,
    correlation_id: str | None = None,
    status_code: int | None = None,
    reason: str | None = None,
    duration_ms: int | None = None,
) -> TelemetryEvent:
    """Construct a telemetry event."""
    return TelemetryEvent(
        timestamp=_now_rfc3339(),
        correlation_id=correlation_id,
        kind=kind,
        name=name,
        project=project,
        outcome=outcome,
        status_code=status_code,
        reason=reason,
        duration_ms=duration_ms,
    )
