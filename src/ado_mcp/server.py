"""MCP server wiring for ado-mcp.

Lists tools/resources, dispatches calls through the tool layer, and serializes
results as JSON text content.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

try:
    from mcp.server import Server
    from mcp.types import Resource, TextContent, Tool
except ImportError as exc:  # pragma: no cover
    raise ImportError("MCP library not installed. Install with: pip install mcp") from exc

from . import __version__
from .ado_client import API_VERSION
from .config import load_config_from_env
from .errors import AdoError, internal_error
from .tools import TOOL_METADATA, Runtime, build_runtime, dispatch_tool

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)

server = Server("ado-mcp")

_RUNTIME: Runtime | None = None

_RESOURCES = (
    ("ado-mcp://server-status", "Server Status", "Non-secret server configuration"),
    ("ado-mcp://capabilities", "Capabilities", "Available tools and protocol details"),
)


def initialize_runtime_from_env() -> Runtime:
    """Build the runtime once per process from the environment.

    Called at server startup (fail-fast), and lazily by tool calls.
    """
    global _RUNTIME  # pylint: disable=global-statement
    if _RUNTIME is None:
        _RUNTIME = build_runtime(load_config_from_env())
    return _RUNTIME


def _tools() -> list[Tool]:
    return [
        Tool(name=name, description=meta["description"], inputSchema=meta["inputSchema"])
        for name, meta in TOOL_METADATA.items()
    ]


def _resources() -> list[Resource]:
    return [Resource(uri=uri, name=name, description=description) for uri, name, description in _RESOURCES]


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List all available tools."""
    tools = _tools()
    logger.info("Listed %s tools", len(tools))
    return tools


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Execute a tool and return MCP-compliant TextContent."""
    if not isinstance(arguments, dict):
        arguments = {}

    logger.info("Tool called: %s", name)

    try:
        runtime = initialize_runtime_from_env()
        raw_result = await dispatch_tool(name, arguments, runtime=runtime)
    except AdoError as exc:
        logger.error("Tool %s could not run: %s", name, exc.message)
        raw_result = internal_error(exc.message)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logger.error("Tool %s failed: %s", name, exc)
        raw_result = internal_error("Tool execution failed")
    return [TextContent(type="text", text=json.dumps(raw_result, indent=2, default=str))]


@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return _resources()


@server.read_resource()
async def read_resource(uri: Any) -> str:
    """Read resource content."""
    uri_s = uri if isinstance(uri, str) else str(uri)

    if uri_s == "ado-mcp://capabilities":
        caps = {
            "server": "ado-mcp",
            "version": __version__,
            "tools": sorted(TOOL_METADATA.keys()),
            "api_version": API_VERSION,
            "behavior": {
                "retries": False,
                "caching": False,
                "generic_passthrough_tool": "ado_api_call",
            },
        }
        return json.dumps(caps, indent=2)

    if uri_s == "ado-mcp://server-status":
        status: dict[str, Any] = {
            "server": "ado-mcp",
            "version": __version__,
            "tools_available": len(TOOL_METADATA),
            "configured": False,
        }
        try:
            runtime = initialize_runtime_from_env()
            status["configured"] = True
            status["organization"] = runtime.config.organization
            status["default_project"] = runtime.config.project
            status["default_wiki"] = runtime.config.wiki
            status["limits"] = {
                "total_timeout_s": runtime.config.limits.total_timeout_s,
                "connect_timeout_s": runtime.config.limits.connect_timeout_s,
                "read_timeout_s": runtime.config.limits.read_timeout_s,
            }
            status["telemetry"] = {"file_sink_enabled": runtime.config.telemetry_log_path is not None}
        except AdoError:
            status["configured"] = False

        return json.dumps(status, indent=2)

    return json.dumps({"ok": False, "code": "NotFound", "message": "Unknown resource"}, indent=2)


async def run_server() -> None:
    """Run the server over stdio."""
    # Missing credential is fatal at startup.
    try:
        runtime = initialize_runtime_from_env()
    except AdoError as exc:
        logger.error("Startup configuration error: %s", exc.message)
        raise

    from mcp.server.stdio import stdio_server

    logger.info("Connected to: %s/%s", runtime.config.organization, runtime.config.project)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


async def test_server() -> None:
    """Lightweight self-test to ensure tool/resource listing works."""
    tools = _tools()
    resources = _resources()
    print(f"ado-mcp {__version__}: {len(tools)} tools, {len(resources)} resources", file=sys.stderr)
