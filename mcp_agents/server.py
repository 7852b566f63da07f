"""MCP tool server over stdio.

CRITICAL: stdout carries JSON-RPC frames only.  All diagnostics go to the
logging handlers, which write to stderr.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from . import __version__
from .backends import Backend
from .models import InvocationRequest
from .orchestrator import PING_TOOL, Orchestrator

log = logging.getLogger(__name__)

SERVER_NAME = "mcp-agents"
KEEPALIVE_INTERVAL = 60.0


def tool_definitions(backend: Backend, default_timeout_ms: int) -> list[types.Tool]:
    return [
        types.Tool(
            name=PING_TOOL,
            description="Connectivity test. Returns 'pong' instantly without calling the CLI.",
            inputSchema={
                "type": "object",
                "additionalProperties": False,
                "properties": {},
            },
        ),
        types.Tool(
            name=backend.tool_name,
            description=backend.description,
            inputSchema=backend.input_schema(default_timeout_ms),
        ),
    ]


def to_call_result(text: str, is_error: bool) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=is_error,
    )


def create_server(orchestrator: Orchestrator) -> Server:
    """Create the low-level MCP server for one backend."""

    server: Server = Server(SERVER_NAME, version=__version__)
    tools = tool_definitions(orchestrator.backend, orchestrator.default_timeout_ms)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return tools

    # The orchestrator validates arguments itself: unknown keys are allowed
    # and a blank prompt must come back as a tool error, not a protocol one.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        response = await orchestrator.call_tool(
            InvocationRequest(tool_name=name, arguments=dict(arguments or {}))
        )
        return to_call_result(response.text, response.is_error)

    return server


async def _keepalive() -> None:
    # Keeps a timer pending for the whole session so the loop always has
    # work while a tool call's subprocess outlives the client's stdin.
    while True:
        await asyncio.sleep(KEEPALIVE_INTERVAL)
        log.debug("keepalive")


async def serve(orchestrator: Orchestrator, provider: str) -> None:
    server = create_server(orchestrator)
    async with stdio_server() as (read_stream, write_stream):
        keepalive = asyncio.create_task(_keepalive(), name="keepalive")
        log.info("ready (provider: %s)", provider)
        try:
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
        finally:
            keepalive.cancel()
    log.info("stdin closed, shutting down")
