"""
MCP over stdio — a tool server running as a child process.

Connecting happens in two steps that fail differently:
1. spawn the process (bad command, missing working directory)
   -> ChildProcessSpawnError
2. MCP ``initialize`` handshake over its stdin/stdout
   -> ChildProcessHandshakeError

Usage:
    channel = await StdioToolChannel.connect("node", ["server.js"], Path("tools/fs"))
    tools = await channel.list_tools()
    output = await channel.call_tool("read_file", {"path": "README.md"})
    await channel.aclose()
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, Iterable

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import Implementation

from switchboard import __version__
from switchboard.completion.contracts import ToolDefinition
from switchboard.errors import ChildProcessHandshakeError, ChildProcessSpawnError, MCPError
from switchboard.tools.channel import ToolChannel

logger = logging.getLogger(__name__)

CLIENT_NAME = "switchboard"


def render_content(items: Iterable[Any]) -> str:
    """Flatten MCP result content to text. Non-text content becomes a marker."""
    parts: list[str] = []
    for item in items:
        kind = getattr(item, "type", None)
        if kind == "text":
            parts.append(item.text)
        elif kind == "image":
            parts.append(f"[Image: {item.mimeType}]")
        elif kind == "audio":
            parts.append("[Audio]")
        elif kind == "resource_link":
            parts.append("[Resource Link]")
        elif kind == "resource":
            text = getattr(item.resource, "text", None)
            parts.append(text if text is not None else "[Binary Resource]")
        else:
            logger.debug("Ignoring unknown tool result content: %s", kind)
    return "\n".join(parts)


class StdioToolChannel(ToolChannel):
    """An initialized MCP session with a child process. Owns the process."""

    def __init__(self, session: ClientSession, stack: AsyncExitStack, command: str):
        self.session = session
        self.command = command
        self._stack = stack

    @classmethod
    async def connect(cls, command: str, args: Iterable[str], cwd: Path) -> StdioToolChannel:
        if not cwd.is_dir():
            raise ChildProcessSpawnError(command, f"working directory does not exist: {cwd}")

        params = StdioServerParameters(command=command, args=list(args), cwd=str(cwd))
        stack = AsyncExitStack()

        try:
            read_stream, write_stream = await stack.enter_async_context(stdio_client(params))
        except OSError as e:
            await stack.aclose()
            raise ChildProcessSpawnError(command, str(e)) from e

        try:
            session = await stack.enter_async_context(
                ClientSession(
                    read_stream,
                    write_stream,
                    client_info=Implementation(name=CLIENT_NAME, version=__version__),
                )
            )
            result = await session.initialize()
            server_name = result.serverInfo.name
        except Exception as e:
            await stack.aclose()
            raise ChildProcessHandshakeError(command, str(e)) from e

        logger.info("Tool server ready: %s (server=%s)", command, server_name)
        return cls(session, stack, command)

    async def list_tools(self) -> list[ToolDefinition]:
        try:
            response = await self.session.list_tools()
        except Exception as e:
            raise MCPError(f"Failed to list tools: {e}") from e
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description or "",
                parameters=tool.inputSchema,
            )
            for tool in response.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        logger.info(f"Calling tool: {name}({list(arguments.keys())})")
        try:
            result = await self.session.call_tool(name, arguments)
        except Exception as e:
            raise MCPError(f"Failed to call tool '{name}': {e}") from e

        output = render_content(result.content)
        if result.isError:
            raise MCPError(f"Tool '{name}' returned an error: {output}")
        return output

    async def aclose(self) -> None:
        await self._stack.aclose()
