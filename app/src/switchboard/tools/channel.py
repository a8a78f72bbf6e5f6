"""
Tool channels — out-of-process tool servers an agent can call.

A channel lists tool definitions for the model and executes the calls the
model makes, returning text. Only the stdio transport exists today.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from switchboard.completion.contracts import ToolDefinition
from switchboard.core.config import ToolChannelSpec, ToolTransport


class ToolChannel(ABC):
    @abstractmethod
    async def list_tools(self) -> list[ToolDefinition]:
        """Tool definitions to advertise to the model."""
        ...

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Run one tool and return its output as text. Raises MCPError."""
        ...

    async def aclose(self) -> None:
        return None


async def open_tool_channel(spec: ToolChannelSpec, root: str | Path = ".") -> ToolChannel | None:
    """Connect the channel described by ``spec``. None when the spec is empty.

    stdio servers run with ``root / spec.path`` as their working directory.
    """
    if spec.transport == ToolTransport.NONE:
        return None
    if spec.transport == ToolTransport.STDIO:
        from switchboard.tools.mcp_stdio import StdioToolChannel

        return await StdioToolChannel.connect(spec.command, spec.args, Path(root) / spec.path)
    if spec.transport == ToolTransport.HTTP:
        raise NotImplementedError(f"Streamable HTTP tool channels are not implemented ({spec.url})")
    raise ValueError(f"Unknown tool transport: {spec.transport}")
