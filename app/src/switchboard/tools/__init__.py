"""Switchboard Tools — external tool servers reachable from agents."""

from switchboard.tools.channel import ToolChannel, open_tool_channel

__all__ = ["ToolChannel", "open_tool_channel"]
