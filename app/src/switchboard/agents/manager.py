"""
Agent Manager — the set of configured agents, addressed by code.

Built once at startup from discovered ``(provider, AgentConfig)`` pairs.
Codes are unique; a duplicate is a configuration error, not an overwrite.

Usage:
    manager = AgentManager(registry)
    await manager.load(discover_agents(registry.provider_ids()))
    manager.list_agents()
    reply = await manager.execute("planner", "Plan the release")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from switchboard.agents.agent import Agent
from switchboard.core.config import AgentConfig, AgentInfo
from switchboard.errors import ConfigurationError
from switchboard.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class AgentManager:
    def __init__(
        self,
        registry: ProviderRegistry,
        temperature: float = 0.0,
        tool_root: str | Path = ".",
        max_turns: int | None = None,
    ):
        self.registry = registry
        self.temperature = temperature
        self.tool_root = tool_root
        self.max_turns = max_turns
        self._agents: dict[str, Agent] = {}
        self._info: dict[str, AgentInfo] = {}

    async def load(self, configs: Iterable[tuple[str, AgentConfig]]) -> None:
        """Build every configured agent. Fails on the first duplicate code."""
        for provider, agent_config in configs:
            await self.add(provider, agent_config)

    async def add(self, provider: str, agent_config: AgentConfig) -> Agent:
        if agent_config.code in self._agents:
            raise ConfigurationError(f"Duplicate agent code: {agent_config.code}")

        agent = await self.registry.agent(
            provider,
            agent_config,
            temperature=self.temperature,
            tool_root=self.tool_root,
            max_turns=self.max_turns,
        )
        self._agents[agent_config.code] = agent
        self._info[agent_config.code] = agent_config.public(provider)
        return agent

    def get(self, code: str) -> Agent | None:
        return self._agents.get(code)

    def list_agents(self) -> list[AgentInfo]:
        return list(self._info.values())

    async def execute(self, code: str, prompt: str) -> str:
        agent = self._agents.get(code)
        if agent is None:
            raise ConfigurationError(f"No agent configured with code: {code}")
        logger.info("Executing agent %s", code, extra={"code": code})
        return await agent.prompt(prompt)

    async def aclose(self) -> None:
        for agent in self._agents.values():
            await agent.aclose()
        self._agents.clear()
        self._info.clear()
