"""
Application context — every long-lived component, built once and passed by handle.

    ctx = await AppContext.create()
    reply = await ctx.agents.execute("planner", "Plan the release")
    await ctx.engine.init(1, "release 1.2")
    await ctx.aclose()

Tests build their own contexts (or the pieces directly); nothing here is a
process-wide singleton.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import switchboard.core.config as config_module
from switchboard.agents.manager import AgentManager
from switchboard.core.config import SwitchboardConfig, discover_agents
from switchboard.core.logging import setup_logging
from switchboard.core.metrics import MetricsCollector
from switchboard.providers.registry import ProviderRegistry
from switchboard.tasks.engine import TaskEngine
from switchboard.tasks.runner import WorkflowRunner
from switchboard.tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: SwitchboardConfig
    metrics: MetricsCollector
    registry: ProviderRegistry
    store: TaskStore
    engine: TaskEngine
    agents: AgentManager
    runner: WorkflowRunner

    @classmethod
    async def create(
        cls,
        config: SwitchboardConfig | None = None,
        environ: Mapping[str, str] | None = None,
        configure_logging: bool = True,
    ) -> AppContext:
        """Start the store and build every agent discovered in ``environ``.

        ``configure_logging`` installs the root handler via ``setup_logging()``;
        embedders that manage logging themselves pass False.
        """
        if configure_logging:
            setup_logging()
        config = config or config_module.config
        metrics = MetricsCollector()
        registry = ProviderRegistry.with_defaults(metrics)

        store = TaskStore(db_path=Path(config.store.db_path))
        await store.start()
        engine = TaskEngine(store, metrics)
        agents = AgentManager(
            registry,
            temperature=config.defaults.agent_temperature,
            tool_root=config.tools.root,
            max_turns=config.defaults.max_turns,
        )

        try:
            await agents.load(discover_agents(registry.provider_ids(), environ))
        except BaseException:
            await agents.aclose()
            await store.stop()
            raise

        logger.info("Switchboard ready (%d agent(s))", len(agents.list_agents()))
        return cls(
            config=config,
            metrics=metrics,
            registry=registry,
            store=store,
            engine=engine,
            agents=agents,
            runner=WorkflowRunner(engine, agents, store),
        )

    async def aclose(self) -> None:
        await self.agents.aclose()
        await self.store.stop()
