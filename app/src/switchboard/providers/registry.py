"""
Provider Registry — provider id in, backend client (or ready Agent) out.

The built-in backends are a closed set (``Provider``) registered by
``ProviderRegistry.with_defaults()``. ``register()`` stays open for
integrations that live outside this package.

Factories are third-party code as far as the registry is concerned: any
exception they raise comes back as ``FactoryError`` so one broken
integration cannot take down the callers sharing the registry.

Usage:
    registry = ProviderRegistry.with_defaults()
    agent = await registry.agent("ollama", agent_config)
"""

from __future__ import annotations

import logging
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable

from switchboard.agents.agent import Agent, AgentBuilder
from switchboard.core.config import AgentConfig
from switchboard.core.metrics import MetricsCollector
from switchboard.errors import FactoryError, UnknownProvider, UnsupportedFeature
from switchboard.providers.base import ProviderClient
from switchboard.tools.channel import open_tool_channel

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[AgentConfig], ProviderClient]


class Provider(str, Enum):
    """Built-in backends."""

    DEEPSEEK = "deepseek"
    OPENAI = "openai"
    OLLAMA = "ollama"


def _provider_key(provider_id: str | Provider) -> str:
    return provider_id.value if isinstance(provider_id, Provider) else str(provider_id)


def _build_deepseek(config: AgentConfig, metrics: MetricsCollector) -> ProviderClient:
    from switchboard.providers.deepseek import DeepSeekClient

    return DeepSeekClient(api_key=config.api_key, base_url=config.base_url or None, metrics=metrics)


def _build_openai(config: AgentConfig, metrics: MetricsCollector) -> ProviderClient:
    from switchboard.providers.openai_compat import OpenAICompatibleClient

    return OpenAICompatibleClient(api_key=config.api_key, base_url=config.base_url or None, metrics=metrics)


def _build_ollama(config: AgentConfig, metrics: MetricsCollector) -> ProviderClient:
    from switchboard.providers.ollama import OllamaClient

    return OllamaClient(base_url=config.base_url or None, metrics=metrics)


_BUILTIN_FACTORIES = {
    Provider.DEEPSEEK: _build_deepseek,
    Provider.OPENAI: _build_openai,
    Provider.OLLAMA: _build_ollama,
}


class ProviderRegistry:
    """One factory per provider id."""

    def __init__(self, metrics: MetricsCollector | None = None):
        self.metrics = metrics or MetricsCollector()
        self._factories: dict[str, ProviderFactory] = {}

    @classmethod
    def with_defaults(cls, metrics: MetricsCollector | None = None) -> ProviderRegistry:
        registry = cls(metrics)
        for provider, factory in _BUILTIN_FACTORIES.items():
            registry.register(provider, partial(factory, metrics=registry.metrics))
        return registry

    def register(self, provider_id: str | Provider, factory: ProviderFactory) -> None:
        """Register a factory. Re-registering an id replaces the old factory."""
        key = _provider_key(provider_id)
        if key in self._factories:
            logger.warning("Overwriting factory for provider %s", key, extra={"provider": key})
        self._factories[key] = factory
        logger.info(f"Registered provider: {key}")

    def provider_ids(self) -> list[str]:
        return list(self._factories.keys())

    def build(self, provider_id: str | Provider, config: AgentConfig) -> ProviderClient:
        """Build a client. Raises UnknownProvider or FactoryError."""
        key = _provider_key(provider_id)
        factory = self._factories.get(key)
        if factory is None:
            raise UnknownProvider(key)

        try:
            return factory(config)
        except Exception as e:
            logger.error(
                "Factory for provider %s failed: %s", key, e,
                exc_info=True,
                extra={"provider": key},
            )
            raise FactoryError(key, str(e)) from e

    async def agent(
        self,
        provider_id: str | Provider,
        config: AgentConfig,
        temperature: float = 0.0,
        tool_root: str | Path = ".",
        max_turns: int | None = None,
    ) -> Agent:
        """Build a client for ``config`` and wrap it in an Agent.

        Raises UnsupportedFeature when the backend cannot do completions, and
        the tool channel's spawn/handshake errors when one is configured.
        """
        key = _provider_key(provider_id)
        client = self.build(key, config)

        completion = client.as_completion()
        if completion is None:
            await client.aclose()
            raise UnsupportedFeature(key, "completion")

        builder = (
            AgentBuilder(completion.completion_model(config.model))
            .name(config.name)
            .description(config.description)
            .temperature(temperature)
        )
        if config.system_preamble:
            builder.preamble(config.system_preamble)
        if max_turns is not None:
            builder.max_turns(max_turns)

        try:
            channel = await open_tool_channel(config.tools, tool_root)
        except BaseException:
            await client.aclose()
            raise
        if channel is not None:
            builder.tool_channel(channel)

        logger.info(
            "Built agent %s (%s/%s)", config.name, key, config.model,
            extra={"agent": config.name, "provider": key, "model": config.model},
        )
        return builder.build()
