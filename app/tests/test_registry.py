"""Tests for ProviderRegistry — lookup, overwrite, factory fault boundary."""

import logging

import pytest

from switchboard.agents.agent import Agent
from switchboard.core.config import AgentConfig, ToolChannelSpec
from switchboard.core.metrics import MetricsCollector
from switchboard.errors import FactoryError, UnknownProvider, UnsupportedFeature
from switchboard.providers.base import ProviderClient
from switchboard.providers.deepseek import DeepSeekClient
from switchboard.providers.ollama import OllamaClient, OllamaCompletionModel
from switchboard.providers.openai_compat import OpenAICompatibleClient
from switchboard.providers.registry import Provider, ProviderRegistry


def _config(**overrides) -> AgentConfig:
    values = dict(
        model="qwen3:4b",
        code="helper",
        name="Helper",
        description="Answers questions",
        base_url="http://ollama.test",
    )
    values.update(overrides)
    return AgentConfig(**values)


class _EmbeddingsOnly(ProviderClient):
    provider = "embed-only"

    def __init__(self):
        self.closed = False

    async def aclose(self):
        self.closed = True


class TestBuild:
    def test_builtins_registered(self):
        registry = ProviderRegistry.with_defaults()
        assert set(registry.provider_ids()) == {"deepseek", "openai", "ollama"}

    def test_build_returns_matching_client(self):
        registry = ProviderRegistry.with_defaults()
        assert isinstance(registry.build("ollama", _config()), OllamaClient)
        assert isinstance(registry.build(Provider.OLLAMA, _config()), OllamaClient)
        assert isinstance(
            registry.build("deepseek", _config(api_key="sk-test", base_url="")), DeepSeekClient
        )
        assert isinstance(
            registry.build("openai", _config(api_key="sk-test", base_url="")), OpenAICompatibleClient
        )

    def test_unknown_provider(self):
        with pytest.raises(UnknownProvider) as exc:
            ProviderRegistry.with_defaults().build("anthropic", _config())
        assert exc.value.provider == "anthropic"

    def test_register_overwrites_with_warning(self, caplog):
        registry = ProviderRegistry()
        first, second = object(), object()
        registry.register("custom", lambda config: first)
        with caplog.at_level(logging.WARNING, logger="switchboard.providers.registry"):
            registry.register("custom", lambda config: second)

        assert registry.build("custom", _config()) is second
        assert "Overwriting factory for provider custom" in caplog.text

    def test_raising_factory_becomes_factory_error(self):
        registry = ProviderRegistry()

        def broken(config):
            raise RuntimeError("no credentials")

        registry.register("broken", broken)
        with pytest.raises(FactoryError) as exc:
            registry.build("broken", _config())
        assert exc.value.provider == "broken"
        assert "no credentials" in exc.value.reason
        assert isinstance(exc.value.__cause__, RuntimeError)

    def test_registry_survives_a_failed_factory(self):
        registry = ProviderRegistry.with_defaults()
        registry.register("broken", lambda config: 1 / 0)

        with pytest.raises(FactoryError):
            registry.build("broken", _config())
        assert isinstance(registry.build("ollama", _config()), OllamaClient)

    def test_openai_without_key_is_factory_error(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(FactoryError) as exc:
            ProviderRegistry.with_defaults().build("openai", _config(api_key=None, base_url=""))
        assert exc.value.provider == "openai"

    def test_deepseek_never_borrows_openai_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai-secret")
        monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
        with pytest.raises(FactoryError) as exc:
            ProviderRegistry.with_defaults().build("deepseek", _config(api_key=None, base_url=""))
        assert exc.value.provider == "deepseek"
        assert "DEEPSEEK_API_KEY" in exc.value.reason

    def test_deepseek_key_from_its_own_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai-secret")
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deepseek")
        client = ProviderRegistry.with_defaults().build("deepseek", _config(api_key=None, base_url=""))
        assert client.sdk.api_key == "sk-deepseek"
        assert client.base_url == "https://api.deepseek.com"

    def test_shared_metrics(self):
        metrics = MetricsCollector()
        client = ProviderRegistry.with_defaults(metrics).build("ollama", _config())
        assert client.metrics is metrics


class TestAgent:
    @pytest.mark.asyncio
    async def test_builds_agent_from_config(self):
        registry = ProviderRegistry.with_defaults()
        agent = await registry.agent(
            "ollama",
            _config(system_preamble="Be terse."),
            temperature=0.0,
            max_turns=2,
        )
        try:
            assert isinstance(agent, Agent)
            assert isinstance(agent.model, OllamaCompletionModel)
            assert agent.model.model == "qwen3:4b"
            assert agent.model.client.base_url == "http://ollama.test"
            assert agent.name == "Helper"
            assert agent.description == "Answers questions"
            assert agent.preamble == "Be terse."
            assert agent.temperature == 0.0
            assert agent.max_turns == 2
            assert agent.tool_channel is None
        finally:
            await agent.aclose()

    @pytest.mark.asyncio
    async def test_client_without_completion_is_unsupported(self):
        registry = ProviderRegistry()
        client = _EmbeddingsOnly()
        registry.register("embed-only", lambda config: client)

        with pytest.raises(UnsupportedFeature) as exc:
            await registry.agent("embed-only", _config())
        assert exc.value.capability == "completion"
        assert client.closed

    @pytest.mark.asyncio
    async def test_http_tool_channel_not_implemented(self):
        registry = ProviderRegistry.with_defaults()
        config = _config(tools=ToolChannelSpec.http("http://tools.test/mcp"))
        with pytest.raises(NotImplementedError):
            await registry.agent("ollama", config)

    @pytest.mark.asyncio
    async def test_unknown_provider_for_agent(self):
        with pytest.raises(UnknownProvider):
            await ProviderRegistry.with_defaults().agent("nope", _config())


@pytest.mark.asyncio
async def test_base_client_verify_is_unsupported():
    with pytest.raises(UnsupportedFeature) as exc:
        await _EmbeddingsOnly().verify()
    assert exc.value.capability == "verify"
