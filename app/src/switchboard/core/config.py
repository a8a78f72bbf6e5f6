"""
Switchboard Configuration — env vars in, frozen dataclasses out.

Two kinds of settings live here:
- Process settings (store path, tool root, defaults) read once into
  ``SwitchboardConfig``.
- Agent definitions, discovered per provider from prefixed env vars by
  ``discover_agents()``:

    DEEPSEEK_MODEL=deepseek-chat
    DEEPSEEK_NAME=Planner
    DEEPSEEK_CODE=planner
    DEEPSEEK_DESC=Breaks work into steps
    DEEPSEEK_BASE_URL=https://api.deepseek.com
    DEEPSEEK_API_KEY=sk-...
    DEEPSEEK1_MODEL=deepseek-reasoner          # numbered variants, 1..10
    ...
    OLLAMA_TOOLS={"type": "stdio", "command": "node", "args": ["index.js"], "path": "servers/fs"}
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from dotenv import load_dotenv

from switchboard.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

MAX_NUMBERED_AGENTS = 10


# ─── Process settings ─────────────────────────────────────────


@dataclass(frozen=True)
class StoreConfig:
    """Task store settings."""

    db_path: str = "switchboard.db"

    @classmethod
    def from_env(cls) -> StoreConfig:
        return cls(db_path=os.getenv("SWITCHBOARD_DB_PATH", "switchboard.db"))


@dataclass(frozen=True)
class ToolConfig:
    """External tool channel settings."""

    root: str = "."  # Working subdirectories of stdio tool servers resolve against this

    @classmethod
    def from_env(cls) -> ToolConfig:
        return cls(root=os.getenv("SWITCHBOARD_TOOL_ROOT", "."))


@dataclass(frozen=True)
class DefaultsConfig:
    """Defaults applied to agents built from discovered configs."""

    agent_temperature: float = 0.0
    max_turns: int = 5

    @classmethod
    def from_env(cls) -> DefaultsConfig:
        return cls(
            agent_temperature=float(os.getenv("SWITCHBOARD_AGENT_TEMPERATURE", "0.0")),
            max_turns=int(os.getenv("SWITCHBOARD_AGENT_MAX_TURNS", "5")),
        )


@dataclass(frozen=True)
class SwitchboardConfig:
    """Root configuration."""

    store: StoreConfig = field(default_factory=StoreConfig)
    tools: ToolConfig = field(default_factory=ToolConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)

    @classmethod
    def from_env(cls) -> SwitchboardConfig:
        return cls(
            store=StoreConfig.from_env(),
            tools=ToolConfig.from_env(),
            defaults=DefaultsConfig.from_env(),
        )


# ─── Agent definitions ────────────────────────────────────────


class ToolTransport(str, Enum):
    """How an agent reaches its external tool server."""

    NONE = "none"
    STDIO = "stdio"
    HTTP = "http"  # Streamable HTTP, not implemented


@dataclass(frozen=True)
class ToolChannelSpec:
    """External tool server an agent should attach, if any."""

    transport: ToolTransport = ToolTransport.NONE
    command: str = ""
    args: tuple[str, ...] = ()
    path: str = ""  # Working subdirectory of the child process
    url: str = ""

    @classmethod
    def none(cls) -> ToolChannelSpec:
        return cls()

    @classmethod
    def stdio(cls, command: str, args: Iterable[str] = (), path: str = "") -> ToolChannelSpec:
        return cls(
            transport=ToolTransport.STDIO,
            command=command,
            args=tuple(args),
            path=path,
        )

    @classmethod
    def http(cls, url: str) -> ToolChannelSpec:
        return cls(transport=ToolTransport.HTTP, url=url)

    @classmethod
    def from_json(cls, raw: str) -> ToolChannelSpec:
        """Parse the ``*_TOOLS`` env value."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid tool channel JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Tool channel must be a JSON object, got: {raw!r}")

        kind = str(data.get("type", "none")).lower()
        if kind == ToolTransport.NONE.value:
            return cls.none()
        if kind == ToolTransport.STDIO.value:
            if not data.get("command"):
                raise ConfigurationError("stdio tool channel requires a command")
            return cls.stdio(
                command=data["command"],
                args=[str(a) for a in data.get("args", [])],
                path=data.get("path", ""),
            )
        if kind == ToolTransport.HTTP.value:
            return cls.http(url=data.get("url", ""))
        raise ConfigurationError(f"Unknown tool channel type: {kind}")

    @property
    def enabled(self) -> bool:
        return self.transport != ToolTransport.NONE


@dataclass(frozen=True)
class AgentInfo:
    """Public view of an agent definition. Never carries credentials."""

    code: str
    name: str
    description: str
    model: str
    provider: str = ""


@dataclass(frozen=True)
class AgentConfig:
    """Everything needed to build one agent. ``code`` is the unique key."""

    model: str
    code: str
    name: str
    description: str
    base_url: str
    api_key: str | None = None
    system_preamble: str | None = None
    tools: ToolChannelSpec = field(default_factory=ToolChannelSpec.none)

    def public(self, provider: str = "") -> AgentInfo:
        return AgentInfo(
            code=self.code,
            name=self.name,
            description=self.description,
            model=self.model,
            provider=provider,
        )


_REQUIRED_KEYS = ("MODEL", "NAME", "CODE", "DESC", "BASE_URL")


def _read_agent(prefix: str, environ: Mapping[str, str]) -> AgentConfig | None:
    values = {key: environ.get(f"{prefix}_{key}", "") for key in _REQUIRED_KEYS}
    missing = [key for key, value in values.items() if not value]
    if missing:
        logger.debug("Skipping agent prefix %s (missing %s)", prefix, ", ".join(missing))
        return None

    raw_tools = environ.get(f"{prefix}_TOOLS", "")
    return AgentConfig(
        model=values["MODEL"],
        code=values["CODE"],
        name=values["NAME"],
        description=values["DESC"],
        base_url=values["BASE_URL"],
        api_key=environ.get(f"{prefix}_API_KEY") or None,
        system_preamble=environ.get(f"{prefix}_SYSTEM_PREAMBLE") or None,
        tools=ToolChannelSpec.from_json(raw_tools) if raw_tools else ToolChannelSpec.none(),
    )


def discover_agents(
    providers: Iterable[str], environ: Mapping[str, Any] | None = None
) -> list[tuple[str, AgentConfig]]:
    """Find agent definitions for each provider id in the environment.

    Reads the unnumbered prefix (``OLLAMA_*``) and then ``OLLAMA1_*`` up to
    ``OLLAMA10_*``, stopping at the first numbered prefix without a model.
    """
    env = os.environ if environ is None else environ
    found: list[tuple[str, AgentConfig]] = []

    for provider in providers:
        base = provider.upper()
        agent = _read_agent(base, env)
        if agent:
            found.append((provider, agent))

        for n in range(1, MAX_NUMBERED_AGENTS + 1):
            prefix = f"{base}{n}"
            if not env.get(f"{prefix}_MODEL"):
                break
            agent = _read_agent(prefix, env)
            if agent:
                found.append((provider, agent))

    logger.info("Discovered %d agent definition(s)", len(found))
    return found


def reload_config() -> SwitchboardConfig:
    """Re-read env vars into the module-level config (used by tests)."""
    global config
    config = SwitchboardConfig.from_env()
    return config


config = SwitchboardConfig.from_env()
