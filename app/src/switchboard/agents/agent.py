"""
Agent — a completion model plus everything sent with every request.

An agent bundles a model handle with its preamble, static context
documents, tool definitions, sampling parameters and an optional external
tool channel. Agents are immutable; build them with ``AgentBuilder``.

    agent = (
        AgentBuilder(model)
        .name("Planner")
        .preamble("Break the task into steps.")
        .context("Project uses Python 3.12")
        .temperature(0.2)
        .build()
    )
    answer = await agent.prompt("Plan the release")

``prompt``/``chat`` run a tool loop when a channel is attached: tool calls
are executed through the channel and their output is fed back until the
model answers in text, up to ``max_turns`` rounds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from switchboard.completion.contracts import (
    CompletionRequest,
    CompletionResponse,
    Document,
    Message,
    Role,
    Text,
    ToolChoice,
    ToolDefinition,
    ToolResult,
)
from switchboard.completion.streaming import StreamingResponse
from switchboard.errors import PromptError
from switchboard.providers.base import CompletionModel
from switchboard.tools.channel import ToolChannel

logger = logging.getLogger(__name__)

DEFAULT_AGENT_NAME = "Unnamed Agent"
MAX_TURNS = 5  # Tool round-trips per prompt


@dataclass(frozen=True)
class Agent:
    model: CompletionModel
    name: str = DEFAULT_AGENT_NAME
    description: str = ""
    preamble: str = ""
    static_context: tuple[Document, ...] = ()
    static_tools: tuple[ToolDefinition, ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None
    additional_params: dict[str, Any] | None = None
    tool_choice: ToolChoice | None = None
    tool_channel: ToolChannel | None = None
    max_turns: int = MAX_TURNS

    async def tools(self) -> list[ToolDefinition]:
        """Static tools plus whatever the channel currently advertises."""
        tools = list(self.static_tools)
        if self.tool_channel is not None:
            tools.extend(await self.tool_channel.list_tools())
        return tools

    async def completion_request(
        self, prompt: Message | str, history: Iterable[Message] = ()
    ) -> CompletionRequest:
        if isinstance(prompt, str):
            prompt = Message.user(prompt)
        return CompletionRequest(
            chat_history=(*history, prompt),
            preamble=self.preamble or None,
            tools=tuple(await self.tools()),
            documents=self.static_context,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            additional_params=self.additional_params,
            tool_choice=self.tool_choice,
        )

    async def completion(
        self, prompt: Message | str, history: Iterable[Message] = ()
    ) -> CompletionResponse:
        request = await self.completion_request(prompt, history)
        return await self.model.completion(request)

    async def prompt(self, text: str) -> str:
        return await self.chat(text, [])

    async def chat(self, text: str, history: Iterable[Message]) -> str:
        """Send ``text`` after ``history`` and return the model's final text."""
        messages = list(history)
        prompt = Message.user(text)

        for turn in range(self.max_turns + 1):
            response = await self.completion(prompt, messages)
            calls = response.tool_calls()
            if not calls or self.tool_channel is None:
                return response.text()
            if turn == self.max_turns:
                break

            messages.append(prompt)
            messages.append(response.message())

            results = []
            for call in calls:
                arguments = call.arguments if isinstance(call.arguments, dict) else {}
                output = await self.call_tool(call.name, arguments)
                results.append(ToolResult(id=call.id, content=(Text(output),), call_id=call.call_id))
            prompt = Message(role=Role.USER, content=tuple(results))
            logger.info(
                "%s turn %d: executed %d tool(s)", self.name, turn + 1, len(calls),
                extra={"agent": self.name},
            )

        raise PromptError(self.max_turns)

    async def stream_prompt(self, text: str) -> StreamingResponse:
        return await self.stream_chat(text, [])

    async def stream_chat(self, text: str, history: Iterable[Message]) -> StreamingResponse:
        request = await self.completion_request(text, history)
        return await self.model.stream(request)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool through the channel. Without a channel there is nothing to run."""
        if self.tool_channel is None:
            return ""
        return await self.tool_channel.call_tool(name, arguments)

    async def aclose(self) -> None:
        if self.tool_channel is not None:
            await self.tool_channel.aclose()
        await self.model.aclose()


class AgentBuilder:
    """Fluent construction of an ``Agent``. Every setter returns the builder."""

    def __init__(self, model: CompletionModel):
        self._model = model
        self._name = DEFAULT_AGENT_NAME
        self._description = ""
        self._preamble = ""
        self._context: list[Document] = []
        self._tools: list[ToolDefinition] = []
        self._temperature: float | None = None
        self._max_tokens: int | None = None
        self._additional_params: dict[str, Any] | None = None
        self._tool_choice: ToolChoice | None = None
        self._tool_channel: ToolChannel | None = None
        self._max_turns = MAX_TURNS

    def name(self, name: str) -> AgentBuilder:
        self._name = name
        return self

    def description(self, description: str) -> AgentBuilder:
        self._description = description
        return self

    def preamble(self, preamble: str) -> AgentBuilder:
        self._preamble = preamble
        return self

    def append_preamble(self, text: str) -> AgentBuilder:
        self._preamble = f"{self._preamble}\n{text}" if self._preamble else text
        return self

    def context(self, text: str) -> AgentBuilder:
        self._context.append(Document(id=f"static_doc_{len(self._context)}", text=text))
        return self

    def tool(self, tool: ToolDefinition) -> AgentBuilder:
        self._tools.append(tool)
        return self

    def tools(self, tools: Iterable[ToolDefinition]) -> AgentBuilder:
        self._tools.extend(tools)
        return self

    def temperature(self, temperature: float) -> AgentBuilder:
        self._temperature = temperature
        return self

    def max_tokens(self, max_tokens: int) -> AgentBuilder:
        self._max_tokens = max_tokens
        return self

    def additional_params(self, params: dict[str, Any]) -> AgentBuilder:
        self._additional_params = {**(self._additional_params or {}), **params}
        return self

    def tool_choice(self, choice: ToolChoice) -> AgentBuilder:
        self._tool_choice = choice
        return self

    def tool_channel(self, channel: ToolChannel) -> AgentBuilder:
        self._tool_channel = channel
        return self

    def max_turns(self, max_turns: int) -> AgentBuilder:
        self._max_turns = max_turns
        return self

    def build(self) -> Agent:
        return Agent(
            model=self._model,
            name=self._name,
            description=self._description,
            preamble=self._preamble,
            static_context=tuple(self._context),
            static_tools=tuple(self._tools),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            additional_params=self._additional_params,
            tool_choice=self._tool_choice,
            tool_channel=self._tool_channel,
            max_turns=self._max_turns,
        )
