"""Tests for Agent / AgentBuilder — request assembly and the tool loop."""

from typing import Any

import pytest

from switchboard.agents.agent import DEFAULT_AGENT_NAME, MAX_TURNS, AgentBuilder
from switchboard.completion.contracts import (
    CompletionRequest,
    CompletionResponse,
    Message,
    Role,
    StreamEventType,
    Text,
    ToolCall,
    ToolChoice,
    ToolDefinition,
    ToolResult,
    Usage,
)
from switchboard.completion.streaming import StreamChunk, StreamingResponse, StreamReconstructor
from switchboard.errors import PromptError
from switchboard.providers.base import CompletionModel
from switchboard.tools.channel import ToolChannel


# ─── Fakes ────────────────────────────────────────────────────


class FakeModel(CompletionModel):
    """Replays canned responses and records every request."""

    provider = "fake"
    model = "fake-1"

    def __init__(self, *responses: CompletionResponse):
        self.responses = list(responses)
        self.requests: list[CompletionRequest] = []
        self.closed = False

    async def completion(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        return self.responses.pop(0)

    async def stream(self, request: CompletionRequest) -> StreamingResponse:
        self.requests.append(request)
        text = self.responses.pop(0).text()

        async def payloads():
            for word in text.split(" "):
                yield word

        reconstructor = StreamReconstructor(lambda payload: StreamChunk(text=payload))
        return StreamingResponse(reconstructor.run(payloads()))

    async def aclose(self) -> None:
        self.closed = True


class FakeChannel(ToolChannel):
    def __init__(self, tools=(), outputs: dict[str, str] | None = None):
        self.tools = list(tools)
        self.outputs = outputs or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def list_tools(self) -> list[ToolDefinition]:
        return list(self.tools)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        self.calls.append((name, arguments))
        return self.outputs.get(name, "")

    async def aclose(self) -> None:
        self.closed = True


def _text(text: str) -> CompletionResponse:
    return CompletionResponse(choice=(Text(text),), usage=Usage())


def _calls(*calls: ToolCall) -> CompletionResponse:
    return CompletionResponse(choice=calls, usage=Usage())


SEARCH = ToolDefinition(name="search", description="Search the web", parameters={"type": "object"})
CLOCK = ToolDefinition(name="clock", description="Current time", parameters={"type": "object"})


# ─── Builder ──────────────────────────────────────────────────


class TestBuilder:
    def test_defaults(self):
        agent = AgentBuilder(FakeModel()).build()
        assert agent.name == DEFAULT_AGENT_NAME
        assert agent.preamble == ""
        assert agent.max_turns == MAX_TURNS
        assert agent.tool_channel is None

    def test_context_documents_are_numbered(self):
        agent = AgentBuilder(FakeModel()).context("first").context("second").build()
        assert [d.id for d in agent.static_context] == ["static_doc_0", "static_doc_1"]
        assert [d.text for d in agent.static_context] == ["first", "second"]

    def test_append_preamble(self):
        agent = AgentBuilder(FakeModel()).append_preamble("a").append_preamble("b").build()
        assert agent.preamble == "a\nb"

    def test_additional_params_merge(self):
        agent = (
            AgentBuilder(FakeModel())
            .additional_params({"top_p": 0.9})
            .additional_params({"seed": 7})
            .build()
        )
        assert agent.additional_params == {"top_p": 0.9, "seed": 7}


# ─── Requests ─────────────────────────────────────────────────


class TestCompletionRequest:
    @pytest.mark.asyncio
    async def test_request_carries_agent_settings(self):
        channel = FakeChannel(tools=[SEARCH])
        agent = (
            AgentBuilder(FakeModel())
            .preamble("You are helpful.")
            .context("Project notes")
            .tool(CLOCK)
            .tool_channel(channel)
            .temperature(0.0)
            .max_tokens(128)
            .tool_choice(ToolChoice.required())
            .build()
        )

        request = await agent.completion_request("hi")

        assert request.preamble == "You are helpful."
        assert [t.name for t in request.tools] == ["clock", "search"]
        assert request.documents[0].text == "Project notes"
        assert request.temperature == 0.0
        assert request.max_tokens == 128
        assert request.tool_choice == ToolChoice.required()
        assert request.chat_history[-1].text() == "hi"

    @pytest.mark.asyncio
    async def test_empty_preamble_is_omitted(self):
        request = await AgentBuilder(FakeModel()).build().completion_request("hi")
        assert request.preamble is None
        assert request.tools == ()


# ─── Prompting ────────────────────────────────────────────────


class TestPrompt:
    @pytest.mark.asyncio
    async def test_plain_prompt_returns_text(self):
        model = FakeModel(_text("Hello!"))
        agent = AgentBuilder(model).build()

        assert await agent.prompt("Hi") == "Hello!"
        assert len(model.requests) == 1

    @pytest.mark.asyncio
    async def test_tool_calls_without_channel_return_text(self):
        model = FakeModel(
            CompletionResponse(choice=(Text("partial"), ToolCall(id="1", name="search")), usage=Usage())
        )
        assert await AgentBuilder(model).build().prompt("Hi") == "partial"

    @pytest.mark.asyncio
    async def test_tool_loop_feeds_results_back(self):
        model = FakeModel(
            _calls(ToolCall(id="call_1", name="search", arguments={"q": "python"})),
            _text("Python is a language."),
        )
        channel = FakeChannel(tools=[SEARCH], outputs={"search": "python.org"})
        agent = AgentBuilder(model).tool_channel(channel).build()

        answer = await agent.prompt("What is Python?")

        assert answer == "Python is a language."
        assert channel.calls == [("search", {"q": "python"})]

        second = model.requests[1]
        history = second.chat_history
        assert history[0].text() == "What is Python?"
        assert history[1].role == Role.ASSISTANT
        result = history[2].content[0]
        assert isinstance(result, ToolResult)
        assert result.id == "call_1"
        assert result.render() == "python.org"

    @pytest.mark.asyncio
    async def test_chat_keeps_prior_history_first(self):
        model = FakeModel(_text("ok"))
        agent = AgentBuilder(model).build()
        history = [Message.user("before"), Message.assistant("noted")]

        await agent.chat("now", history)
        assert [m.text() for m in model.requests[0].chat_history] == ["before", "noted", "now"]

    @pytest.mark.asyncio
    async def test_loop_gives_up_after_max_turns(self):
        looping = [_calls(ToolCall(id=str(i), name="search")) for i in range(3)]
        model = FakeModel(*looping)
        channel = FakeChannel(tools=[SEARCH])
        agent = AgentBuilder(model).tool_channel(channel).max_turns(2).build()

        with pytest.raises(PromptError) as exc:
            await agent.prompt("loop forever")
        assert exc.value.max_turns == 2
        assert len(channel.calls) == 2
        assert len(model.requests) == 3


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_prompt(self):
        agent = AgentBuilder(FakeModel(_text("a b"))).build()
        stream = await agent.stream_prompt("hi")
        events = [event async for event in stream]

        assert [e.text for e in events if e.type == StreamEventType.MESSAGE] == ["a", "b"]
        assert stream.final.message.text() == "ab"


class TestTools:
    @pytest.mark.asyncio
    async def test_call_tool_without_channel_is_empty(self):
        agent = AgentBuilder(FakeModel()).build()
        assert await agent.call_tool("search", {"q": "x"}) == ""

    @pytest.mark.asyncio
    async def test_call_tool_through_channel(self):
        channel = FakeChannel(outputs={"clock": "12:00"})
        agent = AgentBuilder(FakeModel()).tool_channel(channel).build()
        assert await agent.call_tool("clock", {}) == "12:00"

    @pytest.mark.asyncio
    async def test_aclose_releases_channel_and_model(self):
        model, channel = FakeModel(), FakeChannel()
        await AgentBuilder(model).tool_channel(channel).build().aclose()
        assert model.closed and channel.closed
