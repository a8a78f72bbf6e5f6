"""Tests for the Ollama backend — offline via httpx.MockTransport."""

import json

import httpx
import pytest

from switchboard.completion.contracts import (
    CompletionRequest,
    Image,
    Message,
    Reasoning,
    Role,
    StreamEventType,
    Text,
    ToolCall,
    ToolChoice,
    ToolDefinition,
    Usage,
)
from switchboard.errors import ProviderError, ResponseError
from switchboard.providers.ollama import QWEN3_4B, OllamaClient, encode_message


def _client(handler) -> OllamaClient:
    return OllamaClient(
        base_url="http://ollama.test/",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def _ndjson(*lines: dict) -> httpx.Response:
    body = "\n".join(json.dumps(line) for line in lines) + "\n"
    return httpx.Response(200, content=body.encode(), headers={"content-type": "application/x-ndjson"})


def _chat_body(message: dict, **extra) -> dict:
    return {"model": QWEN3_4B, "message": message, "done": True, "prompt_eval_count": 10, "eval_count": 5, **extra}


# ─── Request encoding ─────────────────────────────────────────


class TestPayload:
    def test_options_carry_sampling_parameters(self):
        model = _client(lambda r: httpx.Response(500)).completion_model(QWEN3_4B)
        payload = model.build_payload(
            CompletionRequest(
                chat_history=(Message.user("hi"),),
                preamble="sys",
                temperature=0.2,
                max_tokens=32,
                additional_params={"num_ctx": 4096},
            )
        )
        assert payload["options"] == {"temperature": 0.2, "num_predict": 32, "num_ctx": 4096}
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        assert payload["stream"] is False
        assert "tools" not in payload

    def test_tool_choice_is_ignored_with_warning(self, caplog):
        model = _client(lambda r: httpx.Response(500)).completion_model(QWEN3_4B)
        tool = ToolDefinition(name="f", description="d", parameters={"type": "object"})
        with caplog.at_level("WARNING"):
            payload = model.build_payload(
                CompletionRequest(
                    chat_history=(Message.user("hi"),),
                    tools=(tool,),
                    tool_choice=ToolChoice.required(),
                )
            )
        assert "tool_choice" not in payload
        assert payload["tools"][0]["function"]["name"] == "f"
        assert "tool_choice" in caplog.text

    def test_user_texts_join_and_images_travel_separately(self):
        message = Message(role=Role.USER, content=(Text("look"), Text("here"), Image(data="aGk=")))
        assert encode_message(message) == [{"role": "user", "content": "look here", "images": ["aGk="]}]

    def test_tool_results_addressed_by_name(self):
        assert encode_message(Message.tool_result("get_weather", "sunny")) == [
            {"role": "tool", "tool_name": "get_weather", "content": "sunny"}
        ]

    def test_assistant_thinking_and_calls(self):
        message = Message.assistant(Reasoning("hmm"), Text("ok"), ToolCall(id="f", name="f", arguments={"a": 1}))
        assert encode_message(message) == [
            {
                "role": "assistant",
                "content": "ok",
                "thinking": "hmm",
                "tool_calls": [{"function": {"name": "f", "arguments": {"a": 1}}}],
            }
        ]


# ─── Non-streaming ────────────────────────────────────────────


class TestCompletion:
    @pytest.mark.asyncio
    async def test_decodes_text_thinking_calls_and_usage(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            return httpx.Response(
                200,
                json=_chat_body(
                    {
                        "role": "assistant",
                        "content": "Sure.",
                        "thinking": "user wants weather",
                        "tool_calls": [{"function": {"name": "get_weather", "arguments": {"city": "Oslo"}}}],
                    }
                ),
            )

        model = _client(handler).completion_model(QWEN3_4B)
        response = await model.completion(CompletionRequest(chat_history=(Message.user("weather?"),)))

        assert captured["url"] == "http://ollama.test/api/chat"
        assert response.choice == (
            Reasoning("user wants weather"),
            Text("Sure."),
            ToolCall(id="get_weather", name="get_weather", arguments={"city": "Oslo"}),
        )
        assert response.usage == Usage(input_tokens=10, output_tokens=5, total_tokens=15)

    @pytest.mark.asyncio
    async def test_empty_message_is_response_error(self):
        body = _chat_body({"role": "assistant", "content": ""})
        model = _client(lambda r: httpx.Response(200, json=body)).completion_model(QWEN3_4B)
        with pytest.raises(ResponseError):
            await model.completion(CompletionRequest(chat_history=(Message.user("x"),)))

    @pytest.mark.asyncio
    async def test_http_error_is_provider_error(self):
        model = _client(lambda r: httpx.Response(404, text="model not found")).completion_model(QWEN3_4B)
        with pytest.raises(ProviderError) as exc:
            await model.completion(CompletionRequest(chat_history=(Message.user("x"),)))
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_failure_is_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        model = _client(handler).completion_model(QWEN3_4B)
        with pytest.raises(ProviderError):
            await model.completion(CompletionRequest(chat_history=(Message.user("x"),)))


# ─── Streaming ────────────────────────────────────────────────


class TestStream:
    @pytest.mark.asyncio
    async def test_ndjson_stream(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is True
            return _ndjson(
                {"message": {"role": "assistant", "content": "", "thinking": "plan"}, "done": False},
                {"message": {"role": "assistant", "content": "Hel"}, "done": False},
                {"message": {"role": "assistant", "content": "lo"}, "done": False},
                {
                    "message": {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [{"function": {"name": "f", "arguments": {"x": 1}}}],
                    },
                    "done": False,
                },
                {
                    "message": {"role": "assistant", "content": ""},
                    "done": True,
                    "done_reason": "stop",
                    "prompt_eval_count": 7,
                    "eval_count": 3,
                },
            )

        stream = await _client(handler).completion_model(QWEN3_4B).stream(
            CompletionRequest(chat_history=(Message.user("x"),))
        )
        events = [event async for event in stream]

        kinds = [e.type for e in events]
        assert kinds == [
            StreamEventType.REASONING,
            StreamEventType.MESSAGE,
            StreamEventType.MESSAGE,
            StreamEventType.TOOL_CALL,
            StreamEventType.FINAL,
        ]
        final = events[-1].final
        assert final.message.content == (
            Reasoning("plan"),
            Text("Hello"),
            ToolCall(id="f", name="f", arguments={"x": 1}),
        )
        assert final.usage == Usage(input_tokens=7, output_tokens=3, total_tokens=10)
        assert final.raw["done_reason"] == "stop"

    @pytest.mark.asyncio
    async def test_whitespace_text_matches_non_streaming(self):
        call = {"function": {"name": "f", "arguments": {"x": 1}}}

        def stream_handler(request: httpx.Request) -> httpx.Response:
            return _ndjson(
                {"message": {"role": "assistant", "content": "\n\n"}, "done": False},
                {"message": {"role": "assistant", "content": "", "tool_calls": [call]}, "done": False},
                {"message": {"role": "assistant", "content": ""}, "done": True, "prompt_eval_count": 10, "eval_count": 5},
            )

        def whole_handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json=_chat_body({"role": "assistant", "content": "\n\n", "tool_calls": [call]})
            )

        request = CompletionRequest(chat_history=(Message.user("x"),))
        whole = await _client(whole_handler).completion_model(QWEN3_4B).completion(request)
        stream = await _client(stream_handler).completion_model(QWEN3_4B).stream(request)
        final = await stream.collect()

        assert final.message.content == whole.choice == (ToolCall(id="f", name="f", arguments={"x": 1}),)

    @pytest.mark.asyncio
    async def test_error_line_surfaces_as_error_event(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return _ndjson(
                {"message": {"role": "assistant", "content": "par"}, "done": False},
                {"error": "model crashed"},
            )

        stream = await _client(handler).completion_model(QWEN3_4B).stream(
            CompletionRequest(chat_history=(Message.user("x"),))
        )
        events = [event async for event in stream]

        errors = [e for e in events if e.type == StreamEventType.ERROR]
        assert len(errors) == 1
        assert "model crashed" in errors[0].text
        assert events[-1].type == StreamEventType.FINAL
        assert events[-1].final.message.text() == "par"

    @pytest.mark.asyncio
    async def test_error_status_raises_before_stream(self):
        model = _client(lambda r: httpx.Response(500, text="boom")).completion_model(QWEN3_4B)
        with pytest.raises(ProviderError) as exc:
            await model.stream(CompletionRequest(chat_history=(Message.user("x"),)))
        assert exc.value.status_code == 500


# ─── Embeddings / verify ──────────────────────────────────────


class TestEmbeddings:
    @pytest.mark.asyncio
    async def test_embed_texts(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/embed"
            assert json.loads(request.content) == {"model": "all-minilm", "input": ["a", "b"]}
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2], [0.3, 0.4]]})

        model = _client(handler).embedding_model("all-minilm")
        assert model.dimensions == 384
        assert await model.embed_texts(["a", "b"]) == [[0.1, 0.2], [0.3, 0.4]]

    @pytest.mark.asyncio
    async def test_count_mismatch_is_response_error(self):
        model = _client(lambda r: httpx.Response(200, json={"embeddings": [[0.1]]})).embedding_model("all-minilm")
        with pytest.raises(ResponseError, match="Expected 2 embeddings"):
            await model.embed_texts(["a", "b"])


@pytest.mark.asyncio
async def test_verify_hits_tags():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"models": []})

    await _client(handler).verify()
    assert seen == ["/api/tags"]


@pytest.mark.asyncio
async def test_verify_failure_is_provider_error():
    with pytest.raises(ProviderError):
        await _client(lambda r: httpx.Response(503, text="down")).verify()
