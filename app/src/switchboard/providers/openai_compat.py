"""
OpenAI-compatible backend — Chat Completions over the openai SDK.

Serves OpenAI itself and any vendor that speaks the same wire format
(DeepSeek subclasses this). Requests are built as plain JSON so the exact
payload is inspectable; the SDK handles auth, base URL and status errors.

Streaming reads the raw SSE ``data:`` lines (``with_streaming_response``)
instead of the SDK's parsed chunks, so one malformed chunk is skipped by
the reconstructor rather than aborting the whole stream.

SDK retries are disabled: retry policy belongs to callers.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator

import httpx
import openai
from openai import AsyncOpenAI

from switchboard.completion.contracts import (
    CompletionRequest,
    CompletionResponse,
    DocumentContent,
    Image,
    Message,
    Reasoning,
    Role,
    Text,
    ToolCall,
    ToolChoice,
    ToolChoiceMode,
    ToolDefinition,
    ToolResult,
    Usage,
)
from switchboard.completion.streaming import (
    StreamChunk,
    StreamingResponse,
    StreamReconstructor,
    ToolCallFragment,
    parse_arguments,
)
from switchboard.core.metrics import MetricsCollector
from switchboard.errors import CompletionError, ConfigurationError, ProviderError, ResponseError
from switchboard.providers.base import CompletionClient, CompletionModel, ProviderClient

logger = logging.getLogger(__name__)

# Top-level request fields the SDK accepts as keyword arguments. Everything
# else in the payload travels through ``extra_body``.
_SDK_FIELDS = frozenset(
    {"model", "messages", "temperature", "max_tokens", "tools", "tool_choice", "stream", "stream_options"}
)


# ─── Request encoding ─────────────────────────────────────────


def encode_tool(tool: ToolDefinition) -> dict:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


def encode_tool_choice(choice: ToolChoice) -> Any:
    if choice.mode != ToolChoiceMode.SPECIFIC:
        return choice.mode.value
    functions = [{"type": "function", "function": {"name": name}} for name in choice.function_names]
    return functions[0] if len(functions) == 1 else functions


def encode_message(message: Message) -> list[dict]:
    """One internal message may become several wire messages (one per tool result)."""
    if message.role == Role.ASSISTANT:
        text = "".join(p.text for p in message.content if isinstance(p, Text))
        calls = [p for p in message.content if isinstance(p, ToolCall)]
        wire: dict[str, Any] = {"role": "assistant", "content": text}
        if calls:
            wire["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                }
                for call in calls
            ]
        return [wire]

    encoded: list[dict] = []
    parts: list[dict] = []
    for part in message.content:
        if isinstance(part, ToolResult):
            encoded.append({"role": "tool", "tool_call_id": part.id, "content": part.render()})
        elif isinstance(part, Text):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, DocumentContent):
            parts.append({"type": "text", "text": part.data})
        elif isinstance(part, Image):
            url = part.data if part.data.startswith("http") else f"data:{part.media_type};base64,{part.data}"
            parts.append({"type": "image_url", "image_url": {"url": url}})

    if parts:
        if all(p["type"] == "text" for p in parts):
            content: Any = "\n".join(p["text"] for p in parts)
        else:
            content = parts
        encoded.append({"role": "user", "content": content})
    return encoded


def encode_messages(request: CompletionRequest) -> list[dict]:
    """Preamble, then documents, then history."""
    messages: list[dict] = []
    if request.preamble:
        messages.append({"role": "system", "content": request.preamble})
    for message in request.conversation():
        messages.extend(encode_message(message))
    return messages


# ─── Response decoding ────────────────────────────────────────


def decode_usage(data: dict | None) -> Usage:
    if not data:
        return Usage()
    prompt = data.get("prompt_tokens") or 0
    completion = data.get("completion_tokens") or 0
    return Usage(
        input_tokens=prompt,
        output_tokens=completion,
        total_tokens=data.get("total_tokens") or prompt + completion,
    )


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the ``data`` payload of each server-sent event."""
    data: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue  # Comment / keep-alive
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        yield "\n".join(data)


class OpenAICompletionModel(CompletionModel):
    """Chat Completions bound to one model name."""

    def __init__(self, client: OpenAICompatibleClient, model: str):
        self.client = client
        self.provider = client.provider
        self.model = model

    def build_payload(self, request: CompletionRequest, stream: bool = False) -> dict:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": encode_messages(request),
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.tools:
            payload["tools"] = [encode_tool(tool) for tool in request.tools]
            payload["tool_choice"] = encode_tool_choice(request.tool_choice or ToolChoice.auto())
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        if request.additional_params:
            payload.update(request.additional_params)
        return payload

    def _sdk_kwargs(self, payload: dict) -> dict:
        kwargs = {k: v for k, v in payload.items() if k in _SDK_FIELDS}
        extra = {k: v for k, v in payload.items() if k not in _SDK_FIELDS}
        if extra:
            kwargs["extra_body"] = extra
        return kwargs

    # --- Non-streaming ---

    async def completion(self, request: CompletionRequest) -> CompletionResponse:
        payload = self.build_payload(request)
        labels = {"provider": self.provider}
        self.client.metrics.inc("llm.requests", labels=labels)
        start = time.monotonic()

        try:
            response = await self.client.sdk.chat.completions.create(**self._sdk_kwargs(payload))
        except openai.APIError as e:
            self.client.metrics.inc("llm.errors", labels=labels)
            raise translate_error(e) from e

        self.client.metrics.observe("llm.latency_ms", (time.monotonic() - start) * 1000, labels=labels)
        raw = response.model_dump() if hasattr(response, "model_dump") else response
        return self.decode_response(raw)

    def decode_response(self, data: dict) -> CompletionResponse:
        choices = data.get("choices") or []
        if not choices:
            raise ResponseError("Response contained no choices")

        message = choices[0].get("message") or {}
        role = message.get("role")
        if role != "assistant":
            raise ResponseError(f"Expected an assistant message, got: {role}")

        content: list[Any] = []
        text = message.get("content")
        if text and text.strip():
            content.append(Text(text))

        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            name = function.get("name") or ""
            try:
                arguments = parse_arguments(function.get("arguments"))
            except ValueError as e:
                raise ResponseError(f"Tool call {name} has invalid arguments: {e}") from e
            content.append(ToolCall(id=tc.get("id") or name, name=name, arguments=arguments))

        if not content:
            raise ResponseError("Response contained no message or tool call (empty)")

        reasoning = message.get(self.client.reasoning_field) if self.client.reasoning_field else None
        if reasoning:
            content.insert(0, Reasoning(reasoning))

        return CompletionResponse(
            choice=tuple(content),
            usage=decode_usage(data.get("usage")),
            raw_response=data,
        )

    # --- Streaming ---

    def decode_chunk(self, data: str) -> StreamChunk | None:
        if data.strip() == "[DONE]":
            return StreamChunk(done=True)

        chunk = json.loads(data)
        if not isinstance(chunk, dict):
            raise ValueError(f"expected a JSON object, got {type(chunk).__name__}")

        choices = chunk.get("choices") or []
        delta = (choices[0].get("delta") or {}) if choices else {}
        fragments = []
        for tc in delta.get("tool_calls") or []:
            function = tc.get("function") or {}
            fragments.append(
                ToolCallFragment(
                    index=tc.get("index", 0),
                    id=tc.get("id"),
                    name=function.get("name"),
                    arguments=function.get("arguments"),
                )
            )

        usage = chunk.get("usage")
        reasoning_field = self.client.reasoning_field
        return StreamChunk(
            text=delta.get("content"),
            reasoning=delta.get(reasoning_field) if reasoning_field else None,
            tool_calls=tuple(fragments),
            usage=decode_usage(usage) if usage else None,
            raw=usage,
        )

    async def stream(self, request: CompletionRequest) -> StreamingResponse:
        payload = self.build_payload(request, stream=True)
        self.client.metrics.inc("llm.requests", labels={"provider": self.provider})

        stack = AsyncExitStack()
        try:
            response = await stack.enter_async_context(
                self.client.sdk.chat.completions.with_streaming_response.create(
                    **self._sdk_kwargs(payload)
                )
            )
        except openai.APIError as e:
            await stack.aclose()
            self.client.metrics.inc("llm.errors", labels={"provider": self.provider})
            raise translate_error(e) from e

        reconstructor = StreamReconstructor(
            self.decode_chunk, provider=self.provider, metrics=self.client.metrics
        )
        return StreamingResponse(reconstructor.run(self._payloads(response, stack)))

    async def _payloads(self, response: Any, stack: AsyncExitStack) -> AsyncIterator[str]:
        try:
            async for data in iter_sse_data(response.iter_lines()):
                yield data
        except (httpx.HTTPError, openai.APIError) as e:
            raise ResponseError(f"Stream transport failed: {e}") from e
        finally:
            await stack.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()


def translate_error(e: openai.APIError) -> CompletionError:
    if isinstance(e, openai.APIStatusError):
        return ProviderError(e.message, status_code=e.status_code)
    if isinstance(e, openai.APIConnectionError):
        return ProviderError(str(e))
    return ResponseError(str(e))


class OpenAICompatibleClient(ProviderClient, CompletionClient):
    """Client for the OpenAI Chat Completions API and compatible vendors."""

    provider = "openai"
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    API_KEY_ENV = "OPENAI_API_KEY"
    reasoning_field: str | None = None  # Vendor field carrying reasoning deltas

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        metrics: MetricsCollector | None = None,
    ):
        api_key = api_key or os.getenv(self.API_KEY_ENV)
        if not api_key:
            raise ConfigurationError(f"{self.provider}: no API key configured (set {self.API_KEY_ENV})")
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.metrics = metrics or MetricsCollector()
        self.sdk = AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            http_client=http_client,
            max_retries=0,
        )
        logger.info("%s client ready (base_url=%s)", self.provider, self.base_url)

    def as_completion(self) -> CompletionClient:
        return self

    def completion_model(self, model: str) -> OpenAICompletionModel:
        return OpenAICompletionModel(self, model)

    async def verify(self) -> None:
        try:
            await self.sdk.models.list()
        except openai.APIError as e:
            raise translate_error(e) from e

    async def aclose(self) -> None:
        await self.sdk.close()
