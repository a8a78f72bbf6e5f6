"""
Ollama backend — native ``/api/chat`` and ``/api/embed`` over httpx.

Differences from the OpenAI wire format that this module absorbs:
- sampling parameters live under ``options``
- streams are newline-delimited JSON, one object per line
- tool calls arrive whole, arguments already decoded; the tool name doubles
  as the call id
- tool results are addressed by ``tool_name``
- ``tool_choice`` does not exist (ignored with a warning)
- the final ``done`` line carries token counts and timings
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator

import httpx

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
    ToolResult,
    Usage,
)
from switchboard.completion.streaming import (
    StreamChunk,
    StreamingResponse,
    StreamReconstructor,
    ToolCallFragment,
)
from switchboard.core.metrics import MetricsCollector
from switchboard.errors import ProviderError, ResponseError
from switchboard.providers.base import (
    CompletionClient,
    CompletionModel,
    EmbeddingModel,
    EmbeddingsClient,
    ProviderClient,
)
from switchboard.providers.openai_compat import encode_tool

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"

QWEN3_4B = "qwen3:4b"
ALL_MINILM = "all-minilm"
NOMIC_EMBED_TEXT = "nomic-embed-text"

EMBEDDING_DIMENSIONS = {ALL_MINILM: 384, NOMIC_EMBED_TEXT: 768}

_DONE_FIELDS = (
    "done_reason",
    "total_duration",
    "load_duration",
    "prompt_eval_count",
    "prompt_eval_duration",
    "eval_count",
    "eval_duration",
)


def decode_usage(data: dict) -> Usage:
    prompt = data.get("prompt_eval_count") or 0
    completion = data.get("eval_count") or 0
    return Usage(input_tokens=prompt, output_tokens=completion, total_tokens=prompt + completion)


def encode_message(message: Message) -> list[dict]:
    if message.role == Role.ASSISTANT:
        wire: dict[str, Any] = {
            "role": "assistant",
            "content": "".join(p.text for p in message.content if isinstance(p, Text)),
        }
        thinking = "".join(p.reasoning for p in message.content if isinstance(p, Reasoning))
        if thinking:
            wire["thinking"] = thinking
        calls = [p for p in message.content if isinstance(p, ToolCall)]
        if calls:
            wire["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}} for call in calls
            ]
        return [wire]

    encoded: list[dict] = []
    texts: list[str] = []
    images: list[str] = []
    for part in message.content:
        if isinstance(part, ToolResult):
            encoded.append({"role": "tool", "tool_name": part.id, "content": part.render()})
        elif isinstance(part, Text):
            texts.append(part.text)
        elif isinstance(part, DocumentContent):
            texts.append(part.data)
        elif isinstance(part, Image):
            images.append(part.data)

    if texts or images:
        wire = {"role": "user", "content": " ".join(texts)}
        if images:
            wire["images"] = images
        encoded.append(wire)
    return encoded


class OllamaCompletionModel(CompletionModel):
    def __init__(self, client: OllamaClient, model: str):
        self.client = client
        self.provider = client.provider
        self.model = model

    def build_payload(self, request: CompletionRequest, stream: bool = False) -> dict:
        messages: list[dict] = []
        if request.preamble:
            messages.append({"role": "system", "content": request.preamble})
        for message in request.conversation():
            messages.extend(encode_message(message))

        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.additional_params:
            options.update(request.additional_params)

        if request.tool_choice is not None:
            logger.warning("Ollama does not support tool_choice; ignoring it")

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "options": options,
            "stream": stream,
        }
        if request.tools:
            payload["tools"] = [encode_tool(tool) for tool in request.tools]
        return payload

    # --- Non-streaming ---

    async def completion(self, request: CompletionRequest) -> CompletionResponse:
        payload = self.build_payload(request)
        labels = {"provider": self.provider}
        self.client.metrics.inc("llm.requests", labels=labels)
        start = time.monotonic()

        try:
            response = await self.client.http.post(self.client.url("api/chat"), json=payload)
        except httpx.HTTPError as e:
            self.client.metrics.inc("llm.errors", labels=labels)
            raise ProviderError(str(e)) from e
        if response.is_error:
            self.client.metrics.inc("llm.errors", labels=labels)
            raise ProviderError(response.text, status_code=response.status_code)

        self.client.metrics.observe("llm.latency_ms", (time.monotonic() - start) * 1000, labels=labels)
        try:
            data = response.json()
        except ValueError as e:
            raise ResponseError(f"Response body is not JSON: {e}") from e
        return self.decode_response(data)

    def decode_response(self, data: dict) -> CompletionResponse:
        if "error" in data:
            raise ProviderError(str(data["error"]))

        message = data.get("message") or {}
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
            content.append(ToolCall(id=name, name=name, arguments=function.get("arguments") or {}))

        if not content:
            raise ResponseError("Response contained no message or tool call (empty)")
        if message.get("thinking"):
            content.insert(0, Reasoning(message["thinking"]))

        return CompletionResponse(choice=tuple(content), usage=decode_usage(data), raw_response=data)

    # --- Streaming ---

    def decode_chunk(self, line: str) -> StreamChunk | None:
        if not line.strip():
            return None
        data = json.loads(line)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        if "error" in data:
            raise ResponseError(str(data["error"]))

        message = data.get("message") or {}
        fragments = []
        for index, tc in enumerate(message.get("tool_calls") or []):
            function = tc.get("function") or {}
            name = function.get("name") or ""
            fragments.append(
                ToolCallFragment(
                    index=index,
                    id=name,
                    name=name,
                    arguments=json.dumps(function.get("arguments") or {}),
                )
            )

        done = bool(data.get("done"))
        return StreamChunk(
            text=message.get("content"),
            reasoning=message.get("thinking"),
            tool_calls=tuple(fragments),
            usage=decode_usage(data) if done else None,
            raw={key: data.get(key) for key in _DONE_FIELDS} if done else None,
            done=done,
        )

    async def stream(self, request: CompletionRequest) -> StreamingResponse:
        payload = self.build_payload(request, stream=True)
        self.client.metrics.inc("llm.requests", labels={"provider": self.provider})

        http_request = self.client.http.build_request("POST", self.client.url("api/chat"), json=payload)
        try:
            response = await self.client.http.send(http_request, stream=True)
        except httpx.HTTPError as e:
            self.client.metrics.inc("llm.errors", labels={"provider": self.provider})
            raise ProviderError(str(e)) from e

        if response.is_error:
            body = await response.aread()
            await response.aclose()
            self.client.metrics.inc("llm.errors", labels={"provider": self.provider})
            raise ProviderError(body.decode(errors="replace"), status_code=response.status_code)

        reconstructor = StreamReconstructor(
            self.decode_chunk, provider=self.provider, metrics=self.client.metrics
        )
        return StreamingResponse(reconstructor.run(self._lines(response)))

    async def _lines(self, response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                yield line
        except httpx.HTTPError as e:
            raise ResponseError(f"Stream transport failed: {e}") from e
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()


class OllamaEmbeddingModel(EmbeddingModel):
    def __init__(self, client: OllamaClient, model: str, dimensions: int | None = None):
        self.client = client
        self.provider = client.provider
        self.model = model
        self.dimensions = dimensions or EMBEDDING_DIMENSIONS.get(model, 0)

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        try:
            response = await self.client.http.post(
                self.client.url("api/embed"), json={"model": self.model, "input": texts}
            )
        except httpx.HTTPError as e:
            raise ProviderError(str(e)) from e
        if response.is_error:
            raise ProviderError(response.text, status_code=response.status_code)

        embeddings = response.json().get("embeddings") or []
        if len(embeddings) != len(texts):
            raise ResponseError(
                f"Expected {len(texts)} embeddings, got {len(embeddings)}"
            )
        return embeddings


class OllamaClient(ProviderClient, CompletionClient, EmbeddingsClient):
    """Client for a local or remote Ollama server. No API key."""

    provider = "ollama"

    def __init__(
        self,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        # Generation can take minutes; callers layer their own timeouts
        self.http = http_client or httpx.AsyncClient(timeout=None)
        self.metrics = metrics or MetricsCollector()
        logger.info("ollama client ready (base_url=%s)", self.base_url)

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def as_completion(self) -> CompletionClient:
        return self

    def as_embeddings(self) -> EmbeddingsClient:
        return self

    def completion_model(self, model: str) -> OllamaCompletionModel:
        return OllamaCompletionModel(self, model)

    def embedding_model(self, model: str) -> OllamaEmbeddingModel:
        return OllamaEmbeddingModel(self, model)

    async def verify(self) -> None:
        try:
            response = await self.http.get(self.url("api/tags"))
        except httpx.HTTPError as e:
            raise ProviderError(str(e)) from e
        if response.is_error:
            raise ProviderError(response.text, status_code=response.status_code)

    async def aclose(self) -> None:
        await self.http.aclose()
