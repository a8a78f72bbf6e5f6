"""
Streaming reconstruction — vendor chunks in, uniform StreamEvents out.

Backends turn each raw transport payload (an SSE ``data:`` line, an NDJSON
line) into a ``StreamChunk`` through a decoder. ``StreamReconstructor``
then does the provider-independent work:

- forwards text and reasoning deltas immediately
- rebuilds tool calls that arrive as fragments keyed by index
- keeps only the most recent usage snapshot (never sums)
- emits exactly one FINAL event, last, with the reconstructed message

Tool-call fragments are classified by what they carry:

    name, no arguments   -> start        (open a slot at the index)
    arguments, no name   -> continuation (append to the open slot)
    name and arguments   -> one-shot     (parse now, bypass the slots)

A continuation with no open slot is a protocol violation: it is logged and
dropped and the stream carries on. So is a chunk that fails to decode.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

from switchboard.completion.contracts import (
    FinalResponse,
    Message,
    Reasoning,
    Role,
    StreamEvent,
    StreamEventType,
    Text,
    ToolCall,
    Usage,
)
from switchboard.core.metrics import MetricsCollector
from switchboard.errors import CompletionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallFragment:
    """One piece of a tool call as a vendor streams it.

    ``arguments`` is a JSON string fragment, or an already-decoded object for
    vendors that send whole calls.
    """

    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments: str | dict | list | None = None


@dataclass(frozen=True)
class StreamChunk:
    """Provider-neutral view of one transport payload."""

    text: str | None = None
    reasoning: str | None = None
    tool_calls: tuple[ToolCallFragment, ...] = ()
    usage: Usage | None = None
    raw: Any = None  # Vendor record carried into FinalResponse.raw with the usage
    done: bool = False


# A decoder returns None for payloads that carry nothing (keep-alives) and
# raises ValueError / KeyError / TypeError for payloads it cannot read.
ChunkDecoder = Callable[[str], Optional[StreamChunk]]

_DECODE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


def parse_arguments(raw: str | dict | list | None) -> Any:
    """Decode tool-call arguments. Empty means no arguments."""
    # A started call that never received argument bytes closes as {} rather than being dropped.
    if raw is None or isinstance(raw, (dict, list)):
        return raw if raw is not None else {}
    if not raw.strip():
        return {}
    return json.loads(raw)


# ─── Per-index tool-call slots ────────────────────────────────


class SlotState(str, Enum):
    STARTED = "started"  # Name known, no argument bytes yet
    ACCUMULATING = "accumulating"


@dataclass
class _ToolCallSlot:
    id: str
    name: str
    state: SlotState = SlotState.STARTED
    buffer: list[str] = field(default_factory=list)

    def append(self, fragment: str) -> None:
        self.buffer.append(fragment)
        self.state = SlotState.ACCUMULATING

    def arguments(self) -> str:
        return "".join(self.buffer)

    def close(self) -> ToolCall:
        """Parse the buffered arguments. Raises ValueError when they are not JSON."""
        return ToolCall(id=self.id, name=self.name, arguments=parse_arguments(self.arguments()))


# ─── Reconstructor ────────────────────────────────────────────


class StreamReconstructor:
    """Per-stream state machine. One instance per stream; not reusable."""

    def __init__(
        self,
        decode: ChunkDecoder,
        provider: str = "",
        metrics: MetricsCollector | None = None,
    ):
        self._decode = decode
        self._provider = provider
        self._metrics = metrics

        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._tool_calls: list[ToolCall] = []
        self._slots: dict[int, _ToolCallSlot] = {}
        self._dropped: list[str] = []
        self._usage = Usage()
        self._raw: Any = None
        self._finished = False

    # --- Single chunk ---

    def decode(self, payload: str) -> StreamChunk | None:
        """Decode one payload. Malformed payloads are logged and skipped."""
        try:
            return self._decode(payload)
        except _DECODE_ERRORS as e:
            logger.warning(
                "Skipping malformed stream chunk: %s (%s)",
                payload[:100],
                e,
                extra={"provider": self._provider},
            )
            self._count("stream.chunks_skipped")
            return None

    def feed(self, chunk: StreamChunk) -> list[StreamEvent]:
        """Apply one chunk and return the events it produces, in order."""
        events: list[StreamEvent] = []

        for fragment in chunk.tool_calls:
            call = self._apply_fragment(fragment)
            if call is not None:
                self._tool_calls.append(call)
                events.append(StreamEvent.tool(call))

        if chunk.reasoning:
            self._reasoning.append(chunk.reasoning)
            events.append(StreamEvent.reasoning(chunk.reasoning))

        if chunk.text:
            self._text.append(chunk.text)
            events.append(StreamEvent.message(chunk.text))

        if chunk.usage is not None:
            self._usage = chunk.usage
            self._raw = chunk.raw

        return events

    def _apply_fragment(self, fragment: ToolCallFragment) -> ToolCall | None:
        has_name = bool(fragment.name)
        has_args = bool(fragment.arguments)

        if has_name and not has_args:
            if fragment.index in self._slots:
                logger.debug("Tool call index %d restarted", fragment.index)
            self._slots[fragment.index] = _ToolCallSlot(
                id=fragment.id or fragment.name or "",
                name=fragment.name or "",
            )
            return None

        if has_args and not has_name:
            slot = self._slots.get(fragment.index)
            if slot is None:
                logger.debug(
                    "Dropping tool call continuation with no open call at index %d",
                    fragment.index,
                )
                self._count("stream.fragments_dropped")
                return None
            if isinstance(fragment.arguments, str):
                slot.append(fragment.arguments)
            else:
                slot.append(json.dumps(fragment.arguments))
            return None

        if has_name and has_args:
            try:
                arguments = parse_arguments(fragment.arguments)
            except ValueError as e:
                logger.warning("Skipping tool call %s with unparseable arguments: %s", fragment.name, e)
                self._count("stream.tool_calls_dropped")
                return None
            return ToolCall(id=fragment.id or fragment.name or "", name=fragment.name or "", arguments=arguments)

        return None

    # --- End of stream ---

    def finish(self) -> list[StreamEvent]:
        """Close open slots and build the single FINAL event."""
        if self._finished:
            return []
        self._finished = True

        events: list[StreamEvent] = []
        for index in sorted(self._slots):
            slot = self._slots[index]
            try:
                call = slot.close()
            except ValueError:
                logger.warning(
                    "Dropping tool call %s: arguments are not valid JSON: %s",
                    slot.name,
                    slot.arguments()[:100],
                )
                self._count("stream.tool_calls_dropped")
                self._dropped.append(slot.name)
                continue
            self._tool_calls.append(call)
            events.append(StreamEvent.tool(call))
        self._slots.clear()

        events.append(StreamEvent.finished(self.final_response()))
        return events

    def final_response(self) -> FinalResponse:
        content: list[Any] = []
        if self._reasoning:
            content.append(Reasoning("".join(self._reasoning)))
        text = "".join(self._text)
        if text.strip():
            content.append(Text(text))
        content.extend(self._tool_calls)
        return FinalResponse(
            message=Message(role=Role.ASSISTANT, content=tuple(content)),
            usage=self._usage,
            raw=self._raw,
            dropped_tool_calls=tuple(self._dropped),
        )

    # --- Driver ---

    async def run(self, payloads: AsyncIterator[str]) -> AsyncIterator[StreamEvent]:
        """Pull payloads, yield events as they form. FINAL always comes last.

        A CompletionError raised by the transport ends the loop with an ERROR
        event; the FINAL event still follows with whatever was reconstructed.
        """
        try:
            async for payload in payloads:
                chunk = self.decode(payload)
                if chunk is None:
                    continue
                for event in self.feed(chunk):
                    yield event
                if chunk.done:
                    break
        except CompletionError as e:
            logger.error("Stream interrupted: %s", e, extra={"provider": self._provider})
            self._count("llm.errors", labels={"provider": self._provider})
            yield StreamEvent.failure(e)
        finally:
            aclose = getattr(payloads, "aclose", None)
            if aclose is not None:
                await aclose()

        for event in self.finish():
            yield event

    def _count(self, name: str, labels: dict | None = None) -> None:
        if self._metrics is not None:
            self._metrics.inc(name, labels=labels)


class StreamingResponse:
    """Async iterator over a stream's events.

    After iteration ``final`` holds the FinalResponse and ``choice`` the
    reconstructed assistant content.

    Usage:
        stream = await model.stream(request)
        async for event in stream:
            if event.type == StreamEventType.MESSAGE:
                print(event.text, end="")
        stream.final.usage
    """

    def __init__(self, events: AsyncIterator[StreamEvent]):
        self._events = events
        self.final: FinalResponse | None = None

    def __aiter__(self) -> StreamingResponse:
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self._events.__anext__()
        if event.type == StreamEventType.FINAL:
            self.final = event.final
        return event

    async def __aenter__(self) -> StreamingResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    @property
    def choice(self) -> tuple:
        return self.final.message.content if self.final else ()

    async def collect(self) -> FinalResponse:
        """Drain the stream and return its FinalResponse."""
        async for _ in self:
            pass
        assert self.final is not None, "stream ended without a final response"
        return self.final

    async def aclose(self) -> None:
        aclose = getattr(self._events, "aclose", None)
        if aclose is not None:
            await aclose()
