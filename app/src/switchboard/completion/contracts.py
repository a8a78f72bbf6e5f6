"""
Completion Contracts — the provider-agnostic request/response model.

Every backend encodes ``CompletionRequest`` into its own wire format and
decodes its answers back into ``CompletionResponse`` / ``StreamEvent``.
Nothing above the backends ever sees vendor JSON.

    request = CompletionRequest(
        preamble="You are terse.",
        chat_history=[Message.user("What is 2+2?")],
        tools=[ToolDefinition(name="add", description="Add", parameters={...})],
    )
    response = await model.completion(request)
    response.text()        # "4"
    response.tool_calls()  # []
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


# ═══════════════════════════════════════════════════════════════════════════════
# MESSAGE CONTENT
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class Reasoning:
    reasoning: str


@dataclass(frozen=True)
class Image:
    data: str  # base64 or URL
    media_type: str = "image/png"


@dataclass(frozen=True)
class DocumentContent:
    """A rendered context document inside a user message."""

    data: str


@dataclass(frozen=True)
class ToolCall:
    """A function invocation requested by the model.

    ``arguments`` is the decoded JSON value. ``call_id`` is set by vendors
    that distinguish the call id from the tool-use id.
    """

    id: str
    name: str
    arguments: Any = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True)
class ToolResult:
    """Output of a tool call, sent back to the model in a user message."""

    id: str
    content: tuple[Union[Text, Image], ...] = ()
    call_id: str | None = None

    def render(self) -> str:
        """Flatten to the text most vendors accept for tool output."""
        return "\n".join(
            part.text if isinstance(part, Text) else "[Image]" for part in self.content
        )


UserContent = Union[Text, DocumentContent, ToolResult, Image]
AssistantContent = Union[Text, Reasoning, ToolCall]

_USER_TYPES = (Text, DocumentContent, ToolResult, Image)
_ASSISTANT_TYPES = (Text, Reasoning, ToolCall)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One conversation turn. System text is never a Message; it is the preamble."""

    role: Role
    content: tuple[Any, ...]

    def __post_init__(self) -> None:
        allowed = _USER_TYPES if self.role == Role.USER else _ASSISTANT_TYPES
        for part in self.content:
            if not isinstance(part, allowed):
                raise ValueError(
                    f"{type(part).__name__} is not valid content for a {self.role.value} message"
                )

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=Role.USER, content=(Text(text),))

    @classmethod
    def assistant(cls, *content: AssistantContent | str) -> Message:
        parts = tuple(Text(c) if isinstance(c, str) else c for c in content)
        return cls(role=Role.ASSISTANT, content=parts)

    @classmethod
    def tool_result(cls, id: str, output: str, call_id: str | None = None) -> Message:
        result = ToolResult(id=id, content=(Text(output),), call_id=call_id)
        return cls(role=Role.USER, content=(result,))

    def text(self) -> str:
        return "".join(part.text for part in self.content if isinstance(part, Text))


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolChoiceMode(str, Enum):
    AUTO = "auto"
    NONE = "none"
    REQUIRED = "required"
    SPECIFIC = "specific"


@dataclass(frozen=True)
class ToolChoice:
    mode: ToolChoiceMode = ToolChoiceMode.AUTO
    function_names: tuple[str, ...] = ()

    @classmethod
    def auto(cls) -> ToolChoice:
        return cls()

    @classmethod
    def none(cls) -> ToolChoice:
        return cls(mode=ToolChoiceMode.NONE)

    @classmethod
    def required(cls) -> ToolChoice:
        return cls(mode=ToolChoiceMode.REQUIRED)

    @classmethod
    def specific(cls, *names: str) -> ToolChoice:
        return cls(mode=ToolChoiceMode.SPECIFIC, function_names=tuple(names))


@dataclass(frozen=True)
class Document:
    """A piece of context handed to the model ahead of the conversation."""

    id: str
    text: str
    additional_props: dict[str, str] = field(default_factory=dict)

    def render(self) -> str:
        metadata = "".join(f"{k}: {v}\n" for k, v in sorted(self.additional_props.items()))
        return f"<file id: {self.id}>\n{metadata}{self.text}\n</file>\n"


@dataclass(frozen=True)
class CompletionRequest:
    """Provider-agnostic completion input."""

    chat_history: tuple[Message, ...] = ()
    preamble: str | None = None
    tools: tuple[ToolDefinition, ...] = ()
    documents: tuple[Document, ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None
    additional_params: dict[str, Any] | None = None
    tool_choice: ToolChoice | None = None

    def normalized_documents(self) -> Message | None:
        """All documents as a single user message, or None when there are none."""
        if not self.documents:
            return None
        return Message(
            role=Role.USER,
            content=tuple(DocumentContent(doc.render()) for doc in self.documents),
        )

    def conversation(self) -> list[Message]:
        """Documents first, then history. Backends prepend the preamble themselves."""
        messages: list[Message] = []
        docs = self.normalized_documents()
        if docs is not None:
            messages.append(docs)
        messages.extend(self.chat_history)
        return messages


# ═══════════════════════════════════════════════════════════════════════════════
# RESPONSE
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class CompletionResponse:
    """Decoded non-streaming answer. ``choice`` is never empty."""

    choice: tuple[AssistantContent, ...]
    usage: Usage = field(default_factory=Usage)
    raw_response: Any = None

    def text(self) -> str:
        return "".join(part.text for part in self.choice if isinstance(part, Text))

    def tool_calls(self) -> list[ToolCall]:
        return [part for part in self.choice if isinstance(part, ToolCall)]

    def message(self) -> Message:
        return Message(role=Role.ASSISTANT, content=self.choice)


# ═══════════════════════════════════════════════════════════════════════════════
# STREAMING EVENTS
# ═══════════════════════════════════════════════════════════════════════════════


class StreamEventType(str, Enum):
    MESSAGE = "message"  # Partial text
    REASONING = "reasoning"  # Partial reasoning trace
    TOOL_CALL = "tool_call"  # A fully reconstructed tool call
    FINAL = "final"  # Always last, exactly once
    ERROR = "error"  # Transport failure, followed by FINAL


@dataclass(frozen=True)
class FinalResponse:
    """Summary emitted at the end of every stream.

    ``dropped_tool_calls`` names buffered calls whose arguments never parsed,
    so callers can tell a partial result from a complete one.
    """

    message: Message
    usage: Usage = field(default_factory=Usage)
    raw: Any = None
    dropped_tool_calls: tuple[str, ...] = ()


@dataclass(frozen=True)
class StreamEvent:
    type: StreamEventType
    text: str = ""
    tool_call: ToolCall | None = None
    final: FinalResponse | None = None
    error: Exception | None = None

    @classmethod
    def message(cls, text: str) -> StreamEvent:
        return cls(type=StreamEventType.MESSAGE, text=text)

    @classmethod
    def reasoning(cls, text: str) -> StreamEvent:
        return cls(type=StreamEventType.REASONING, text=text)

    @classmethod
    def tool(cls, call: ToolCall) -> StreamEvent:
        return cls(type=StreamEventType.TOOL_CALL, tool_call=call)

    @classmethod
    def finished(cls, final: FinalResponse) -> StreamEvent:
        return cls(type=StreamEventType.FINAL, final=final)

    @classmethod
    def failure(cls, error: Exception) -> StreamEvent:
        return cls(type=StreamEventType.ERROR, error=error, text=str(error))
