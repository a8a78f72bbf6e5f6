"""
Completion package — the provider-agnostic request/response model.

- contracts: messages, tool definitions, requests, responses, stream events
- streaming: StreamReconstructor (vendor chunks -> StreamEvents) and StreamingResponse
"""

from switchboard.completion.contracts import (
    CompletionRequest,
    CompletionResponse,
    Document,
    FinalResponse,
    Message,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolChoice,
    ToolDefinition,
    Usage,
)
from switchboard.completion.streaming import StreamingResponse, StreamReconstructor

__all__ = [
    "CompletionRequest",
    "CompletionResponse",
    "Document",
    "FinalResponse",
    "Message",
    "StreamEvent",
    "StreamEventType",
    "StreamingResponse",
    "StreamReconstructor",
    "ToolCall",
    "ToolChoice",
    "ToolDefinition",
    "Usage",
]
