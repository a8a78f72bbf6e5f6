"""
Backend interfaces — what every provider integration implements.

A ``ProviderClient`` is one configured connection to a vendor. It advertises
capabilities instead of failing on call:

    client.as_completion()  -> CompletionClient | None
    client.as_embeddings()  -> EmbeddingsClient | None
    await client.verify()   -> raises if the backend is unreachable

A ``CompletionModel`` is a client bound to one model name; it is the handle
agents hold.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from switchboard.completion.contracts import CompletionRequest, CompletionResponse
from switchboard.completion.streaming import StreamingResponse
from switchboard.errors import UnsupportedFeature


class CompletionModel(ABC):
    """A backend bound to a model name."""

    provider: str = ""
    model: str = ""

    @abstractmethod
    async def completion(self, request: CompletionRequest) -> CompletionResponse:
        """Single-shot completion. Raises CompletionError."""
        ...

    @abstractmethod
    async def stream(self, request: CompletionRequest) -> StreamingResponse:
        """Start a streamed completion.

        Request-level failures (bad status, unreachable host) raise here;
        failures after the first byte arrive as an ERROR event.
        """
        ...

    async def aclose(self) -> None:
        """Release the underlying client."""
        return None


class EmbeddingModel(ABC):
    provider: str = ""
    model: str = ""
    dimensions: int = 0

    @abstractmethod
    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """One vector per input text, in input order."""
        ...


class CompletionClient(ABC):
    @abstractmethod
    def completion_model(self, model: str) -> CompletionModel: ...


class EmbeddingsClient(ABC):
    @abstractmethod
    def embedding_model(self, model: str) -> EmbeddingModel: ...


class ProviderClient(ABC):
    """Base for every backend client."""

    provider: str = ""

    def as_completion(self) -> CompletionClient | None:
        return None

    def as_embeddings(self) -> EmbeddingsClient | None:
        return None

    async def verify(self) -> None:
        """Check credentials / reachability. Raises ProviderError on failure."""
        raise UnsupportedFeature(self.provider, "verify")

    async def aclose(self) -> None:
        """Release pooled connections."""
        return None
