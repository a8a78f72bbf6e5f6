"""
Switchboard Providers — backend clients behind one capability interface.

Concrete backends (OpenAI-compatible, DeepSeek, Ollama) live alongside and
are built through ``switchboard.providers.registry.ProviderRegistry``.
"""

from switchboard.providers.base import (
    CompletionClient,
    CompletionModel,
    EmbeddingModel,
    EmbeddingsClient,
    ProviderClient,
)

__all__ = [
    "CompletionClient",
    "CompletionModel",
    "EmbeddingModel",
    "EmbeddingsClient",
    "ProviderClient",
]
