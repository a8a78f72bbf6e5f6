"""
Switchboard errors — one hierarchy for every failure the gateway reports.

Callers are expected to render these distinctly, so each class carries the
fields needed to say what went wrong (provider, capability, task id, ...)
rather than a generic failure string.

Third-party exceptions (openai, httpx, aiosqlite, mcp) are translated into
these at the boundary with ``raise ... from e``.
"""

from __future__ import annotations


class SwitchboardError(Exception):
    """Base exception for all switchboard errors."""


# ─── Configuration & registry ─────────────────────────────────


class ConfigurationError(SwitchboardError):
    """Raised when agent or provider configuration is invalid."""


class UnknownProvider(SwitchboardError):
    """Raised when a provider id has no registered factory."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unknown provider: {provider}")


class UnsupportedFeature(SwitchboardError):
    """Raised when a backend client lacks a capability (completion, embeddings, ...)."""

    def __init__(self, provider: str, capability: str):
        self.provider = provider
        self.capability = capability
        super().__init__(f"Provider {provider} does not support {capability}")


class FactoryError(SwitchboardError):
    """Raised when a backend factory fails while building a client.

    The registry converts any exception escaping a factory into this, so a
    single broken integration cannot take the registry down.
    """

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Failed to build client for provider {provider}: {reason}")


# ─── External tool channel ────────────────────────────────────


class ChildProcessSpawnError(SwitchboardError):
    """Raised when the tool server child process cannot be started."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to spawn tool server '{command}': {reason}")


class ChildProcessHandshakeError(SwitchboardError):
    """Raised when the tool server started but the capability handshake failed."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Tool server '{command}' failed to initialize: {reason}")


# ─── Completion ───────────────────────────────────────────────


class CompletionError(SwitchboardError):
    """Base exception for failures while producing a completion."""


class ProviderError(CompletionError):
    """The backend rejected the request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        status_info = f" (status {status_code})" if status_code else ""
        super().__init__(f"Provider error{status_info}: {message}")


class ResponseError(CompletionError):
    """The backend answered with something that cannot be decoded."""

    def __init__(self, message: str):
        super().__init__(f"Response error: {message}")


class MCPError(CompletionError):
    """A call through the external tool channel failed."""

    def __init__(self, message: str):
        super().__init__(f"Tool channel error: {message}")


class PromptError(CompletionError):
    """The agent's tool loop did not converge within its turn budget."""

    def __init__(self, max_turns: int):
        self.max_turns = max_turns
        super().__init__(f"Agent still requested tools after {max_turns} turns")


# ─── Task lifecycle ───────────────────────────────────────────


class TaskError(SwitchboardError):
    """Base exception for task-lifecycle errors."""

    def __init__(self, message: str, task_id: int | None = None):
        self.task_id = task_id
        super().__init__(message)


class TaskNotFound(TaskError):
    def __init__(self, task_id: int):
        super().__init__(f"Task not found: {task_id}", task_id=task_id)


class IllegalTransition(TaskError):
    """Raised when the state table forbids a transition. State is left unchanged."""

    def __init__(self, task_id: int, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Cannot transition task {task_id} from {from_state} to {to_state}",
            task_id=task_id,
        )


class TaskStillActive(TaskError):
    """Raised when evicting a task that has not reached a terminal state."""

    def __init__(self, task_id: int, state: str):
        self.state = state
        super().__init__(
            f"Task {task_id} is still {state}; only finished or cancelled tasks can be removed",
            task_id=task_id,
        )


class PersistenceError(TaskError):
    """The store write failed. The in-memory change has already been applied."""

    def __init__(self, task_id: int | None, reason: str):
        self.reason = reason
        super().__init__(f"Failed to persist task {task_id}: {reason}", task_id=task_id)
