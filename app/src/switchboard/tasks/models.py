"""
Task models — lifecycle states, the in-memory context, persisted records.

Records mirror the store's tables and are immutable; the engine swaps in a
new record (``with_state``) rather than mutating one.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum


class TaskState(str, Enum):
    WAITING = "waiting"  # Entry state
    PENDING = "pending"  # Paused
    RUNNING = "running"
    STOPPED = "stopped"
    CANCELLED = "cancelled"
    FINISHED = "finished"

    @property
    def label(self) -> str:
        return self.value.capitalize()


TERMINAL_STATES = frozenset({TaskState.FINISHED, TaskState.CANCELLED})

# Everything else is allowed, including leaving a terminal state.
# A stopped task has to be resumed before it can finish or be cancelled.
FORBIDDEN_TRANSITIONS = frozenset(
    {
        (TaskState.STOPPED, TaskState.FINISHED),
        (TaskState.STOPPED, TaskState.CANCELLED),
    }
)


def can_transition(current: TaskState, target: TaskState) -> bool:
    return (current, target) not in FORBIDDEN_TRANSITIONS


# ─── Persisted records ────────────────────────────────────────


@dataclass(frozen=True)
class TaskRecord:
    id: int
    input: str
    output: str | None = None
    state: str = TaskState.WAITING.value
    workflow_id: str | None = None
    plan_id: int | None = None

    def with_state(self, state: TaskState) -> TaskRecord:
        return replace(self, state=state.value)


@dataclass(frozen=True)
class JobRecord:
    id: int
    work_id: str
    workflow_id: str
    code: str
    action: str
    parent_id: int | None = None
    description: str | None = None
    check: str | None = None
    type: str | None = None


@dataclass(frozen=True)
class PlanRecord:
    id: int
    parent_id: int | None = None
    state: str | None = None
    plan_id: int | None = None


@dataclass(frozen=True)
class WorkflowRecord:
    id: str
    code: str
    name: str
    description: str = ""
    plan: str = ""


@dataclass(frozen=True)
class ToolLogRecord:
    task_id: int
    output: str
    id: int | None = None  # Assigned by the store
    plan_id: int | None = None
    args: str | None = None


# ─── In-memory context ────────────────────────────────────────


@dataclass
class TaskContext:
    """Live state of one task. Only the TaskEngine mutates it, under its lock."""

    task: TaskRecord
    state: TaskState = TaskState.WAITING
    workflow: WorkflowRecord | None = None
    execution_history: list[str] = field(default_factory=list)

    def snapshot(self) -> TaskContext:
        return replace(self, execution_history=list(self.execution_history))
