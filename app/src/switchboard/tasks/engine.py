"""
Task Engine — the lifecycle state machine for orchestrated work.

Each task is a ``TaskContext`` moving between six states:

    waiting ──start──▶ running ──pause──▶ pending ──resume──▶ running
       any ──stop──▶ stopped ──resume──▶ running
       any ──cancel/finish──▶ cancelled / finished   (never straight from stopped)

Every successful transition appends one line to the task's execution
history, then writes the new state to the store if one is attached.

Locking: one asyncio.Lock guards the whole task map. It is held only while
the in-memory context changes and is released before any store I/O. If
the store write then fails, the in-memory transition stands and the caller
gets a PersistenceError.

Cancellation here is bookkeeping. It does not interrupt an LLM call that
is already in flight; callers must also cancel their own awaitables.
"""

from __future__ import annotations

import asyncio
import logging

import aiosqlite

from switchboard.core.metrics import MetricsCollector
from switchboard.errors import IllegalTransition, PersistenceError, TaskNotFound, TaskStillActive
from switchboard.tasks.models import (
    TERMINAL_STATES,
    JobRecord,
    TaskContext,
    TaskRecord,
    TaskState,
    ToolLogRecord,
    WorkflowRecord,
    can_transition,
)
from switchboard.tasks.store import TaskStore

logger = logging.getLogger(__name__)

# aiosqlite raises ValueError once its connection has been closed.
STORE_ERRORS = (aiosqlite.Error, ValueError)


class TaskEngine:
    """Registry of task contexts plus the transitions between their states.

    Usage:
        engine = TaskEngine(store)
        await engine.init(1, "hello")
        await engine.start(1)
        await engine.execute_job(1, job)
        await engine.finish(1)
        await engine.get_execution_history(1)
    """

    def __init__(self, store: TaskStore | None = None, metrics: MetricsCollector | None = None):
        self.store = store
        self.metrics = metrics or MetricsCollector()
        self._tasks: dict[int, TaskContext] = {}
        self._lock = asyncio.Lock()

    async def init(self, task_id: int, input: str, workflow: WorkflowRecord | None = None) -> TaskContext:
        """Register a task in the waiting state. Replaces any context with the same id."""
        async with self._lock:
            if task_id in self._tasks:
                logger.warning("Replacing existing context for task %s", task_id, extra={"task_id": task_id})
            context = TaskContext(
                task=TaskRecord(id=task_id, input=input, workflow_id=workflow.id if workflow else None),
                workflow=workflow,
            )
            self._tasks[task_id] = context
            return context.snapshot()

    # ─── Transitions ──────────────────────────────────────────────

    async def start(self, task_id: int) -> TaskState:
        return await self._transition(task_id, TaskState.RUNNING, "Task started")

    async def pause(self, task_id: int) -> TaskState:
        return await self._transition(task_id, TaskState.PENDING, "Task paused")

    async def resume(self, task_id: int) -> TaskState:
        return await self._transition(task_id, TaskState.RUNNING, "Task resumed")

    async def cancel(self, task_id: int) -> TaskState:
        return await self._transition(task_id, TaskState.CANCELLED, "Task cancelled")

    async def finish(self, task_id: int) -> TaskState:
        return await self._transition(task_id, TaskState.FINISHED, "Task finished")

    async def stop(self, task_id: int) -> TaskState:
        return await self._transition(task_id, TaskState.STOPPED, "Task stopped")

    async def _transition(self, task_id: int, target: TaskState, entry: str) -> TaskState:
        async with self._lock:
            context = self._get(task_id)
            current = context.state
            if not can_transition(current, target):
                raise IllegalTransition(task_id, current.label, target.label)
            context.state = target
            context.task = context.task.with_state(target)
            context.execution_history.append(entry)

        logger.info(
            "Task %s: %s -> %s", task_id, current.value, target.value,
            extra={"task_id": task_id, "state": target.value},
        )
        self.metrics.inc("tasks.transitions", labels={"to": target.value})
        await self._persist_state(task_id, target)
        return target

    async def _persist_state(self, task_id: int, state: TaskState) -> None:
        if self.store is None:
            return
        try:
            await self.store.update_task_state(task_id, state)
        except STORE_ERRORS as e:
            self.metrics.inc("tasks.persist_failures")
            logger.error(
                "Failed to persist state %s for task %s: %s", state.value, task_id, e,
                extra={"task_id": task_id, "state": state.value},
            )
            raise PersistenceError(task_id, str(e)) from e

    # ─── Jobs ─────────────────────────────────────────────────────

    async def execute_job(self, task_id: int, job: JobRecord) -> str:
        """Record a job run against the task and return its result line.

        The job is not sent to any agent here; ``WorkflowRunner`` does that.
        """
        async with self._lock:
            context = self._get(task_id)
            context.execution_history.append(f"Executing job: {job.code}")
            result = f"Job {job.id} executed with action {job.action}"
            log = ToolLogRecord(task_id=task_id, plan_id=context.task.plan_id, output=result)
            context.execution_history.append(f"Tool log recorded for job {job.id}")

        if self.store is not None:
            try:
                await self.store.record_tool_log(log)
            except STORE_ERRORS as e:
                self.metrics.inc("tasks.persist_failures")
                logger.error("Failed to record tool log for task %s: %s", task_id, e)
                raise PersistenceError(task_id, str(e)) from e
        return result

    # ─── Queries ──────────────────────────────────────────────────

    async def get_state(self, task_id: int) -> TaskState:
        async with self._lock:
            return self._get(task_id).state

    async def get_context(self, task_id: int) -> TaskContext:
        async with self._lock:
            return self._get(task_id).snapshot()

    async def get_execution_history(self, task_id: int) -> list[str]:
        async with self._lock:
            return list(self._get(task_id).execution_history)

    async def list_tasks(self) -> list[int]:
        async with self._lock:
            return sorted(self._tasks)

    async def remove_task(self, task_id: int) -> TaskContext:
        """Evict a finished or cancelled task and return its final context."""
        async with self._lock:
            context = self._get(task_id)
            if context.state not in TERMINAL_STATES:
                raise TaskStillActive(task_id, context.state.value)
            del self._tasks[task_id]
        logger.debug("Removed task %s", task_id)
        return context

    def _get(self, task_id: int) -> TaskContext:
        context = self._tasks.get(task_id)
        if context is None:
            raise TaskNotFound(task_id)
        return context
