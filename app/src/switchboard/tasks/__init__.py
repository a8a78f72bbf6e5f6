"""
Tasks package — lifecycle state machine for orchestrated work.

- TaskEngine: task contexts and their transitions, under one lock
- TaskStore: SQLite records for tasks, workflows, jobs, plans, tool logs
- WorkflowRunner: walks a task's jobs through agents
"""

from switchboard.tasks.engine import TaskEngine
from switchboard.tasks.models import JobRecord, TaskContext, TaskState, WorkflowRecord
from switchboard.tasks.runner import JobOutcome, WorkflowRunner
from switchboard.tasks.store import TaskStore

__all__ = [
    "JobOutcome",
    "JobRecord",
    "TaskContext",
    "TaskEngine",
    "TaskState",
    "TaskStore",
    "WorkflowRecord",
    "WorkflowRunner",
]
