"""
Workflow Runner — drives a task through its jobs, one agent call per job.

The engine only does bookkeeping; this is where a job meets an agent:

    for each job:
        engine.execute_job(task, job)          # audit + tool log
        agents.execute(job.code, job.action)   # the actual LLM work

The loop checks the task state before every job, so pausing, stopping or
cancelling the task from elsewhere takes effect at the next job boundary.
A failing agent call stops the task; it can be resumed and re-run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable

from switchboard.agents.manager import AgentManager
from switchboard.errors import CompletionError, ConfigurationError
from switchboard.tasks.engine import TaskEngine
from switchboard.tasks.models import JobRecord, TaskState
from switchboard.tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOutcome:
    job: JobRecord
    summary: str
    output: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkflowRunner:
    """
    Usage:
        runner = WorkflowRunner(engine, agent_manager, store)
        outcomes = await runner.run(task_id, jobs)
    """

    def __init__(self, engine: TaskEngine, agents: AgentManager, store: TaskStore | None = None):
        self.engine = engine
        self.agents = agents
        self.store = store

    async def run(self, task_id: int, jobs: Iterable[JobRecord]) -> list[JobOutcome]:
        start = time.monotonic()
        if await self.engine.get_state(task_id) != TaskState.RUNNING:
            await self.engine.start(task_id)

        outcomes: list[JobOutcome] = []
        for job in jobs:
            state = await self.engine.get_state(task_id)
            if state != TaskState.RUNNING:
                logger.info(
                    "Task %s is %s; stopping after %d job(s)", task_id, state.value, len(outcomes),
                    extra={"task_id": task_id, "state": state.value},
                )
                return outcomes

            summary = await self.engine.execute_job(task_id, job)
            try:
                output = await self.agents.execute(job.code, job.action)
            except (CompletionError, ConfigurationError) as e:
                logger.warning(f"Job {job.id} failed on agent {job.code}: {e}")
                outcomes.append(JobOutcome(job=job, summary=summary, error=str(e)))
                await self.engine.stop(task_id)
                return outcomes
            outcomes.append(JobOutcome(job=job, summary=summary, output=output))

        await self.engine.finish(task_id)
        if self.store is not None and outcomes:
            await self.store.set_task_output(task_id, outcomes[-1].output)

        logger.info(
            "Task %s finished %d job(s)", task_id, len(outcomes),
            extra={"task_id": task_id, "duration_ms": round((time.monotonic() - start) * 1000)},
        )
        return outcomes
