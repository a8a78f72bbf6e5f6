"""
Task Store — SQLite-backed records for tasks, workflows, jobs and plans.

The TaskEngine only needs ``get_task`` + ``update_task_state`` (find by id,
then update one column) and ``record_tool_log``. The rest serves callers
that define workflows and read results back.

Usage:
    store = TaskStore(db_path=Path("switchboard.db"))
    await store.start()

    task = await store.create_task("summarize the report")
    await store.update_task_state(task.id, TaskState.RUNNING)
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

import switchboard.core.config as config_module
from switchboard.tasks.models import (
    JobRecord,
    PlanRecord,
    TaskRecord,
    TaskState,
    ToolLogRecord,
    WorkflowRecord,
)

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY,
        input TEXT NOT NULL,
        output TEXT,
        state TEXT NOT NULL DEFAULT 'waiting',
        workflow_id TEXT,
        plan_id INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflows (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        plan TEXT NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        work_id TEXT NOT NULL UNIQUE,
        workflow_id TEXT NOT NULL,
        parent_id INTEGER,
        code TEXT NOT NULL,
        action TEXT NOT NULL,
        description TEXT,
        check_expr TEXT,
        type TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS plans (
        id INTEGER PRIMARY KEY,
        parent_id INTEGER,
        state TEXT,
        plan_id INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tool_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id INTEGER NOT NULL,
        plan_id INTEGER,
        args TEXT,
        output TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_workflow ON jobs(workflow_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_tool_logs_task ON tool_logs(task_id, id)",
)


class TaskStore:
    """SQLite persistence for the task lifecycle. Single connection, via aiosqlite."""

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = Path(config_module.config.store.db_path)
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        for statement in _SCHEMA:
            await self._db.execute(statement)
        await self._db.commit()
        logger.info("TaskStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "TaskStore not started"
        return self._db

    # ─── Tasks ────────────────────────────────────────────────────

    async def create_task(
        self,
        input: str,
        task_id: int | None = None,
        workflow_id: str | None = None,
        plan_id: int | None = None,
    ) -> TaskRecord:
        cursor = await self.db.execute(
            "INSERT INTO tasks (id, input, state, workflow_id, plan_id) VALUES (?, ?, ?, ?, ?)",
            (task_id, input, TaskState.WAITING.value, workflow_id, plan_id),
        )
        await self.db.commit()
        return TaskRecord(
            id=cursor.lastrowid if task_id is None else task_id,
            input=input,
            workflow_id=workflow_id,
            plan_id=plan_id,
        )

    async def get_task(self, task_id: int) -> TaskRecord | None:
        async with self.db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return TaskRecord(
            id=row["id"],
            input=row["input"],
            output=row["output"],
            state=row["state"],
            workflow_id=row["workflow_id"],
            plan_id=row["plan_id"],
        )

    async def update_task_state(self, task_id: int, state: TaskState) -> bool:
        """Set the state column of an existing task. False when the row is missing."""
        if await self.get_task(task_id) is None:
            logger.debug("No stored task %s to update", task_id)
            return False
        await self.db.execute("UPDATE tasks SET state = ? WHERE id = ?", (state.value, task_id))
        await self.db.commit()
        return True

    async def set_task_output(self, task_id: int, output: str) -> None:
        await self.db.execute("UPDATE tasks SET output = ? WHERE id = ?", (output, task_id))
        await self.db.commit()

    # ─── Workflows & jobs ─────────────────────────────────────────

    async def create_workflow(self, workflow: WorkflowRecord) -> WorkflowRecord:
        await self.db.execute(
            "INSERT INTO workflows (id, code, name, description, plan) VALUES (?, ?, ?, ?, ?)",
            (workflow.id, workflow.code, workflow.name, workflow.description, workflow.plan),
        )
        await self.db.commit()
        return workflow

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        async with self.db.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return WorkflowRecord(
            id=row["id"],
            code=row["code"],
            name=row["name"],
            description=row["description"],
            plan=row["plan"],
        )

    async def create_job(
        self,
        workflow_id: str,
        work_id: str,
        code: str,
        action: str,
        parent_id: int | None = None,
        description: str | None = None,
        check: str | None = None,
        type: str | None = None,
    ) -> JobRecord:
        cursor = await self.db.execute(
            """INSERT INTO jobs
               (work_id, workflow_id, parent_id, code, action, description, check_expr, type)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (work_id, workflow_id, parent_id, code, action, description, check, type),
        )
        await self.db.commit()
        return JobRecord(
            id=cursor.lastrowid,
            work_id=work_id,
            workflow_id=workflow_id,
            code=code,
            action=action,
            parent_id=parent_id,
            description=description,
            check=check,
            type=type,
        )

    async def list_jobs(self, workflow_id: str) -> list[JobRecord]:
        async with self.db.execute(
            "SELECT * FROM jobs WHERE workflow_id = ? ORDER BY id", (workflow_id,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            JobRecord(
                id=row["id"],
                work_id=row["work_id"],
                workflow_id=row["workflow_id"],
                code=row["code"],
                action=row["action"],
                parent_id=row["parent_id"],
                description=row["description"],
                check=row["check_expr"],
                type=row["type"],
            )
            for row in rows
        ]

    # ─── Plans ────────────────────────────────────────────────────

    async def create_plan(self, plan: PlanRecord) -> PlanRecord:
        await self.db.execute(
            "INSERT INTO plans (id, parent_id, state, plan_id) VALUES (?, ?, ?, ?)",
            (plan.id, plan.parent_id, plan.state, plan.plan_id),
        )
        await self.db.commit()
        return plan

    async def get_plan(self, plan_id: int) -> PlanRecord | None:
        async with self.db.execute("SELECT * FROM plans WHERE id = ?", (plan_id,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return PlanRecord(id=row["id"], parent_id=row["parent_id"], state=row["state"], plan_id=row["plan_id"])

    # ─── Tool logs ────────────────────────────────────────────────

    async def record_tool_log(self, log: ToolLogRecord) -> ToolLogRecord:
        cursor = await self.db.execute(
            "INSERT INTO tool_logs (task_id, plan_id, args, output) VALUES (?, ?, ?, ?)",
            (log.task_id, log.plan_id, log.args, log.output),
        )
        await self.db.commit()
        return ToolLogRecord(
            id=cursor.lastrowid,
            task_id=log.task_id,
            plan_id=log.plan_id,
            args=log.args,
            output=log.output,
        )

    async def list_tool_logs(self, task_id: int) -> list[ToolLogRecord]:
        async with self.db.execute(
            "SELECT * FROM tool_logs WHERE task_id = ? ORDER BY id", (task_id,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            ToolLogRecord(
                id=row["id"],
                task_id=row["task_id"],
                plan_id=row["plan_id"],
                args=row["args"],
                output=row["output"],
            )
            for row in rows
        ]
