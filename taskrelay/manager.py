"""Task lifecycle engine.

Owns the task store, drives the state machine and runs the registered
handler for each task in a background asyncio task::

    submitted -> working -> completed | failed
    submitted | working -> canceled

Completed and failed tasks refuse cancellation. Tasks are only removed by
:meth:`TaskManager.cleanup`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Literal

from .handlers import TaskHandler
from .models import (
    NON_CANCELABLE_STATES,
    Artifact,
    HandlerResult,
    Message,
    Task,
    TaskEvent,
    TaskEventType,
    TaskListResult,
    TaskSendParams,
    TaskState,
    TaskStatus,
)
from .store import DEFAULT_PAGE_SIZE, InMemoryTaskStore, StoredTask

logger = logging.getLogger("taskrelay.manager")

DEFAULT_MAX_AGE_S = 24 * 60 * 60.0
NO_HISTORY_DETAIL = "No message found in task history"
UNKNOWN_ERROR_DETAIL = "Unknown error"

CancelFailureReason = Literal["not_found", "terminal_state"]


@dataclass(slots=True)
class CancelResult:
    success: bool
    reason: CancelFailureReason | None = None
    state: TaskState | None = None


def _coerce_result(value: HandlerResult | Mapping[str, object]) -> HandlerResult:
    if isinstance(value, HandlerResult):
        return value
    return HandlerResult.model_validate(value)


class TaskManager:
    def __init__(
        self,
        *,
        store: InMemoryTaskStore | None = None,
        handler: TaskHandler | None = None,
    ) -> None:
        self._store = store or InMemoryTaskStore()
        self._handler = handler
        self._running: set[asyncio.Task[None]] = set()
        self._sweeper: asyncio.Task[None] | None = None

    def set_handler(self, handler: TaskHandler | None) -> None:
        self._handler = handler

    async def create_task(self, params: TaskSendParams) -> Task:
        task = Task(
            id=params.id,
            session_id=params.session_id or str(uuid.uuid4()),
            status=TaskStatus(state=TaskState.SUBMITTED),
            history=[params.message.model_copy(deep=True)],
        )
        stored = self._store.put(task)
        logger.info("task_created", extra={"task_id": task.id, "session_id": task.session_id})
        snapshot = task.model_copy(deep=True)
        runner = asyncio.create_task(self._run(stored), name=f"taskrelay-task-{task.id}")
        self._running.add(runner)
        runner.add_done_callback(self._running.discard)
        return snapshot

    def get_task(self, task_id: str) -> Task | None:
        return self._store.get_task(task_id)

    def get_all_tasks(self) -> list[Task]:
        return self._store.all_tasks()

    def list_tasks(
        self,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
        state: TaskState | str | None = None,
    ) -> TaskListResult:
        return self._store.list_tasks(limit=limit, cursor=cursor, state=state)

    def cancel_task(self, task_id: str) -> CancelResult:
        stored = self._store.get(task_id)
        if stored is None:
            return CancelResult(success=False, reason="not_found")
        current = TaskState(stored.task.status.state)
        if current in NON_CANCELABLE_STATES:
            return CancelResult(success=False, reason="terminal_state", state=current)
        self._set_status(stored, TaskStatus(state=TaskState.CANCELED))
        logger.info("task_canceled", extra={"task_id": task_id, "previous_state": current.value})
        self._emit(TaskEventType.STATUS, stored)
        return CancelResult(success=True, state=TaskState.CANCELED)

    def cleanup(self, max_age_s: float = DEFAULT_MAX_AGE_S) -> int:
        removed = self._store.remove_older_than(max_age_s)
        if removed:
            logger.info("tasks_cleaned", extra={"count": len(removed), "max_age_s": max_age_s})
        return len(removed)

    def subscribe(self, task_id: str) -> tuple[asyncio.Queue[TaskEvent], Callable[[], None]]:
        return self._store.subscribe(task_id)

    def start_cleanup(self, *, interval_s: float, max_age_s: float = DEFAULT_MAX_AGE_S) -> None:
        if interval_s <= 0:
            return
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(
            self._sweep(interval_s, max_age_s),
            name="taskrelay-cleanup",
        )

    async def drain(self) -> None:
        """Wait until every scheduled execution has finished."""

        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def stop(self) -> None:
        sweeper = self._sweeper
        self._sweeper = None
        pending = [*self._running, *([sweeper] if sweeper is not None else [])]
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _sweep(self, interval_s: float, max_age_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.cleanup(max_age_s)

    async def _run(self, stored: StoredTask) -> None:
        try:
            await self._execute(stored)
        except Exception as exc:
            logger.exception("task_execution_crashed", extra={"task_id": stored.task.id})
            if self._store.is_current(stored):
                self._fail(stored, str(exc) or UNKNOWN_ERROR_DETAIL)

    async def _execute(self, stored: StoredTask) -> None:
        task_id = stored.task.id
        # Read at start so a replaced handler applies to executions not yet begun.
        handler = self._handler
        if handler is None:
            logger.debug("task_execution_skipped", extra={"task_id": task_id, "reason": "no_handler"})
            return
        if not self._store.is_current(stored) or stored.task.status.state != TaskState.SUBMITTED:
            logger.debug("task_execution_skipped", extra={"task_id": task_id, "reason": "not_submitted"})
            return

        self._set_status(stored, TaskStatus(state=TaskState.WORKING))
        self._emit(TaskEventType.STATUS, stored)

        try:
            if not stored.task.history:
                raise RuntimeError(NO_HISTORY_DETAIL)
            message = stored.task.history[-1].model_copy(deep=True)
            result = _coerce_result(await handler(message))
        except Exception as exc:
            if not self._store.is_current(stored):
                logger.warning("task_results_discarded", extra={"task_id": task_id, "outcome": "failed"})
                return
            detail = str(exc) or UNKNOWN_ERROR_DETAIL
            logger.warning("task_failed", extra={"task_id": task_id, "error": detail})
            self._fail(stored, detail)
            return

        if not self._store.is_current(stored):
            logger.warning("task_results_discarded", extra={"task_id": task_id, "outcome": "completed"})
            return
        self._complete(stored, result)

    def _complete(self, stored: StoredTask, result: HandlerResult) -> None:
        # A cancel issued while the handler ran is overwritten here (last write wins).
        response = result.response.model_copy(deep=True)
        artifacts: list[Artifact] = [artifact.model_copy(deep=True) for artifact in result.artifacts or []]
        updates: dict[str, object] = {
            "history": [*stored.task.history, response],
            "status": TaskStatus(state=TaskState.COMPLETED),
        }
        if result.artifacts is not None:
            updates["artifacts"] = artifacts
        stored.task = stored.task.model_copy(update=updates)
        logger.info(
            "task_completed",
            extra={"task_id": stored.task.id, "artifact_count": len(artifacts)},
        )
        self._emit(TaskEventType.MESSAGE, stored, message=response)
        for artifact in artifacts:
            self._emit(TaskEventType.ARTIFACT, stored, artifact=artifact)
        self._emit(TaskEventType.STATUS, stored)

    def _fail(self, stored: StoredTask, detail: str) -> None:
        self._set_status(stored, TaskStatus(state=TaskState.FAILED, message=detail))
        self._emit(TaskEventType.STATUS, stored)

    def _set_status(self, stored: StoredTask, status: TaskStatus) -> None:
        stored.task = stored.task.model_copy(update={"status": status})

    def _emit(
        self,
        event_type: TaskEventType,
        stored: StoredTask,
        *,
        artifact: Artifact | None = None,
        message: Message | None = None,
    ) -> None:
        event = TaskEvent(
            type=event_type,
            task=stored.task.model_copy(deep=True),
            artifact=artifact.model_copy(deep=True) if artifact is not None else None,
            message=message.model_copy(deep=True) if message is not None else None,
        )
        self._store.publish(event)


__all__ = ["CancelResult", "DEFAULT_MAX_AGE_S", "TaskManager"]
