from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from .models import Task, TaskEvent, TaskListResult, TaskState, parse_timestamp

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TaskEventBroker:
    """Shared event channel; subscribers register per task id."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[TaskEvent]]] = {}

    def subscribe(self, task_id: str) -> tuple[asyncio.Queue[TaskEvent], Callable[[], None]]:
        queue: asyncio.Queue[TaskEvent] = asyncio.Queue()
        self._subscribers.setdefault(task_id, set()).add(queue)

        def _unsubscribe() -> None:
            subscribers = self._subscribers.get(task_id)
            if subscribers is None:
                return
            subscribers.discard(queue)
            if not subscribers:
                self._subscribers.pop(task_id, None)

        return queue, _unsubscribe

    def subscriber_count(self, task_id: str) -> int:
        return len(self._subscribers.get(task_id, ()))

    def publish(self, event: TaskEvent) -> None:
        subscribers = self._subscribers.get(event.task.id)
        if not subscribers:
            return
        # Subscriber queues are unbounded, so put_nowait never drops an event.
        for queue in list(subscribers):
            queue.put_nowait(event)


@dataclass(slots=True)
class StoredTask:
    task: Task
    created_at: datetime


class InMemoryTaskStore:
    """Insertion-ordered task records plus the event broker.

    Every method runs without suspending, so each call is atomic with respect
    to the other store operations on the event loop.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, StoredTask] = {}
        self._events = TaskEventBroker()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    @property
    def events(self) -> TaskEventBroker:
        return self._events

    def put(self, task: Task) -> StoredTask:
        # Re-assigning an existing key keeps its slot in the insertion order.
        stored = StoredTask(task=task, created_at=_utc_now())
        self._tasks[task.id] = stored
        return stored

    def get(self, task_id: str) -> StoredTask | None:
        return self._tasks.get(task_id)

    def is_current(self, stored: StoredTask) -> bool:
        return self._tasks.get(stored.task.id) is stored

    def get_task(self, task_id: str) -> Task | None:
        stored = self._tasks.get(task_id)
        if stored is None:
            return None
        return stored.task.model_copy(deep=True)

    def all_tasks(self) -> list[Task]:
        return [stored.task.model_copy(deep=True) for stored in self._tasks.values()]

    def list_tasks(
        self,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        cursor: str | None = None,
        state: TaskState | str | None = None,
    ) -> TaskListResult:
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        ordered = list(self._tasks.values())
        start = 0
        if cursor is not None:
            for position, stored in enumerate(ordered):
                if stored.task.id == cursor:
                    start = position + 1
                    break
        candidates = ordered[start:]
        if state is not None:
            wanted = TaskState(state)
            candidates = [stored for stored in candidates if stored.task.status.state == wanted]
        page = candidates[:limit]
        has_more = len(candidates) > limit
        return TaskListResult(
            tasks=[stored.task.model_copy(deep=True) for stored in page],
            has_more=has_more,
            next_cursor=page[-1].task.id if has_more and page else None,
        )

    def remove_older_than(self, max_age_s: float, *, now: datetime | None = None) -> list[str]:
        if max_age_s < 0:
            raise ValueError("max_age_s must be >= 0")
        reference = now or _utc_now()
        expired = [
            task_id
            for task_id, stored in self._tasks.items()
            if (reference - parse_timestamp(stored.task.status.timestamp)).total_seconds() >= max_age_s
        ]
        for task_id in expired:
            del self._tasks[task_id]
        return expired

    def subscribe(self, task_id: str) -> tuple[asyncio.Queue[TaskEvent], Callable[[], None]]:
        return self._events.subscribe(task_id)

    def publish(self, event: TaskEvent) -> None:
        self._events.publish(event)


__all__ = ["InMemoryTaskStore", "StoredTask", "TaskEventBroker"]
