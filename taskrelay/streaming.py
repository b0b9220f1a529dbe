from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Protocol

from .models import TaskEvent

logger = logging.getLogger("taskrelay.streaming")


class EventSource(Protocol):
    def subscribe(self, task_id: str) -> tuple[asyncio.Queue[TaskEvent], Callable[[], None]]: ...


def encode_task_event(event: TaskEvent) -> bytes:
    data = json.dumps(event.to_payload(), ensure_ascii=False, separators=(",", ":"))
    return f"data: {data}\n\n".encode()


class TaskEventStream:
    """Events of a single task, in emission order.

    Registration happens on construction so that events published right after
    (for example by an execution scheduled from the same request) are not
    missed. Iteration ends after the terminal status event; the registration
    is released exactly once, either then or on :meth:`close`.
    """

    def __init__(self, source: EventSource, task_id: str) -> None:
        self.task_id = task_id
        self._queue, self._unsubscribe = source.subscribe(task_id)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        logger.debug("task_stream_closed", extra={"task_id": self.task_id})

    async def events(self) -> AsyncIterator[TaskEvent]:
        try:
            while not self._closed:
                event = await self._queue.get()
                yield event
                if event.is_final:
                    break
        finally:
            self.close()

    def __aiter__(self) -> AsyncIterator[TaskEvent]:
        return self.events()

    async def sse(self) -> AsyncIterator[bytes]:
        try:
            async for event in self.events():
                yield encode_task_event(event)
        finally:
            self.close()


__all__ = ["EventSource", "TaskEventStream", "encode_task_event"]
