import math
from datetime import UTC, datetime, timedelta

import pytest

from taskrelay.models import Message, Role, Task, TaskEvent, TaskEventType, TaskState, TaskStatus, TextPart
from taskrelay.store import InMemoryTaskStore, TaskEventBroker


def _task(task_id: str, state: TaskState = TaskState.SUBMITTED, text: str = "hi") -> Task:
    return Task(
        id=task_id,
        session_id=f"session-{task_id}",
        status=TaskStatus(state=state),
        history=[Message(role=Role.USER, parts=[TextPart(text=text)])],
    )


def _filled_store(count: int) -> InMemoryTaskStore:
    store = InMemoryTaskStore()
    for idx in range(1, count + 1):
        store.put(_task(f"task-{idx}"))
    return store


def test_get_task_returns_independent_snapshot() -> None:
    store = InMemoryTaskStore()
    store.put(_task("a"))
    snapshot = store.get_task("a")
    assert snapshot is not None
    snapshot.history.clear()
    assert len(store.get_task("a").history) == 1
    assert store.get_task("missing") is None


def test_duplicate_id_replaces_record_in_place() -> None:
    store = _filled_store(3)
    first = store.get("task-1")
    replacement = store.put(_task("task-1", text="again"))

    assert len(store) == 3
    assert [task.id for task in store.all_tasks()] == ["task-1", "task-2", "task-3"]
    assert store.get_task("task-1").history[0].parts[0].text == "again"
    assert store.is_current(replacement)
    assert not store.is_current(first)


def test_list_tasks_pages_with_cursor() -> None:
    store = _filled_store(5)

    first = store.list_tasks(limit=2)
    assert [task.id for task in first.tasks] == ["task-1", "task-2"]
    assert first.has_more is True
    assert first.next_cursor == "task-2"

    rest = store.list_tasks(cursor=first.next_cursor)
    assert [task.id for task in rest.tasks] == ["task-3", "task-4", "task-5"]
    assert rest.has_more is False
    assert rest.next_cursor is None


def test_list_tasks_exact_page_has_no_more() -> None:
    store = _filled_store(4)
    page = store.list_tasks(limit=2, cursor="task-2")
    assert [task.id for task in page.tasks] == ["task-3", "task-4"]
    assert page.has_more is False
    assert page.next_cursor is None


def test_list_tasks_unknown_cursor_starts_from_beginning() -> None:
    store = _filled_store(3)
    page = store.list_tasks(cursor="nope")
    assert [task.id for task in page.tasks] == ["task-1", "task-2", "task-3"]


def test_list_tasks_filters_by_state() -> None:
    store = InMemoryTaskStore()
    store.put(_task("a", TaskState.COMPLETED))
    store.put(_task("b", TaskState.FAILED))
    store.put(_task("c", TaskState.COMPLETED))
    store.put(_task("d", TaskState.COMPLETED))

    page = store.list_tasks(limit=1, state="completed")
    assert [task.id for task in page.tasks] == ["a"]
    assert page.next_cursor == "a"

    rest = store.list_tasks(cursor="b", state=TaskState.COMPLETED)
    assert [task.id for task in rest.tasks] == ["c", "d"]
    assert rest.has_more is False


@pytest.mark.parametrize("limit", [0, 101])
def test_list_tasks_rejects_out_of_range_limit(limit: int) -> None:
    with pytest.raises(ValueError):
        InMemoryTaskStore().list_tasks(limit=limit)


def test_remove_older_than() -> None:
    store = _filled_store(3)
    assert store.remove_older_than(math.inf) == []
    assert len(store) == 3

    later = datetime.now(UTC) + timedelta(hours=2)
    assert store.remove_older_than(3600, now=later) == ["task-1", "task-2", "task-3"]
    assert len(store) == 0

    with pytest.raises(ValueError):
        store.remove_older_than(-1)


def test_remove_older_than_zero_removes_everything() -> None:
    store = _filled_store(2)
    store.put(_task("done", TaskState.COMPLETED))
    assert len(store.remove_older_than(0)) == 3
    assert store.all_tasks() == []


@pytest.mark.asyncio
async def test_broker_routes_events_by_task_id() -> None:
    broker = TaskEventBroker()
    queue_a, unsubscribe_a = broker.subscribe("a")
    queue_b, unsubscribe_b = broker.subscribe("b")

    broker.publish(TaskEvent(type=TaskEventType.STATUS, task=_task("a", TaskState.WORKING)))

    assert queue_a.qsize() == 1
    assert queue_b.empty()
    event = queue_a.get_nowait()
    assert event.task.id == "a"

    unsubscribe_a()
    unsubscribe_a()
    assert broker.subscriber_count("a") == 0
    broker.publish(TaskEvent(type=TaskEventType.STATUS, task=_task("a", TaskState.COMPLETED)))
    assert queue_a.empty()

    unsubscribe_b()
    assert broker.subscriber_count("b") == 0


@pytest.mark.asyncio
async def test_broker_delivers_every_event_to_every_subscriber() -> None:
    broker = TaskEventBroker()
    broker.publish(TaskEvent(type=TaskEventType.STATUS, task=_task("a")))
    first, _ = broker.subscribe("a")
    second, _ = broker.subscribe("a")

    for idx in range(500):
        broker.publish(TaskEvent(type=TaskEventType.STATUS, task=_task("a", text=str(idx))))

    for queue in (first, second):
        assert queue.qsize() == 500
        texts = [queue.get_nowait().task.history[0].parts[0].text for _ in range(500)]
        assert texts == [str(idx) for idx in range(500)]
