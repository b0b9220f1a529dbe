from typing import Any

import pytest

from taskrelay.errors import JsonRpcErrorCode
from taskrelay.handlers import echo_handler
from taskrelay.manager import TaskManager
from taskrelay.rpc import RpcDispatcher, StreamRequest


def _request(method: str, params: Any = None, request_id: Any = 1) -> dict[str, Any]:
    payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        payload["params"] = params
    return payload


def _send_params(task_id: str, text: str = "hello") -> dict[str, Any]:
    return {"id": task_id, "message": {"role": "user", "parts": [{"type": "text", "text": text}]}}


@pytest.mark.asyncio
async def test_send_then_get_round_trip() -> None:
    manager = TaskManager(handler=echo_handler)
    dispatcher = RpcDispatcher(manager)

    sent = await dispatcher.handle(_request("tasks/send", _send_params("t-1"), request_id="req-1"))
    assert sent.id == "req-1"
    assert sent.result["id"] == "t-1"
    assert sent.result["status"]["state"] == "submitted"
    assert sent.result["sessionId"]

    await manager.drain()
    fetched = await dispatcher.handle(_request("tasks/get", {"id": "t-1"}, request_id=2))
    assert fetched.id == 2
    assert fetched.result["status"]["state"] == "completed"
    assert len(fetched.result["history"]) == 2
    assert fetched.result["history"][1]["role"] == "agent"


@pytest.mark.asyncio
async def test_unknown_method() -> None:
    response = await RpcDispatcher(TaskManager()).handle(_request("foo/bar", {}, request_id=7))
    assert response.id == 7
    assert response.error.code == JsonRpcErrorCode.METHOD_NOT_FOUND
    assert response.error.message == "Method not found: foo/bar"


@pytest.mark.asyncio
async def test_invalid_envelope_has_no_id() -> None:
    dispatcher = RpcDispatcher(TaskManager())
    for payload in ({"jsonrpc": "2.0", "id": 1}, {"method": "tasks/get", "id": 1}, [1, 2], "text"):
        response = await dispatcher.handle(payload)
        assert response.id is None
        assert response.error.code == JsonRpcErrorCode.INVALID_REQUEST
        assert isinstance(response.error.data, list)


@pytest.mark.asyncio
async def test_get_without_id_is_invalid_params() -> None:
    response = await RpcDispatcher(TaskManager()).handle(_request("tasks/get", {}, request_id="r"))
    assert response.id == "r"
    assert response.error.code == JsonRpcErrorCode.INVALID_PARAMS
    assert response.error.message == "Invalid task get parameters"
    assert response.error.data[0]["loc"] == ["id"]


@pytest.mark.asyncio
async def test_missing_params_are_treated_as_empty() -> None:
    dispatcher = RpcDispatcher(TaskManager())
    response = await dispatcher.handle(_request("tasks/list"))
    assert response.result == {"tasks": [], "hasMore": False}

    response = await dispatcher.handle(_request("tasks/send"))
    assert response.error.code == JsonRpcErrorCode.INVALID_PARAMS
    assert response.error.message == "Invalid task send parameters"


@pytest.mark.asyncio
async def test_get_unknown_task() -> None:
    response = await RpcDispatcher(TaskManager()).handle(_request("tasks/get", {"id": "missing"}))
    assert response.error.code == JsonRpcErrorCode.TASK_NOT_FOUND
    assert response.error.message == "Task not found: missing"


@pytest.mark.asyncio
async def test_cancel_outcomes() -> None:
    manager = TaskManager()
    dispatcher = RpcDispatcher(manager)
    await dispatcher.handle(_request("tasks/send", _send_params("pending")))

    canceled = await dispatcher.handle(_request("tasks/cancel", {"id": "pending"}))
    assert canceled.result == {"canceled": True}

    missing = await dispatcher.handle(_request("tasks/cancel", {"id": "missing"}))
    assert missing.error.code == JsonRpcErrorCode.TASK_NOT_FOUND

    manager.set_handler(echo_handler)
    await dispatcher.handle(_request("tasks/send", _send_params("done")))
    await manager.drain()
    refused = await dispatcher.handle(_request("tasks/cancel", {"id": "done"}, request_id=9))
    assert refused.id == 9
    assert refused.error.code == JsonRpcErrorCode.TASK_CANNOT_BE_CANCELED
    assert refused.error.data == {"taskId": "done", "state": "completed"}


@pytest.mark.asyncio
async def test_list_pagination_and_validation() -> None:
    manager = TaskManager()
    dispatcher = RpcDispatcher(manager)
    for idx in range(1, 6):
        await dispatcher.handle(_request("tasks/send", _send_params(f"t-{idx}")))

    first = await dispatcher.handle(_request("tasks/list", {"limit": 2}))
    assert [task["id"] for task in first.result["tasks"]] == ["t-1", "t-2"]
    assert first.result["hasMore"] is True
    assert first.result["nextCursor"] == "t-2"

    rest = await dispatcher.handle(_request("tasks/list", {"cursor": first.result["nextCursor"]}))
    assert [task["id"] for task in rest.result["tasks"]] == ["t-3", "t-4", "t-5"]
    assert rest.result["hasMore"] is False

    invalid = await dispatcher.handle(_request("tasks/list", {"limit": 500}))
    assert invalid.error.code == JsonRpcErrorCode.INVALID_PARAMS


@pytest.mark.asyncio
async def test_send_subscribe_returns_stream_marker() -> None:
    manager = TaskManager()
    dispatcher = RpcDispatcher(manager)

    outcome = await dispatcher.handle(_request("tasks/sendSubscribe", _send_params("t-1"), request_id="s"))
    assert isinstance(outcome, StreamRequest)
    assert outcome.request_id == "s"
    assert outcome.params.id == "t-1"
    assert manager.get_task("t-1") is None

    invalid = await dispatcher.handle(_request("tasks/sendSubscribe", {"id": "t-2"}))
    assert invalid.error.code == JsonRpcErrorCode.INVALID_PARAMS


@pytest.mark.asyncio
async def test_list_limit_must_be_a_json_integer() -> None:
    dispatcher = RpcDispatcher(TaskManager())
    for limit in ("2", True, 2.0):
        response = await dispatcher.handle(_request("tasks/list", {"limit": limit}, request_id="l"))
        assert response.id == "l"
        assert response.error.code == JsonRpcErrorCode.INVALID_PARAMS


@pytest.mark.asyncio
async def test_send_subscribe_is_unknown_when_streaming_disabled() -> None:
    manager = TaskManager()
    dispatcher = RpcDispatcher(manager, streaming=False)

    response = await dispatcher.handle(_request("tasks/sendSubscribe", _send_params("t-1"), request_id="s"))
    assert not isinstance(response, StreamRequest)
    assert response.id == "s"
    assert response.error.code == JsonRpcErrorCode.METHOD_NOT_FOUND
    assert response.error.message == "Method not found: tasks/sendSubscribe"
    assert manager.get_task("t-1") is None

    sent = await dispatcher.handle(_request("tasks/send", _send_params("t-2")))
    assert sent.result["id"] == "t-2"


@pytest.mark.asyncio
async def test_send_metadata_is_not_part_of_the_task() -> None:
    manager = TaskManager()
    dispatcher = RpcDispatcher(manager)
    params = {**_send_params("t-1"), "metadata": {"k": "v"}}

    sent = await dispatcher.handle(_request("tasks/send", params))
    assert sent.error is None
    assert sent.result["metadata"] == {}
    assert manager.get_task("t-1").metadata == {}
