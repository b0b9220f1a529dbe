"""JSON-RPC 2.0 dispatch for the task methods.

The dispatcher is transport agnostic: it takes an already decoded payload and
returns a :class:`~taskrelay.models.JsonRpcResponse`, or a
:class:`StreamRequest` when the caller asked for ``tasks/sendSubscribe`` and
the transport has to open an event stream.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import (
    A2AError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
    TaskNotCancelableError,
    TaskNotFoundError,
    validation_issues,
)
from .manager import TaskManager
from .models import (
    JsonRpcId,
    JsonRpcRequest,
    JsonRpcResponse,
    TaskCancelParams,
    TaskGetParams,
    TaskListParams,
    TaskSendParams,
    TaskSendSubscribeParams,
)

logger = logging.getLogger("taskrelay.rpc")

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(slots=True)
class StreamRequest:
    request_id: JsonRpcId
    params: TaskSendSubscribeParams


def _validate_params(model: type[ModelT], params: Any, message: str) -> ModelT:
    try:
        return model.model_validate({} if params is None else params)
    except ValidationError as exc:
        raise InvalidParamsError.from_validation_error(message, exc) from exc


def error_response(exc: A2AError, request_id: JsonRpcId | None = None) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=exc.to_error())


class RpcDispatcher:
    def __init__(self, manager: TaskManager, *, streaming: bool = True) -> None:
        self._manager = manager
        self._streaming = streaming
        self._methods: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "tasks/send": self._send,
            "tasks/get": self._get,
            "tasks/cancel": self._cancel,
            "tasks/list": self._list,
        }

    async def handle(self, payload: Any) -> JsonRpcResponse | StreamRequest:
        try:
            request = JsonRpcRequest.model_validate(payload)
        except ValidationError as exc:
            return error_response(InvalidRequestError(validation_issues(exc)))

        try:
            if request.method == "tasks/sendSubscribe" and self._streaming:
                params = _validate_params(
                    TaskSendSubscribeParams,
                    request.params,
                    "Invalid task send parameters",
                )
                return StreamRequest(request_id=request.id, params=params)
            method = self._methods.get(request.method)
            if method is None:
                raise MethodNotFoundError(request.method)
            result = await method(request.params)
        except A2AError as exc:
            logger.debug(
                "rpc_error",
                extra={"method": request.method, "code": int(exc.code), "request_id": request.id},
            )
            return error_response(exc, request.id)
        return JsonRpcResponse(id=request.id, result=result)

    async def _send(self, params: Any) -> dict[str, Any]:
        send = _validate_params(TaskSendParams, params, "Invalid task send parameters")
        task = await self._manager.create_task(send)
        return task.to_payload()

    async def _get(self, params: Any) -> dict[str, Any]:
        query = _validate_params(TaskGetParams, params, "Invalid task get parameters")
        task = self._manager.get_task(query.id)
        if task is None:
            raise TaskNotFoundError(query.id)
        return task.to_payload()

    async def _cancel(self, params: Any) -> dict[str, Any]:
        query = _validate_params(TaskCancelParams, params, "Invalid task cancel parameters")
        outcome = self._manager.cancel_task(query.id)
        if outcome.success:
            return {"canceled": True}
        if outcome.reason == "not_found":
            raise TaskNotFoundError(query.id)
        raise TaskNotCancelableError(query.id, outcome.state.value if outcome.state else None)

    async def _list(self, params: Any) -> dict[str, Any]:
        query = _validate_params(TaskListParams, params, "Invalid task list parameters")
        page = self._manager.list_tasks(limit=query.limit, cursor=query.cursor, state=query.state)
        return page.to_payload()


__all__ = ["RpcDispatcher", "StreamRequest", "error_response"]
