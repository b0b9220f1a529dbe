from __future__ import annotations

import json
from enum import IntEnum
from typing import Any

from pydantic import ValidationError

from .models import JsonRpcError


class JsonRpcErrorCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    TASK_NOT_FOUND = -32001
    TASK_CANNOT_BE_CANCELED = -32002


def validation_issues(exc: ValidationError) -> list[dict[str, Any]]:
    """Return pydantic issues as plain JSON data (ctx values may hold exceptions)."""
    return json.loads(exc.json(include_url=False))


class A2AError(Exception):
    def __init__(
        self,
        *,
        code: JsonRpcErrorCode,
        message: str,
        data: Any = None,
        status_code: int = 400,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data
        self.status_code = status_code

    def to_error(self) -> JsonRpcError:
        return JsonRpcError(code=int(self.code), message=self.message, data=self.data)


class ParseError(A2AError):
    def __init__(self) -> None:
        super().__init__(code=JsonRpcErrorCode.PARSE_ERROR, message="Parse error", status_code=400)


class InvalidRequestError(A2AError):
    def __init__(self, data: Any = None) -> None:
        super().__init__(
            code=JsonRpcErrorCode.INVALID_REQUEST,
            message="Invalid JSON-RPC request",
            data=data,
            status_code=400,
        )


class MethodNotFoundError(A2AError):
    def __init__(self, method: str) -> None:
        super().__init__(
            code=JsonRpcErrorCode.METHOD_NOT_FOUND,
            message=f"Method not found: {method}",
            data={"method": method},
            status_code=404,
        )


class InvalidParamsError(A2AError):
    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(
            code=JsonRpcErrorCode.INVALID_PARAMS,
            message=message,
            data=data,
            status_code=400,
        )

    @classmethod
    def from_validation_error(cls, message: str, exc: ValidationError) -> InvalidParamsError:
        return cls(message, data=validation_issues(exc))


class InternalError(A2AError):
    def __init__(self) -> None:
        super().__init__(code=JsonRpcErrorCode.INTERNAL_ERROR, message="Internal error", status_code=500)


class TaskNotFoundError(A2AError):
    def __init__(self, task_id: str) -> None:
        super().__init__(
            code=JsonRpcErrorCode.TASK_NOT_FOUND,
            message=f"Task not found: {task_id}",
            status_code=404,
        )
        self.task_id = task_id


class TaskNotCancelableError(A2AError):
    def __init__(self, task_id: str, state: str | None) -> None:
        super().__init__(
            code=JsonRpcErrorCode.TASK_CANNOT_BE_CANCELED,
            message=f"Task cannot be canceled (current state: {state})",
            data={"taskId": task_id, "state": state},
            status_code=400,
        )
        self.task_id = task_id
        self.state = state


__all__ = [
    "A2AError",
    "InternalError",
    "InvalidParamsError",
    "InvalidRequestError",
    "JsonRpcErrorCode",
    "MethodNotFoundError",
    "ParseError",
    "TaskNotCancelableError",
    "TaskNotFoundError",
    "validation_issues",
]
