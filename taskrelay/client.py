from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx

from .config import AGENT_CARD_PATH, DEFAULT_BASE_PATH
from .models import AgentCard, Task, TaskEvent, TaskListResult, TaskSendParams, TaskState

DEFAULT_TIMEOUT_S = 30.0


class A2AClientError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        data: Any = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(f"RPC error {code}: {message}" if code is not None else message)
        self.code = code
        self.message = message
        self.data = data
        self.status_code = status_code


def _normalize_base_url(url: str) -> str:
    return url.rstrip("/")


def _params_payload(params: TaskSendParams | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(params, TaskSendParams):
        return params.to_payload()
    return TaskSendParams.model_validate(params).to_payload()


def _error_from_body(response: httpx.Response, body: str) -> A2AClientError:
    try:
        payload = json.loads(body) if body else None
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, Mapping) and isinstance(payload.get("error"), Mapping):
        error = payload["error"]
        return A2AClientError(
            str(error.get("message", "")),
            code=error.get("code"),
            data=error.get("data"),
            status_code=response.status_code,
        )
    return A2AClientError(
        f"HTTP error: {response.status_code} {response.reason_phrase}".rstrip(),
        status_code=response.status_code,
    )


def _raise_for_status(response: httpx.Response, *, body: str) -> None:
    if 200 <= response.status_code < 300:
        return
    raise _error_from_body(response, body)


def _parse_sse_line(line: str) -> dict[str, Any] | None:
    if not line.startswith("data:"):
        return None
    raw = line[len("data:") :].strip()
    if not raw:
        return None
    return json.loads(raw)


@dataclass(slots=True)
class A2AClient:
    """JSON-RPC client for a remote A2A agent.

    ``base_url`` is the agent's root; the agent card is fetched from
    ``/.well-known/agent.json`` and calls are posted to ``rpc_path``.
    """

    base_url: str
    auth_token: str | None = None
    timeout_s: float | None = DEFAULT_TIMEOUT_S
    rpc_path: str = DEFAULT_BASE_PATH
    client: httpx.AsyncClient | None = None

    @asynccontextmanager
    async def _client_context(self):
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            yield client

    def _headers(self, *, accept: str = "application/json") -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": accept}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    @property
    def rpc_url(self) -> str:
        return f"{_normalize_base_url(self.base_url)}{self.rpc_path}"

    def _rpc_body(self, method: str, params: Mapping[str, Any]) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "method": method, "params": dict(params), "id": str(uuid.uuid4())}

    async def _call(self, method: str, params: Mapping[str, Any]) -> Any:
        async with self._client_context() as client:
            response = await client.post(self.rpc_url, json=self._rpc_body(method, params), headers=self._headers())
            body = response.text
        _raise_for_status(response, body=body)
        payload = response.json()
        error = payload.get("error")
        if error is not None:
            raise A2AClientError(
                str(error.get("message", "")),
                code=error.get("code"),
                data=error.get("data"),
                status_code=response.status_code,
            )
        if "result" not in payload or payload["result"] is None:
            raise A2AClientError("RPC response missing result", status_code=response.status_code)
        return payload["result"]

    async def get_agent_card(self) -> AgentCard:
        url = f"{_normalize_base_url(self.base_url)}{AGENT_CARD_PATH}"
        async with self._client_context() as client:
            response = await client.get(url, headers={"Accept": "application/json"})
            body = response.text
        _raise_for_status(response, body=body)
        return AgentCard.model_validate(response.json())

    async def send_task(self, params: TaskSendParams | Mapping[str, Any]) -> Task:
        result = await self._call("tasks/send", _params_payload(params))
        return Task.model_validate(result)

    async def get_task(self, task_id: str) -> Task:
        result = await self._call("tasks/get", {"id": task_id})
        return Task.model_validate(result)

    async def cancel_task(self, task_id: str) -> bool:
        result = await self._call("tasks/cancel", {"id": task_id})
        if isinstance(result, Mapping):
            return bool(result.get("canceled", False))
        return False

    async def list_tasks(
        self,
        *,
        limit: int | None = None,
        cursor: str | None = None,
        state: TaskState | str | None = None,
    ) -> TaskListResult:
        params: dict[str, Any] = {}
        if limit is not None:
            params["limit"] = limit
        if cursor is not None:
            params["cursor"] = cursor
        if state is not None:
            params["state"] = TaskState(state).value
        result = await self._call("tasks/list", params)
        return TaskListResult.model_validate(result)

    async def send_subscribe(self, params: TaskSendParams | Mapping[str, Any]) -> AsyncIterator[TaskEvent]:
        body = self._rpc_body("tasks/sendSubscribe", _params_payload(params))
        async with self._client_context() as client:
            async with client.stream(
                "POST",
                self.rpc_url,
                json=body,
                headers=self._headers(accept="text/event-stream"),
            ) as response:
                if response.status_code >= 400:
                    raw = await response.aread()
                    _raise_for_status(response, body=raw.decode("utf-8", errors="replace"))
                if not response.headers.get("content-type", "").startswith("text/event-stream"):
                    # Validation failures come back as a plain JSON-RPC envelope.
                    raw = await response.aread()
                    raise _error_from_body(response, raw.decode("utf-8", errors="replace"))
                async for line in response.aiter_lines():
                    data = _parse_sse_line(line)
                    if data is None:
                        continue
                    event = TaskEvent.model_validate(data)
                    yield event
                    if event.is_final:
                        return


__all__ = ["A2AClient", "A2AClientError", "DEFAULT_TIMEOUT_S"]
