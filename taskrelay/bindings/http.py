from __future__ import annotations

import json
import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ..config import AGENT_CARD_PATH, A2AConfig, build_agent_card
from ..errors import A2AError, InternalError, InvalidParamsError, ParseError, TaskNotCancelableError, TaskNotFoundError
from ..manager import TaskManager
from ..models import AgentCard, JsonRpcResponse, TaskListParams
from ..rpc import RpcDispatcher, StreamRequest, error_response
from ..streaming import TaskEventStream

logger = logging.getLogger("taskrelay.http")

_LIST_QUERY_KEYS = ("limit", "cursor", "state")


def _reject_constant(token: str) -> Any:
    raise ValueError(f"{token} is not valid JSON")


def _list_query(request: Request) -> dict[str, Any]:
    query: dict[str, Any] = {key: request.query_params[key] for key in _LIST_QUERY_KEYS if key in request.query_params}
    if "limit" in query:
        try:
            query["limit"] = int(query["limit"])
        except ValueError as exc:
            raise InvalidParamsError(
                "Invalid task list parameters",
                data=[{"loc": ["limit"], "msg": "limit must be an integer", "input": query["limit"]}],
            ) from exc
    return query


def _envelope(result: Any) -> dict[str, Any]:
    return JsonRpcResponse(id=None, result=result).to_payload()


def _error_json(exc: A2AError, request_id: Any = None) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_response(exc, request_id).to_payload())


def create_a2a_http_app(
    manager: TaskManager,
    config: A2AConfig | None = None,
    *,
    agent_card: AgentCard | None = None,
    include_docs: bool = True,
) -> FastAPI:
    config = config or A2AConfig()
    card = agent_card or build_agent_card(config)
    dispatcher = RpcDispatcher(manager, streaming=config.streaming)
    docs_url = "/docs" if include_docs else None
    openapi_url = "/openapi.json" if include_docs else None

    @asynccontextmanager
    async def _lifespan(_app: FastAPI):
        manager.start_cleanup(interval_s=config.cleanup_interval_s, max_age_s=config.task_max_age_s)
        try:
            yield
        finally:
            await manager.stop()

    app = FastAPI(
        title=card.name,
        description=card.description,
        version=card.version,
        docs_url=docs_url,
        openapi_url=openapi_url,
        lifespan=_lifespan,
    )
    app.state.manager = manager
    app.state.dispatcher = dispatcher
    app.state.config = config

    @app.exception_handler(A2AError)
    async def _handle_a2a_error(_request: Request, exc: A2AError):
        return _error_json(exc)

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, _exc: Exception):
        return _internal_error(request.url.path)

    def _authorize(request: Request) -> None:
        expected = config.auth_token
        if not expected:
            return
        header = request.headers.get("authorization")
        if not header or not header.startswith("Bearer "):
            logger.warning("auth_rejected", extra={"path": request.url.path, "reason": "missing"})
            raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})
        token = header[len("Bearer ") :]
        if not secrets.compare_digest(token.encode(), expected.encode()):
            logger.warning("auth_rejected", extra={"path": request.url.path, "reason": "invalid_token"})
            raise HTTPException(status_code=403, detail="Forbidden")

    def _internal_error(route: str) -> JSONResponse:
        logger.exception("rpc_internal_error", extra={"route": route})
        return _error_json(InternalError())

    async def _open_stream(stream_request: StreamRequest) -> StreamingResponse:
        stream = TaskEventStream(manager, stream_request.params.id)
        try:
            await manager.create_task(stream_request.params)
        except BaseException:
            stream.close()
            raise
        return StreamingResponse(
            stream.sse(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    router = APIRouter()

    @app.get(AGENT_CARD_PATH)
    async def agent_card_route() -> JSONResponse:
        return JSONResponse(content=card.to_payload())

    @router.post("")
    async def jsonrpc(request: Request):
        raw = await request.body()
        try:
            payload = json.loads(raw, parse_constant=_reject_constant)
        except ValueError:
            return _error_json(ParseError())
        try:
            outcome = await dispatcher.handle(payload)
            if isinstance(outcome, StreamRequest):
                return await _open_stream(outcome)
            return JSONResponse(content=outcome.to_payload())
        except Exception:
            return _internal_error("rpc")

    @router.get("/tasks")
    async def list_tasks(request: Request):
        query = _list_query(request)
        try:
            params = TaskListParams.model_validate(query)
        except ValidationError as exc:
            raise InvalidParamsError.from_validation_error("Invalid task list parameters", exc) from exc
        page = manager.list_tasks(limit=params.limit, cursor=params.cursor, state=params.state)
        return JSONResponse(content=_envelope(page.to_payload()))

    @router.get("/tasks/{task_id}")
    async def get_task(task_id: str):
        task = manager.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return JSONResponse(content=_envelope(task.to_payload()))

    @router.post("/tasks/{task_id}/cancel")
    async def cancel_task(task_id: str):
        outcome = manager.cancel_task(task_id)
        if not outcome.success:
            if outcome.reason == "not_found":
                raise TaskNotFoundError(task_id)
            raise TaskNotCancelableError(task_id, outcome.state.value if outcome.state else None)
        task = manager.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return JSONResponse(content=_envelope(task.to_payload()))

    app.include_router(router, prefix=config.base_path, dependencies=[Depends(_authorize)])
    return app


__all__ = ["create_a2a_http_app"]
