"""A2A task exchange server: task lifecycle, JSON-RPC dispatch and streaming."""

from .bindings.http import create_a2a_http_app
from .client import A2AClient, A2AClientError
from .config import A2AConfig, build_agent_card
from .errors import A2AError, JsonRpcErrorCode
from .handlers import TaskHandler, echo_handler, extract_text, text_handler
from .manager import CancelResult, TaskManager
from .models import (
    AgentCard,
    AgentSkill,
    Artifact,
    FilePart,
    HandlerResult,
    Message,
    Task,
    TaskEvent,
    TaskEventType,
    TaskSendParams,
    TaskState,
    TaskStatus,
    TextPart,
)
from .rpc import RpcDispatcher, StreamRequest
from .store import InMemoryTaskStore, TaskEventBroker
from .streaming import TaskEventStream

__all__ = [
    "A2AClient",
    "A2AClientError",
    "A2AConfig",
    "A2AError",
    "AgentCard",
    "AgentSkill",
    "Artifact",
    "CancelResult",
    "FilePart",
    "HandlerResult",
    "InMemoryTaskStore",
    "JsonRpcErrorCode",
    "Message",
    "RpcDispatcher",
    "StreamRequest",
    "Task",
    "TaskEvent",
    "TaskEventBroker",
    "TaskEventStream",
    "TaskEventType",
    "TaskHandler",
    "TaskManager",
    "TaskSendParams",
    "TaskState",
    "TaskStatus",
    "TextPart",
    "build_agent_card",
    "create_a2a_http_app",
    "echo_handler",
    "extract_text",
    "text_handler",
]
