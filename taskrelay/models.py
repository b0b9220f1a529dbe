from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

JsonRpcId = StrictStr | StrictInt | StrictFloat


def utc_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class A2ABaseModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        use_enum_values=True,
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TaskState(str, Enum):
    SUBMITTED = "submitted"
    WORKING = "working"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELED})

# Cancel is refused from these; canceled itself may be re-canceled.
NON_CANCELABLE_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED})


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"


class TextPart(A2ABaseModel):
    type: Literal["text"] = "text"
    text: str


class FileWithBytes(A2ABaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    mime_type: str
    bytes: str


class FileWithUri(A2ABaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    mime_type: str
    uri: str

    @field_validator("uri")
    @classmethod
    def _absolute_uri(cls, value: str) -> str:
        parsed = urlparse(value)
        if not parsed.scheme or not (parsed.netloc or parsed.path):
            raise ValueError("uri must be an absolute URL")
        return value


class FilePart(A2ABaseModel):
    type: Literal["file"] = "file"
    file: FileWithBytes | FileWithUri


Part = Annotated[TextPart | FilePart, Field(discriminator="type")]


class Message(A2ABaseModel):
    role: Role
    parts: list[Part]
    metadata: dict[str, Any] | None = None


class TaskStatus(A2ABaseModel):
    state: TaskState
    timestamp: str = Field(default_factory=utc_iso)
    message: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _iso_timestamp(cls, value: str) -> str:
        try:
            parse_timestamp(value)
        except ValueError as exc:
            raise ValueError("timestamp must be an ISO-8601 datetime") from exc
        return value


class Artifact(A2ABaseModel):
    parts: list[Part]
    metadata: dict[str, Any] | None = None
    index: int | None = None


class Task(A2ABaseModel):
    id: str
    session_id: str
    status: TaskStatus
    artifacts: list[Artifact] = Field(default_factory=list)
    history: list[Message] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskEventType(str, Enum):
    STATUS = "status"
    ARTIFACT = "artifact"
    MESSAGE = "message"


class TaskEvent(A2ABaseModel):
    type: TaskEventType
    task: Task
    artifact: Artifact | None = None
    message: Message | None = None

    @model_validator(mode="after")
    def _payload_matches_type(self) -> TaskEvent:
        if (self.artifact is not None) != (self.type == TaskEventType.ARTIFACT):
            raise ValueError("artifact must be set exactly when type is 'artifact'")
        if (self.message is not None) != (self.type == TaskEventType.MESSAGE):
            raise ValueError("message must be set exactly when type is 'message'")
        return self

    @property
    def is_final(self) -> bool:
        return self.type == TaskEventType.STATUS and TaskState(self.task.status.state) in TERMINAL_STATES


class HandlerResult(A2ABaseModel):
    response: Message
    artifacts: list[Artifact] | None = None


class TaskSendParams(A2ABaseModel):
    id: str
    session_id: str | None = None
    accepted_output_modes: list[str] | None = None
    message: Message


class TaskSendSubscribeParams(TaskSendParams):
    pass


class TaskIdParams(A2ABaseModel):
    id: str


class TaskGetParams(TaskIdParams):
    pass


class TaskCancelParams(TaskIdParams):
    pass


class TaskListParams(A2ABaseModel):
    limit: StrictInt = Field(default=50, ge=1, le=100)
    cursor: str | None = None
    state: TaskState | None = None


class TaskListResult(A2ABaseModel):
    tasks: list[Task]
    has_more: bool
    next_cursor: str | None = None


class JsonRpcModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JsonRpcRequest(JsonRpcModel):
    jsonrpc: Literal["2.0"]
    method: StrictStr
    params: Any = None
    id: JsonRpcId


class JsonRpcError(JsonRpcModel):
    code: int
    message: str
    data: Any = None


class JsonRpcResponse(JsonRpcModel):
    jsonrpc: Literal["2.0"] = "2.0"
    id: JsonRpcId | None = None
    result: Any = None
    error: JsonRpcError | None = None

    @model_validator(mode="after")
    def _result_or_error(self) -> JsonRpcResponse:
        if (self.result is None) == (self.error is None):
            raise ValueError("JsonRpcResponse must set exactly one of result or error")
        return self

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(mode="json", exclude_none=True)
        else:
            payload["result"] = self.result
        return payload


class AgentSkill(A2ABaseModel):
    id: str
    name: str
    description: str
    tags: list[str] | None = None
    examples: list[str] | None = None
    input_modes: list[str] | None = None
    output_modes: list[str] | None = None


class AgentCapabilities(A2ABaseModel):
    streaming: bool = False
    push_notifications: bool = False
    state_transition_history: bool = False


class AgentAuthentication(A2ABaseModel):
    schemes: list[Literal["Bearer", "OAuth2", "ApiKey"]]
    credentials: str | None = None


class AgentCard(A2ABaseModel):
    name: str
    description: str
    url: str
    version: str
    capabilities: AgentCapabilities
    authentication: AgentAuthentication | None = None
    default_input_modes: list[str] = Field(default_factory=lambda: ["text"])
    default_output_modes: list[str] = Field(default_factory=lambda: ["text"])
    skills: list[AgentSkill] = Field(default_factory=list)
