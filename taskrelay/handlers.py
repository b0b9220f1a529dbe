"""Task handler contract and adapters for plain-text agents."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol

from .models import HandlerResult, Message, Role, TextPart

logger = logging.getLogger("taskrelay.handlers")

EMPTY_MESSAGE_REPLY = "Cannot process empty message"


class TaskHandler(Protocol):
    """Turns the latest inbound message of a task into the agent's reply."""

    def __call__(self, message: Message) -> Awaitable[HandlerResult | Mapping[str, Any]]: ...


ReplyFunction = Callable[[str, Message], Awaitable[str]]


def extract_text(message: Message) -> str:
    """Join the text parts of ``message`` with newlines, skipping file parts."""

    return "\n".join(part.text for part in message.parts if isinstance(part, TextPart))


def agent_text_message(text: str, *, metadata: Mapping[str, Any] | None = None) -> Message:
    return Message(
        role=Role.AGENT,
        parts=[TextPart(text=text)],
        metadata=dict(metadata) if metadata is not None else None,
    )


def text_handler(reply: ReplyFunction) -> TaskHandler:
    """Adapt a ``(text, message) -> reply text`` coroutine into a task handler.

    Failures of ``reply`` are reported back to the caller as the agent's
    answer, so the task itself still completes.
    """

    async def _handle(message: Message) -> HandlerResult:
        text = extract_text(message)
        if not text:
            return HandlerResult(response=agent_text_message(EMPTY_MESSAGE_REPLY))
        try:
            answer = await reply(text, message)
        except Exception as exc:
            logger.warning("reply_failed", extra={"error": str(exc)})
            detail = str(exc) or "Unknown error"
            return HandlerResult(response=agent_text_message(f"Error processing request: {detail}"))
        return HandlerResult(response=agent_text_message(answer))

    return _handle


async def _echo(text: str, _message: Message) -> str:
    return text


echo_handler: TaskHandler = text_handler(_echo)


__all__ = [
    "EMPTY_MESSAGE_REPLY",
    "ReplyFunction",
    "TaskHandler",
    "agent_text_message",
    "echo_handler",
    "extract_text",
    "text_handler",
]
