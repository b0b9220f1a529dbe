import pytest

from taskrelay.handlers import EMPTY_MESSAGE_REPLY, echo_handler, extract_text, text_handler
from taskrelay.models import FilePart, FileWithUri, Message, Role, TextPart


def _message(*parts) -> Message:
    return Message(role=Role.USER, parts=list(parts))


def test_extract_text_joins_text_parts() -> None:
    message = _message(
        TextPart(text="line one"),
        FilePart(file=FileWithUri(name="a.txt", mime_type="text/plain", uri="https://x.test/a.txt")),
        TextPart(text="line two"),
    )
    assert extract_text(message) == "line one\nline two"


@pytest.mark.asyncio
async def test_echo_handler_replies_as_agent() -> None:
    result = await echo_handler(_message(TextPart(text="hi")))
    assert result.response.role == Role.AGENT
    assert result.response.parts[0].text == "hi"
    assert result.artifacts is None


@pytest.mark.asyncio
async def test_empty_message_gets_fixed_reply() -> None:
    calls: list[str] = []

    async def reply(text: str, _message: Message) -> str:
        calls.append(text)
        return text

    handler = text_handler(reply)
    result = await handler(_message())
    assert result.response.parts[0].text == EMPTY_MESSAGE_REPLY
    assert calls == []


@pytest.mark.asyncio
async def test_reply_failure_becomes_agent_answer() -> None:
    async def reply(_text: str, _message: Message) -> str:
        raise RuntimeError("model offline")

    result = await text_handler(reply)(_message(TextPart(text="hello")))
    assert result.response.parts[0].text == "Error processing request: model offline"
