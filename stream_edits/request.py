from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeAlias


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Text:
    text: str


@dataclass(frozen=True, slots=True)
class Image:
    source: str
    media_type: str = "image/png"


@dataclass(frozen=True, slots=True)
class ToolUse:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_use_id: str
    content: str
    is_error: bool = False


MessageContent: TypeAlias = Text | Image | ToolUse | ToolResult


@dataclass(slots=True)
class Message:
    role: Role
    content: list[MessageContent]
    cache: bool = False

    @classmethod
    def user(cls, *parts: str) -> "Message":
        return cls(role=Role.USER, content=[Text(part) for part in parts])

    @classmethod
    def assistant(cls, *parts: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=[Text(part) for part in parts])


@dataclass(slots=True)
class CompletionRequest:
    messages: list[Message]
    tools: list[dict[str, Any]] = field(default_factory=list)
    stop: list[str] = field(default_factory=list)
    temperature: float | None = 0.0


def strip_pending_tool_use(messages: list[Message]) -> list[Message]:
    """Copy ``messages`` without the trailing tool use that is still waiting for its result.

    A request ending in an unanswered tool use is rejected by model APIs. If a
    tool result is found first, the conversation is already well-formed.
    """
    result = [Message(role=m.role, content=list(m.content), cache=m.cache) for m in messages]
    for message in reversed(result):
        for index in range(len(message.content) - 1, -1, -1):
            part = message.content[index]
            if isinstance(part, ToolUse):
                del message.content[index]
                return result
            if isinstance(part, ToolResult):
                return result
    return result
