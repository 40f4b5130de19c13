from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Final, Literal

JSONPrimitive = str | bytes | int | float | bool | None
JSONValue = JSONPrimitive | Sequence["JSONValue"] | Mapping[str, "JSONValue"]

MessageRole = Literal["user", "assistant"]
MESSAGE_ROLES: Final[frozenset[str]] = frozenset({"user", "assistant"})


def utc_iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()  # noqa: UP017


def new_id() -> str:
    return uuid.uuid4().hex


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset()


@dataclass(frozen=True)
class LLMMessage:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class AttachedFile:
    name: str
    size: int
    mime_type: str
    content: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "size": self.size,
            "mime_type": self.mime_type,
            "content": self.content,
        }


@dataclass
class ChatMessage:
    role: MessageRole
    content: str
    message_id: str = field(default_factory=new_id)
    reasoning: str = ""
    duration: float | None = None
    error: str | None = None
    files: list[AttachedFile] = field(default_factory=list)
    created_at: str = field(default_factory=utc_iso_now)

    def copy(self) -> ChatMessage:
        return replace(self, files=list(self.files))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "message_id": self.message_id,
            "role": self.role,
            "content": self.content,
            "reasoning": self.reasoning,
            "duration": self.duration,
            "error": self.error,
            "files": [item.to_dict() for item in self.files],
            "created_at": self.created_at,
        }


@dataclass
class ChatSession:
    title: str
    session_id: str = field(default_factory=new_id)
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: str = field(default_factory=utc_iso_now)
    updated_at: str = field(default_factory=utc_iso_now)

    def copy(self) -> ChatSession:
        return replace(self, messages=[message.copy() for message in self.messages])

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "session_id": self.session_id,
            "title": self.title,
            "messages": [message.to_dict() for message in self.messages],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class MessagePatch:
    """Изменение последнего assistant-сообщения: дельты дописываются, поля перезаписываются."""

    content_delta: str = ""
    reasoning_delta: str = ""
    error: str | None | _Unset = UNSET
    duration: float | None | _Unset = UNSET

    def is_empty(self) -> bool:
        return (
            not self.content_delta
            and not self.reasoning_delta
            and isinstance(self.error, _Unset)
            and isinstance(self.duration, _Unset)
        )

    def apply(self, message: ChatMessage) -> None:
        if self.content_delta:
            message.content += self.content_delta
        if self.reasoning_delta:
            message.reasoning += self.reasoning_delta
        if not isinstance(self.error, _Unset):
            message.error = self.error
        if not isinstance(self.duration, _Unset):
            message.duration = self.duration

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {}
        if self.content_delta:
            payload["content_delta"] = self.content_delta
        if self.reasoning_delta:
            payload["reasoning_delta"] = self.reasoning_delta
        if not isinstance(self.error, _Unset):
            payload["error"] = self.error
        if not isinstance(self.duration, _Unset):
            payload["duration"] = self.duration
        return payload
