from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from config.model_catalog import default_model_id, ensure_model_known
from config.settings import ChatSettings
from shared.models import (
    MESSAGE_ROLES,
    AttachedFile,
    ChatMessage,
    ChatSession,
    JSONValue,
    MessagePatch,
    MessageRole,
    new_id,
    utc_iso_now,
)

logger = logging.getLogger("StreamChat.SessionStore")

TITLE_ELLIPSIS = "…"


class SessionStore:
    """Список чат-сессий, активная сессия и журнал сообщений каждой из них.

    Все операции синхронные и не бросают исключений на неизвестный id: гонка
    между удалением сессии и поздним токеном стрима разрешается no-op.
    Читатели получают копии, поэтому журнал меняется только через методы.
    """

    def __init__(self, settings: ChatSettings | None = None) -> None:
        self._settings = settings or ChatSettings()
        self._sessions: list[ChatSession] = []
        self._streaming: set[str] = set()
        self._subscribers: set[asyncio.Queue[dict[str, JSONValue]]] = set()
        self._attached_files: list[AttachedFile] = []
        self._panel_content: dict[str, JSONValue] | None = None
        self._selected_model = self._settings.default_model or default_model_id()
        seeded = self._new_session(None)
        self._sessions.append(seeded)
        self._active_session_id = seeded.session_id

    @property
    def settings(self) -> ChatSettings:
        return self._settings

    @property
    def sessions(self) -> list[ChatSession]:
        return [session.copy() for session in self._sessions]

    @property
    def active_session_id(self) -> str:
        return self._resolve_active().session_id

    @property
    def active_session(self) -> ChatSession:
        return self._resolve_active().copy()

    @property
    def is_streaming(self) -> bool:
        return bool(self._streaming)

    @property
    def attached_files(self) -> list[AttachedFile]:
        return list(self._attached_files)

    @property
    def panel_content(self) -> dict[str, JSONValue] | None:
        return dict(self._panel_content) if self._panel_content is not None else None

    @property
    def selected_model(self) -> str:
        return self._selected_model

    def get_session(self, session_id: str) -> ChatSession | None:
        state = self._find(session_id)
        return state.copy() if state is not None else None

    def is_session_streaming(self, session_id: str) -> bool:
        return session_id in self._streaming

    def search_sessions(self, query: str) -> list[ChatSession]:
        needle = query.strip().lower()
        if not needle:
            return self.sessions
        return [
            session.copy()
            for session in self._sessions
            if needle in session.title.lower()
            or any(needle in message.content.lower() for message in session.messages)
        ]

    def create_session(self, title: str | None = None) -> ChatSession:
        session = self._new_session(title)
        self._sessions.insert(0, session)
        self._active_session_id = session.session_id
        self._panel_content = None
        logger.debug("Session created: %s", session.session_id)
        self._publish("session.created", {"session": session.to_dict()})
        self._publish("session.active", {"session_id": session.session_id})
        return session.copy()

    def set_active(self, session_id: str) -> None:
        if self._find(session_id) is None:
            return
        self._active_session_id = session_id
        self._panel_content = None
        self._publish("session.active", {"session_id": session_id})

    def delete_session(self, session_id: str) -> None:
        state = self._find(session_id)
        if state is None:
            return
        was_active = self._resolve_active().session_id == session_id
        self._sessions.remove(state)
        self._publish("session.deleted", {"session_id": session_id})
        if not self._sessions:
            fresh = self._new_session(None)
            self._sessions.append(fresh)
            self._active_session_id = fresh.session_id
            self._publish("session.created", {"session": fresh.to_dict()})
            self._publish("session.active", {"session_id": fresh.session_id})
            return
        if was_active:
            self._active_session_id = self._sessions[0].session_id
            self._publish("session.active", {"session_id": self._active_session_id})

    def rename_session(self, session_id: str, title: str) -> None:
        state = self._find(session_id)
        if state is None:
            return
        state.title = title
        self._publish("session.renamed", {"session_id": session_id, "title": title})

    def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        files: Iterable[AttachedFile] | None = None,
    ) -> ChatMessage | None:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"unsupported message role: {role}")
        state = self._find(session_id)
        if state is None:
            logger.debug("append_message dropped: session %s not found", session_id)
            return None
        message = ChatMessage(role=role, content=content, files=list(files or []))
        if role == "user" and not state.messages and content.strip():
            state.title = self._build_title(content)
            self._publish("session.renamed", {"session_id": session_id, "title": state.title})
        state.messages.append(message)
        state.updated_at = utc_iso_now()
        self._publish(
            "message.append",
            {"session_id": session_id, "message": message.to_dict()},
        )
        return message.copy()

    def mutate_last_assistant_message(self, session_id: str, patch: MessagePatch) -> bool:
        state = self._find(session_id)
        if state is None or not state.messages:
            return False
        last = state.messages[-1]
        if last.role != "assistant":
            return False
        if patch.is_empty():
            return True
        patch.apply(last)
        state.updated_at = utc_iso_now()
        self._publish(
            "message.patch",
            {
                "session_id": session_id,
                "message_id": last.message_id,
                "patch": patch.to_dict(),
            },
        )
        return True

    def set_streaming(self, session_id: str, streaming: bool) -> None:
        if streaming == (session_id in self._streaming):
            return
        if streaming:
            self._streaming.add(session_id)
        else:
            self._streaming.discard(session_id)
        self._publish(
            "stream.status",
            {
                "session_id": session_id,
                "streaming": streaming,
                "any_streaming": bool(self._streaming),
            },
        )

    def add_files(self, files: Iterable[AttachedFile]) -> None:
        self._attached_files.extend(files)

    def remove_file(self, index: int) -> None:
        if 0 <= index < len(self._attached_files):
            del self._attached_files[index]

    def clear_files(self) -> None:
        self._attached_files.clear()

    def open_panel(self, payload: dict[str, JSONValue]) -> None:
        self._panel_content = dict(payload)

    def close_panel(self) -> None:
        self._panel_content = None

    def set_selected_model(self, model_id: str) -> None:
        ensure_model_known(model_id)
        self._selected_model = model_id

    def subscribe(self, maxsize: int = 0) -> asyncio.Queue[dict[str, JSONValue]]:
        queue: asyncio.Queue[dict[str, JSONValue]] = asyncio.Queue(maxsize=maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, JSONValue]]) -> None:
        self._subscribers.discard(queue)

    def _new_session(self, title: str | None) -> ChatSession:
        session_id = new_id()
        while self._find(session_id) is not None:
            session_id = new_id()
        return ChatSession(title=title or self._settings.default_title, session_id=session_id)

    def _find(self, session_id: str) -> ChatSession | None:
        for session in self._sessions:
            if session.session_id == session_id:
                return session
        return None

    def _resolve_active(self) -> ChatSession:
        return self._find(self._active_session_id) or self._sessions[0]

    def _build_title(self, content: str) -> str:
        limit = self._settings.title_max_chars
        if len(content) <= limit:
            return content
        return content[:limit] + TITLE_ELLIPSIS

    def _publish(self, event_type: str, payload: dict[str, JSONValue]) -> None:
        if not self._subscribers:
            return
        event: dict[str, JSONValue] = {
            "id": new_id(),
            "type": event_type,
            "ts": utc_iso_now(),
            "payload": payload,
        }
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                continue
