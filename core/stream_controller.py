from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Final, cast

from config.settings import ChatSettings
from core.session_store import SessionStore
from llm.cancellation import CancellationToken, StreamCancelledError
from llm.provider_base import StreamProvider
from llm.types import StreamEvent
from shared.models import AttachedFile, ChatMessage, LLMMessage, MessagePatch
from shared.sanitize import preview_text

logger = logging.getLogger("StreamChat.StreamController")

FILE_BLOCK_TEMPLATE: Final[str] = "--- File: {name} ---\n{content}"

_END_OF_STREAM: Final = object()
_DURATION_STEP: Final = Decimal("0.1")


class StreamState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"
    ERRORED = "errored"


@dataclass(frozen=True)
class StreamOutcome:
    session_id: str
    message_id: str
    state: StreamState
    error: str | None = None


@dataclass
class _ReasoningClock:
    started_at: float | None = None
    ended_at: float | None = None
    last_reasoning_at: float | None = None

    def on_reasoning(self) -> None:
        now = time.monotonic()
        if self.started_at is None:
            self.started_at = now
        self.last_reasoning_at = now

    def on_text(self) -> None:
        if self.started_at is not None and self.ended_at is None:
            self.ended_at = time.monotonic()

    def duration(self) -> float | None:
        if self.started_at is None:
            return None
        ended_at = self.ended_at or self.last_reasoning_at or self.started_at
        return round_duration(ended_at - self.started_at)


def round_duration(seconds: float) -> float:
    """Секунды с одним знаком после запятой, половина округляется вверх."""
    return float(Decimal(str(seconds)).quantize(_DURATION_STEP, rounding=ROUND_HALF_UP))


def build_prompt(content: str, files: Sequence[AttachedFile]) -> str:
    if not files:
        return content
    blocks = "\n\n".join(
        FILE_BLOCK_TEMPLATE.format(name=item.name, content=item.content) for item in files
    )
    return f"{blocks}\n\n{content}"


def build_history(messages: Sequence[ChatMessage], limit: int) -> list[LLMMessage]:
    history = [LLMMessage(role=message.role, content=message.content) for message in messages]
    if limit <= 0:
        return []
    return history[-limit:]


async def _pull(events: AsyncIterator[StreamEvent]) -> StreamEvent | object:
    try:
        return await events.__anext__()
    except StopAsyncIteration:
        return _END_OF_STREAM


class StreamController:
    """Один исходящий запрос на сессию: промпт, стрим провайдера, мутации журнала.

    Каждая сессия владеет собственным токеном отмены, поэтому стримы разных
    сессий идут параллельно, а повторный `send` в уже стримящую сессию
    отклоняется.
    """

    def __init__(
        self,
        store: SessionStore,
        provider: StreamProvider,
        settings: ChatSettings | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.settings = settings or store.settings
        self._tokens: dict[str, CancellationToken] = {}
        self._states: dict[str, StreamState] = {}

    def state(self, session_id: str) -> StreamState:
        return self._states.get(session_id, StreamState.IDLE)

    def is_streaming(self, session_id: str | None = None) -> bool:
        if session_id is None:
            return bool(self._tokens)
        return session_id in self._tokens

    def cancel(self, session_id: str | None = None) -> None:
        targets = list(self._tokens) if session_id is None else [session_id]
        for target in targets:
            token = self._tokens.pop(target, None)
            if token is None:
                continue
            token.cancel()
            self._states[target] = StreamState.CANCELLED
            self.store.set_streaming(target, False)
            logger.info("Stream cancelled for session %s", target)

    async def send(
        self,
        content: str,
        files: Sequence[AttachedFile] | None = None,
        *,
        session_id: str | None = None,
    ) -> StreamOutcome | None:
        attachments = list(self.store.attached_files if files is None else files)
        if not content.strip() and not attachments:
            logger.debug("Empty send ignored")
            return None

        target = session_id or self.store.active_session_id
        session = self.store.get_session(target)
        if session is None:
            logger.debug("Send dropped: session %s not found", target)
            return None
        if target in self._tokens:
            logger.warning("Send rejected: session %s already has a stream in flight", target)
            return None

        self._states[target] = StreamState.PREPARING
        prompt = build_prompt(content, attachments)
        history = build_history(session.messages, self.settings.history_limit)
        self.store.append_message(target, "user", content, attachments)
        placeholder = self.store.append_message(target, "assistant", "")
        self.store.clear_files()
        placeholder_id = placeholder.message_id if placeholder is not None else ""

        token = CancellationToken()
        self._tokens[target] = token
        self.store.set_streaming(target, True)
        self._states[target] = StreamState.STREAMING
        model = self.store.selected_model
        logger.info(
            "Stream start: session=%s model=%s history=%d prompt=%r",
            target,
            model,
            len(history),
            preview_text(prompt),
        )

        outcome_state = StreamState.IDLE
        error_text: str | None = None
        try:
            events = self.provider.stream(
                prompt,
                model=model,
                history=history,
                cancel_token=token,
            )
            finished = await self._consume(target, events, token)
            outcome_state = StreamState.FINALIZED if finished else StreamState.CANCELLED
        except StreamCancelledError:
            outcome_state = StreamState.CANCELLED
        except Exception as exc:  # noqa: BLE001
            if token.cancelled:
                outcome_state = StreamState.CANCELLED
            else:
                outcome_state = StreamState.ERRORED
                error_text = str(exc) if str(exc).strip() else self.settings.error_fallback
                logger.warning("Stream failed for session %s: %s", target, error_text)
                self.store.mutate_last_assistant_message(target, MessagePatch(error=error_text))
        finally:
            if self._tokens.get(target) is token:
                del self._tokens[target]
                self.store.set_streaming(target, False)
            if target not in self._tokens:
                self._states.pop(target, None)

        logger.info("Stream %s: session=%s", outcome_state.value, target)
        return StreamOutcome(
            session_id=target,
            message_id=placeholder_id,
            state=outcome_state,
            error=error_text,
        )

    async def _consume(
        self,
        session_id: str,
        events: AsyncIterator[StreamEvent],
        token: CancellationToken,
    ) -> bool:
        clock = _ReasoningClock()
        try:
            while True:
                event = await self._next_event(events, token)
                if event is _END_OF_STREAM:
                    break
                if token.cancelled:
                    return False
                self._apply(session_id, cast(StreamEvent, event), clock)
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()
        if token.cancelled:
            return False
        duration = clock.duration()
        if duration is not None:
            self.store.mutate_last_assistant_message(session_id, MessagePatch(duration=duration))
        return True

    async def _next_event(
        self,
        events: AsyncIterator[StreamEvent],
        token: CancellationToken,
    ) -> StreamEvent | object:
        if token.cancelled:
            return _END_OF_STREAM
        next_event = asyncio.ensure_future(_pull(events))
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({next_event, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not next_event.done():
                next_event.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await next_event
        if token.cancelled:
            if next_event.done() and not next_event.cancelled():
                next_event.exception()
            return _END_OF_STREAM
        return next_event.result()

    def _apply(self, session_id: str, event: StreamEvent, clock: _ReasoningClock) -> None:
        if event.reasoning:
            clock.on_reasoning()
            self.store.mutate_last_assistant_message(
                session_id,
                MessagePatch(reasoning_delta=event.reasoning),
            )
        if event.text:
            clock.on_text()
            self.store.mutate_last_assistant_message(
                session_id,
                MessagePatch(content_delta=event.text),
            )
