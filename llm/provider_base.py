from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from llm.cancellation import CancellationToken
from llm.types import StreamEvent
from shared.models import LLMMessage


class StreamProvider(Protocol):
    """Источник потоковых событий модели.

    Возвращает конечную ленивую последовательность `StreamEvent` в порядке
    эмиссии. Отмена пользователем сигнализируется `StreamCancelledError`,
    любая другая ошибка пробрасывается как есть.
    """

    def stream(
        self,
        prompt: str,
        *,
        model: str,
        history: Sequence[LLMMessage],
        cancel_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]: ...


class ProviderHTTPError(RuntimeError):
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        detail = body.strip()[:200] if body.strip() else "empty response"
        super().__init__(f"Provider HTTP {status}: {detail}")


def build_chat_messages(
    prompt: str,
    history: Sequence[LLMMessage],
    system_prompt: str | None = None,
) -> list[LLMMessage]:
    messages: list[LLMMessage] = []
    if system_prompt and (not history or history[0].role != "system"):
        messages.append(LLMMessage(role="system", content=system_prompt))
    messages.extend(history)
    messages.append(LLMMessage(role="user", content=prompt))
    return messages
