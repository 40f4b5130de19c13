from __future__ import annotations

import asyncio


class StreamCancelledError(RuntimeError):
    """Поток остановлен пользователем; не является ошибкой ответа."""


class CancellationToken:
    """Кооперативный сигнал отмены одного запроса к провайдеру."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelledError("stream cancelled")
