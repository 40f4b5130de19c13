from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Sequence
from dataclasses import replace

from config.settings import DEFAULT_CHUNK_DELAY_SECONDS
from llm.brain_base import Brain
from llm.cancellation import CancellationToken
from llm.provider_base import build_chat_messages
from llm.types import ModelConfig, StreamEvent
from shared.models import LLMMessage

logger = logging.getLogger("StreamChat.Provider")

_TOKEN_SPLIT_RE = re.compile(r"(\s+)")


def split_stream_tokens(text: str) -> list[str]:
    return [part for part in _TOKEN_SPLIT_RE.split(text) if part]


class ChunkedStreamProvider:
    """Поэтапная выдача ответа для провайдеров без нативного стриминга.

    Полный ответ `Brain.generate` запрашивается в рабочем потоке, затем
    отдаётся по словам с искусственной задержкой между токенами.
    """

    def __init__(
        self,
        brain: Brain,
        config: ModelConfig,
        *,
        chunk_delay_seconds: float = DEFAULT_CHUNK_DELAY_SECONDS,
    ) -> None:
        self.brain = brain
        self.config = config
        self.chunk_delay_seconds = chunk_delay_seconds

    async def stream(
        self,
        prompt: str,
        *,
        model: str,
        history: Sequence[LLMMessage],
        cancel_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        cfg = replace(self.config, model=model)
        messages = build_chat_messages(prompt, history, cfg.system_prompt)
        result = await asyncio.to_thread(self.brain.generate, messages, cfg)
        cancel_token.raise_if_cancelled()
        logger.debug(
            "Chunked stream: %d chars of text, %d chars of reasoning",
            len(result.text),
            len(result.reasoning or ""),
        )
        if result.reasoning:
            yield StreamEvent.of_reasoning(result.reasoning)
        for token in split_stream_tokens(result.text):
            cancel_token.raise_if_cancelled()
            yield StreamEvent.of_text(token)
            if self.chunk_delay_seconds > 0:
                await asyncio.sleep(self.chunk_delay_seconds)
