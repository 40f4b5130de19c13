from __future__ import annotations

from abc import ABC, abstractmethod

from llm.types import LLMResult, ModelConfig
from shared.models import LLMMessage


class Brain(ABC):
    """Синхронный клиент модели без нативного стриминга."""

    @abstractmethod
    def generate(self, messages: list[LLMMessage], config: ModelConfig | None = None) -> LLMResult:
        """Сгенерировать полный ответ на основе списка сообщений."""
        raise NotImplementedError
