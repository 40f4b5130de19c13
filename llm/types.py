from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from shared.models import JSONValue

ProviderKind = Literal["openai", "local", "local-chunked"]


@dataclass(frozen=True)
class ModelConfig:
    provider: ProviderKind
    model: str
    temperature: float = 0.7
    max_tokens: int | None = None
    base_url: str | None = None
    api_key: str | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    system_prompt: str | None = None
    thinking_enabled: bool = False
    thinking_budget_tokens: int = 10_000


@dataclass(frozen=True)
class LLMUsage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class LLMResult:
    text: str
    reasoning: str | None = None
    usage: LLMUsage | None = None
    raw: dict[str, JSONValue] | None = None


@dataclass(frozen=True)
class StreamEvent:
    text: str | None = None
    reasoning: str | None = None

    @classmethod
    def of_text(cls, text: str) -> StreamEvent:
        return cls(text=text)

    @classmethod
    def of_reasoning(cls, reasoning: str) -> StreamEvent:
        return cls(reasoning=reasoning)
