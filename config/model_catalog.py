from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class ModelInfo:
    model_id: str
    label: str
    description: str = ""


MODELS: Final[tuple[ModelInfo, ...]] = (
    ModelInfo("claude-haiku-4-5", "Claude Haiku 4.5", "Fast & efficient"),
    ModelInfo("claude-sonnet-4-5", "Claude Sonnet 4.5", "Balanced power"),
    ModelInfo("claude-opus-4-6", "Claude Opus 4.6", "Maximum capability"),
    ModelInfo("gpt-4o", "GPT-4o", "OpenAI flagship"),
    ModelInfo("gpt-4o-mini", "GPT-4o Mini", "Small & fast"),
)
EXTRA_MODELS_ENV: Final[str] = "STREAMCHAT_EXTRA_MODELS"


class UnknownModelError(RuntimeError):
    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(f"Модель '{model_id}' отсутствует в каталоге.")


def _extra_models() -> list[ModelInfo]:
    env_value = os.getenv(EXTRA_MODELS_ENV, "").strip()
    if not env_value:
        return []
    extra: list[ModelInfo] = []
    for part in env_value.split(","):
        model_id = part.strip()
        if model_id:
            extra.append(ModelInfo(model_id, model_id))
    return extra


def list_models() -> list[ModelInfo]:
    known = {item.model_id for item in MODELS}
    models = list(MODELS)
    for item in _extra_models():
        if item.model_id not in known:
            known.add(item.model_id)
            models.append(item)
    return models


def default_model_id() -> str:
    return MODELS[0].model_id


def is_model_known(model_id: str) -> bool:
    return any(item.model_id == model_id for item in list_models())


def ensure_model_known(model_id: str) -> None:
    if not is_model_known(model_id):
        raise UnknownModelError(model_id)
