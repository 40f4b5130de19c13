from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_HISTORY_LIMIT = 20
DEFAULT_TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New Chat"
DEFAULT_ERROR_FALLBACK = "Failed to get response. Please try again."
DEFAULT_CHUNK_DELAY_SECONDS = 0.015
DEFAULT_PATH = Path("config/chat_settings.json")

HISTORY_LIMIT_ENV = "STREAMCHAT_HISTORY_LIMIT"
DEFAULT_MODEL_ENV = "STREAMCHAT_DEFAULT_MODEL"
CHUNK_DELAY_ENV = "STREAMCHAT_CHUNK_DELAY"


@dataclass(frozen=True)
class ChatSettings:
    """Параметры хранилища сессий и контроллера стриминга."""

    history_limit: int = DEFAULT_HISTORY_LIMIT
    title_max_chars: int = DEFAULT_TITLE_MAX_CHARS
    default_title: str = DEFAULT_TITLE
    error_fallback: str = DEFAULT_ERROR_FALLBACK
    chunk_delay_seconds: float = DEFAULT_CHUNK_DELAY_SECONDS
    default_model: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "history_limit": self.history_limit,
            "title_max_chars": self.title_max_chars,
            "default_title": self.default_title,
            "error_fallback": self.error_fallback,
            "chunk_delay_seconds": self.chunk_delay_seconds,
            "default_model": self.default_model,
        }


def _require_int(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"chat_settings.{key} должен быть неотрицательным int.")
    return value


def _require_str(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"chat_settings.{key} должен быть непустой строкой.")
    return value


def load_chat_settings(path: Path = DEFAULT_PATH) -> ChatSettings:
    if not path.exists():
        return ChatSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(f"Ошибка чтения chat_settings.json: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("chat_settings.json должен содержать объект.")

    delay = data.get("chunk_delay_seconds", DEFAULT_CHUNK_DELAY_SECONDS)
    if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
        raise ValueError("chat_settings.chunk_delay_seconds должен быть числом >= 0.")
    default_model = data.get("default_model")
    if default_model is not None and (not isinstance(default_model, str) or not default_model):
        raise ValueError("chat_settings.default_model должен быть строкой или null.")

    return ChatSettings(
        history_limit=_require_int(data, "history_limit", DEFAULT_HISTORY_LIMIT),
        title_max_chars=_require_int(data, "title_max_chars", DEFAULT_TITLE_MAX_CHARS),
        default_title=_require_str(data, "default_title", DEFAULT_TITLE),
        error_fallback=_require_str(data, "error_fallback", DEFAULT_ERROR_FALLBACK),
        chunk_delay_seconds=float(delay),
        default_model=default_model,
    )


def resolve_chat_settings(path: Path = DEFAULT_PATH) -> ChatSettings:
    settings = load_chat_settings(path)
    history_raw = os.getenv(HISTORY_LIMIT_ENV)
    model_raw = os.getenv(DEFAULT_MODEL_ENV)
    delay_raw = os.getenv(CHUNK_DELAY_ENV)

    if isinstance(history_raw, str) and history_raw.strip():
        try:
            settings = replace(settings, history_limit=int(history_raw.strip()))
        except ValueError as exc:
            raise ValueError(f"{HISTORY_LIMIT_ENV} должен быть int.") from exc

    if isinstance(model_raw, str) and model_raw.strip():
        settings = replace(settings, default_model=model_raw.strip())

    if isinstance(delay_raw, str) and delay_raw.strip():
        try:
            settings = replace(settings, chunk_delay_seconds=float(delay_raw.strip()))
        except ValueError as exc:
            raise ValueError(f"{CHUNK_DELAY_ENV} должен быть числом.") from exc

    return settings
