from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from shared.models import JSONValue, LLMMessage

SECRET_KEYS = {
    "api_key",
    "authorization",
    "x-api-key",
    "token",
    "secret",
}
MAX_PREVIEW_CHARS = 80


def preview_text(text: str, limit: int = MAX_PREVIEW_CHARS) -> str:
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact
    return compact[:limit] + "…[truncated]"


def preview_history(history: Sequence[LLMMessage]) -> list[dict[str, str]]:
    return [{"role": item.role, "content": preview_text(item.content)} for item in history]


def _sanitize_value(key: str | None, value: Any) -> JSONValue:
    key_lower = key.lower() if isinstance(key, str) else ""
    if key_lower in SECRET_KEYS:
        return "[secret]"
    if isinstance(value, (bool, int, float)) or value is None:
        return value
    if isinstance(value, dict):
        return {k: _sanitize_value(k, v) for k, v in value.items()}
    if isinstance(value, list):
        return [_sanitize_value(key, v) for v in value]
    if isinstance(value, str):
        return preview_text(value) if key_lower == "content" else value
    return str(value)


def sanitize_record(record: Mapping[str, Any]) -> dict[str, JSONValue]:
    return {k: _sanitize_value(k, v) for k, v in record.items()}


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        key: "[secret]" if key.lower() in SECRET_KEYS else value for key, value in headers.items()
    }


def safe_json_loads(raw: str) -> object | None:
    try:
        parsed: object = json.loads(raw)
        return parsed
    except json.JSONDecodeError:
        return None
