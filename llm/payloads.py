from __future__ import annotations

from typing import Final

from llm.types import StreamEvent
from shared.models import JSONValue

REASONING_KEYS: Final[tuple[str, ...]] = ("reasoning", "reasoning_content", "thinking")


def _split_content_blocks(content_raw: JSONValue) -> tuple[str, str]:
    if isinstance(content_raw, str):
        return content_raw, ""
    if not isinstance(content_raw, list):
        return "", ""
    text_parts: list[str] = []
    reasoning_parts: list[str] = []
    for block in content_raw:
        if isinstance(block, str):
            text_parts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        thinking_raw = block.get("thinking")
        if block.get("type") == "thinking" and isinstance(thinking_raw, str):
            reasoning_parts.append(thinking_raw)
            continue
        text_raw = block.get("text")
        if isinstance(text_raw, str):
            text_parts.append(text_raw)
    return "".join(text_parts), "".join(reasoning_parts)


def _reasoning_field(container: dict[str, JSONValue]) -> str:
    for key in REASONING_KEYS:
        value = container.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _first_choice(data: dict[str, JSONValue]) -> dict[str, JSONValue] | None:
    choices_raw = data.get("choices")
    if not isinstance(choices_raw, list) or not choices_raw:
        return None
    first_choice = choices_raw[0]
    if not isinstance(first_choice, dict):
        return None
    return first_choice


def extract_message_content(message_raw: dict[str, JSONValue]) -> tuple[str, str | None]:
    """Текст и reasoning из полного (не потокового) сообщения chat.completions."""
    content, reasoning = _split_content_blocks(message_raw.get("content"))
    if not reasoning:
        reasoning = _reasoning_field(message_raw)
    return content, reasoning or None


def extract_stream_events(data: dict[str, JSONValue]) -> list[StreamEvent]:
    """События из одного SSE-чанка chat.completions: сначала reasoning, затем текст."""
    first_choice = _first_choice(data)
    if first_choice is None:
        return []
    delta_raw = first_choice.get("delta")
    if not isinstance(delta_raw, dict):
        return []
    text, reasoning = _split_content_blocks(delta_raw.get("content"))
    if not reasoning:
        reasoning = _reasoning_field(delta_raw)
    events: list[StreamEvent] = []
    if reasoning:
        events.append(StreamEvent.of_reasoning(reasoning))
    if text:
        events.append(StreamEvent.of_text(text))
    return events


def extract_full_response(data: dict[str, JSONValue]) -> tuple[str, str | None]:
    first_choice = _first_choice(data)
    if first_choice is None:
        raise RuntimeError("Пустой или некорректный ответ модели.")
    message_raw = first_choice.get("message")
    if not isinstance(message_raw, dict):
        raise RuntimeError("Некорректный формат message.")
    return extract_message_content(message_raw)
