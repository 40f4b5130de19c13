from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Final

import aiohttp

from llm.cancellation import CancellationToken, StreamCancelledError
from llm.payloads import extract_full_response, extract_stream_events
from llm.provider_base import ProviderHTTPError, build_chat_messages
from llm.types import ModelConfig, StreamEvent
from shared.models import JSONValue, LLMMessage
from shared.sanitize import preview_history, safe_json_loads, sanitize_headers

DEFAULT_OPENAI_ENDPOINT: Final[str] = "https://api.openai.com/v1/chat/completions"
DEFAULT_CONNECT_TIMEOUT: Final[int] = 30
SSE_DATA_PREFIX: Final[str] = "data:"
SSE_DONE_MARKER: Final[str] = "[DONE]"

logger = logging.getLogger("StreamChat.Provider")

SessionFactory = Callable[[], aiohttp.ClientSession]


def _default_session_factory() -> aiohttp.ClientSession:
    # Без общего таймаута: зависший поток прерывается только отменой.
    timeout = aiohttp.ClientTimeout(total=None, sock_connect=DEFAULT_CONNECT_TIMEOUT)
    return aiohttp.ClientSession(timeout=timeout)


def parse_sse_line(raw_line: bytes | str) -> tuple[bool, dict[str, JSONValue] | None]:
    """Разобрать строку SSE в пару (поток завершён, данные чанка)."""
    line = raw_line.decode("utf-8", errors="replace") if isinstance(raw_line, bytes) else raw_line
    line = line.strip()
    if not line or not line.startswith(SSE_DATA_PREFIX):
        return False, None
    data_part = line.removeprefix(SSE_DATA_PREFIX).strip()
    if not data_part:
        return False, None
    if data_part == SSE_DONE_MARKER:
        return True, None
    parsed = safe_json_loads(data_part)
    if not isinstance(parsed, dict):
        return False, None
    return False, parsed


class OpenAICompatibleStreamProvider:
    """Потоковый клиент chat.completions (OpenAI, OpenRouter, vLLM, Ollama)."""

    def __init__(
        self,
        default_config: ModelConfig,
        *,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.default_config = default_config
        self.base_url = (
            default_config.base_url or os.getenv("OPENAI_API_URL") or DEFAULT_OPENAI_ENDPOINT
        )
        self.api_key = default_config.api_key or os.getenv("OPENAI_API_KEY")
        self._session_factory = session_factory or _default_session_factory

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(self.default_config.extra_headers)
        return headers

    def _build_payload(
        self,
        prompt: str,
        model: str,
        history: Sequence[LLMMessage],
    ) -> dict[str, JSONValue]:
        cfg = self.default_config
        messages = build_chat_messages(prompt, history, cfg.system_prompt)
        payload: dict[str, JSONValue] = {
            "model": model,
            "messages": [message.__dict__ for message in messages],
            "temperature": cfg.temperature,
            "stream": True,
        }
        if cfg.max_tokens is not None:
            payload["max_tokens"] = cfg.max_tokens
        if cfg.thinking_enabled or "claude" in model:
            payload["reasoning"] = {"max_tokens": cfg.thinking_budget_tokens}
        return payload

    async def stream(
        self,
        prompt: str,
        *,
        model: str,
        history: Sequence[LLMMessage],
        cancel_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        headers = self._build_headers()
        payload = self._build_payload(prompt, model, history)
        logger.info(
            "Opening stream to %s model=%s history=%s headers=%s",
            self.base_url,
            model,
            preview_history(history),
            sanitize_headers(headers),
        )
        async with self._session_factory() as session:
            async with session.post(self.base_url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ProviderHTTPError(response.status, body)
                if response.content_type == "application/json":
                    async for event in self._replay_full_response(response, cancel_token):
                        yield event
                    return
                async for raw_line in response.content:
                    if cancel_token.cancelled:
                        raise StreamCancelledError("stream cancelled")
                    done, parsed = parse_sse_line(raw_line)
                    if done:
                        break
                    if parsed is None:
                        continue
                    for event in extract_stream_events(parsed):
                        yield event

    async def _replay_full_response(
        self,
        response: aiohttp.ClientResponse,
        cancel_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        data_json = await response.json()
        if not isinstance(data_json, dict):
            raise RuntimeError("Некорректный ответ модели.")
        text, reasoning = extract_full_response(data_json)
        cancel_token.raise_if_cancelled()
        if reasoning:
            yield StreamEvent.of_reasoning(reasoning)
        if text:
            yield StreamEvent.of_text(text)
