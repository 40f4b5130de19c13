from __future__ import annotations

from dataclasses import replace

from config.settings import ChatSettings
from llm.chunked_provider import ChunkedStreamProvider
from llm.local_http_brain import DEFAULT_LOCAL_ENDPOINT, LocalHttpBrain
from llm.openai_stream_provider import OpenAICompatibleStreamProvider
from llm.provider_base import StreamProvider
from llm.types import ModelConfig


def create_provider(config: ModelConfig, settings: ChatSettings | None = None) -> StreamProvider:
    chat_settings = settings or ChatSettings()
    if config.provider == "openai":
        return OpenAICompatibleStreamProvider(config)
    if config.provider == "local":
        if config.base_url is None:
            config = replace(config, base_url=DEFAULT_LOCAL_ENDPOINT)
        return OpenAICompatibleStreamProvider(config)
    if config.provider == "local-chunked":
        brain = LocalHttpBrain(default_config=config)
        return ChunkedStreamProvider(
            brain,
            config,
            chunk_delay_seconds=chat_settings.chunk_delay_seconds,
        )
    raise ValueError(f"Неизвестный провайдер модели: {config.provider}")
