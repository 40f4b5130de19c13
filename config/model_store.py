from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from llm.types import ModelConfig

MODEL_CONFIG_PATH = Path("config/model_config.json")
SUPPORTED_PROVIDERS = {"openai", "local", "local-chunked"}


def model_config_to_dict(config: ModelConfig) -> dict[str, Any]:
    data = asdict(config)
    return {k: v for k, v in data.items() if v is not None and k != "api_key"}


def model_config_from_dict(data: dict[str, Any]) -> ModelConfig:
    provider = data.get("provider")
    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Неизвестный провайдер модели: {provider}")
    model = data.get("model")
    if not isinstance(model, str) or not model.strip():
        raise ValueError("model должен быть непустой строкой.")
    return ModelConfig(
        provider=provider,
        model=model.strip(),
        temperature=float(data.get("temperature", 0.7)),
        max_tokens=data.get("max_tokens"),
        base_url=data.get("base_url"),
        api_key=data.get("api_key"),
        extra_headers=dict(data.get("extra_headers", {})),
        system_prompt=data.get("system_prompt"),
        thinking_enabled=bool(data.get("thinking_enabled", False)),
        thinking_budget_tokens=int(data.get("thinking_budget_tokens", 10_000)),
    )


def load_model_config(path: Path = MODEL_CONFIG_PATH) -> ModelConfig | None:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(f"Ошибка чтения model_config.json: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("model_config.json должен содержать объект.")
    return model_config_from_dict(data)


def save_model_config(config: ModelConfig, path: Path = MODEL_CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(model_config_to_dict(config), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
