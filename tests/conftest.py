from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.model_catalog import EXTRA_MODELS_ENV  # noqa: E402
from config.settings import CHUNK_DELAY_ENV, DEFAULT_MODEL_ENV, HISTORY_LIMIT_ENV  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_streamchat_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (EXTRA_MODELS_ENV, CHUNK_DELAY_ENV, DEFAULT_MODEL_ENV, HISTORY_LIMIT_ENV):
        monkeypatch.delenv(name, raising=False)
