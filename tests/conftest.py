from __future__ import annotations

import pytest

from interview_transcriber.config import REQUIRED_ENV_VARS, get_settings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Keep a developer's .env out of reach of get_settings().
    monkeypatch.chdir(tmp_path)
    for name in REQUIRED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
