import os

import pytest

from sitesearch_sync.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep ALGOLIA_* variables and stray .env files out of every test."""
    for key in list(os.environ):
        if key.startswith("ALGOLIA_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = {
            "application_id": "APPID",
            "api_key": "secret-key",
            "index_name": "my_index",
            "source": str(tmp_path),
        }
        values.update(overrides)
        return Settings(**values)

    return _make
