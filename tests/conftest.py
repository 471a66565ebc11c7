import os

import pytest

from emtscribe import config


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Start each test without inherited configuration or a stray .env file."""

    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("EMTSCRIBE_"):
            monkeypatch.delenv(key, raising=False)
    config.reset_settings()
    yield
    config.reset_settings()
