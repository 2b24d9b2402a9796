# tests/test_config.py
from importlib import reload

import pytest

import relaybot.core.config as cfg_mod


@pytest.fixture(autouse=True)
def restore_config():
    yield
    reload(cfg_mod)


def test_defaults_present(monkeypatch):
    # Tests that default limits match the documented ones when no environment variables are set.
    for name in ("FILE_RETENTION_MIN", "CONVERSATION_TTL_MIN", "RATE_LIMIT_WINDOW_MIN", "RATE_LIMIT_MAX_MESSAGES"):
        monkeypatch.delenv(name, raising=False)
    reload(cfg_mod)
    assert cfg_mod.FILE_RETENTION_MIN == 240
    assert cfg_mod.CONVERSATION_TTL_MIN == 30
    assert cfg_mod.RATE_LIMIT_WINDOW_MIN == 10
    assert cfg_mod.RATE_LIMIT_MAX_MESSAGES == 10
    assert cfg_mod.MAX_TOKENS > 0


def test_bool_parsing(monkeypatch):
    # Tests that ENABLE_SWEEPERS is parsed into a boolean value,
    # handling different capitalizations and words like "yes" and "no".
    monkeypatch.setenv("ENABLE_SWEEPERS", "Yes")
    reload(cfg_mod)
    assert cfg_mod.ENABLE_SWEEPERS is True
    monkeypatch.setenv("ENABLE_SWEEPERS", "no")
    reload(cfg_mod)
    assert cfg_mod.ENABLE_SWEEPERS is False


def test_no_limit_users(monkeypatch):
    monkeypatch.setenv("NO_LIMIT_USERS", "123, 456,abc,,")
    reload(cfg_mod)
    assert cfg_mod.NO_LIMIT_USERS == frozenset({123, 456})


def test_parse_user_ids_empty():
    assert cfg_mod.parse_user_ids("") == frozenset()


def test_trailing_slashes_stripped(monkeypatch):
    monkeypatch.setenv("BASE_URL", "https://bot.example/")
    monkeypatch.setenv("OPENAI_ENDPOINT", "https://llm.example/v1/")
    reload(cfg_mod)
    assert cfg_mod.BASE_URL == "https://bot.example"
    assert cfg_mod.OPENAI_ENDPOINT == "https://llm.example/v1"
