"""Tests for settings persistence and overrides."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from agentloop.settings import SecretVault, Settings, SettingsStore, redact_secret

_ENV_NAMES = (
    "AGENTLOOP_API_KEY",
    "AGENTLOOP_BASE_URL",
    "AGENTLOOP_MODEL",
    "AGENTLOOP_APPROVAL_MODE",
    "AGENTLOOP_WORKSPACE",
    "AGENTLOOP_DEBUG_LOGGING",
    "AGENTLOOP_ENABLE_WRITE",
    "AGENTLOOP_ENABLE_TODO",
    "AGENTLOOP_REQUEST_TIMEOUT",
    "AGENTLOOP_TEMPERATURE",
    "AGENTLOOP_MAX_TURNS",
    "AGENTLOOP_MAX_RETRIES",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json")


def test_missing_file_gives_defaults(store: SettingsStore) -> None:
    assert store.load() == Settings()


def test_save_encrypts_api_key(store: SettingsStore) -> None:
    settings = Settings(api_key="sk-secret", model="custom", max_turns=7, enable_write=True)

    path = store.save(settings)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert "api_key" not in raw
    assert raw["api_key_ciphertext"] != "sk-secret"
    assert "sk-secret" not in path.read_text(encoding="utf-8")
    assert raw["version"] == 1
    assert store.load() == settings


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_key_file_is_private(tmp_path: Path) -> None:
    vault = SecretVault(tmp_path / "vault.key")

    token = vault.encrypt("value")

    assert vault.decrypt(token) == "value"
    assert (tmp_path / "vault.key").stat().st_mode & 0o777 == 0o600


def test_undecryptable_key_is_dropped(store: SettingsStore, tmp_path: Path) -> None:
    store.save(Settings(api_key="sk-secret"))
    (tmp_path / "settings.key").unlink()

    assert SettingsStore(tmp_path / "settings.json").load().api_key == ""


def test_invalid_json_falls_back_to_defaults(store: SettingsStore) -> None:
    store.path.write_text("{broken", encoding="utf-8")

    assert store.load() == Settings()


def test_unknown_fields_are_ignored(store: SettingsStore) -> None:
    store.path.write_text(json.dumps({"model": "m", "legacy_flag": True}), encoding="utf-8")

    assert store.load().model == "m"


def test_cli_overrides_then_environment(store: SettingsStore, monkeypatch: pytest.MonkeyPatch) -> None:
    store.save(Settings(model="from-file", max_turns=3))
    monkeypatch.setenv("AGENTLOOP_MODEL", "from-env")
    monkeypatch.setenv("AGENTLOOP_ENABLE_TODO", "yes")
    monkeypatch.setenv("AGENTLOOP_TEMPERATURE", "0.7")
    monkeypatch.setenv("AGENTLOOP_MAX_RETRIES", "not-a-number")

    settings = store.load(overrides={"model": "from-cli", "max_turns": 9, "api_key": None})

    assert settings.model == "from-env"
    assert settings.max_turns == 9
    assert settings.enable_todo is True
    assert settings.temperature == 0.7
    assert settings.max_retries == 1


def test_settings_project_into_client_and_loop() -> None:
    settings = Settings(api_key="k", model="m", max_turns=4, temperature=0.2, approval_mode="auto_edit")

    client_settings = settings.client_settings()
    config = settings.loop_config(system_prompt="Hello")

    assert (client_settings.api_key, client_settings.model) == ("k", "m")
    assert config.max_turns == 4
    assert config.temperature == 0.2
    assert config.approval_mode == "auto_edit"
    assert config.system_prompt == "Hello"


def test_redact_secret() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abcd") == "****"
    assert redact_secret("sk-123456") == "sk*****56"
