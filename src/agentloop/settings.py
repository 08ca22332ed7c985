"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from .client import DEFAULT_BASE_URL, DEFAULT_MODEL, ClientSettings
from .loop import DEFAULT_MAX_TURNS, DEFAULT_TEMPERATURE, LoopConfig
from .tools.approval import ApprovalMode

__all__ = ["SecretVault", "Settings", "SettingsStore", "redact_secret"]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".agentloop"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_API_KEY": "api_key",
    "AGENTLOOP_BASE_URL": "base_url",
    "AGENTLOOP_MODEL": "model",
    "AGENTLOOP_APPROVAL_MODE": "approval_mode",
    "AGENTLOOP_WORKSPACE": "workspace",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_DEBUG_LOGGING": "debug_logging",
    "AGENTLOOP_ENABLE_WRITE": "enable_write",
    "AGENTLOOP_ENABLE_TODO": "enable_todo",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_REQUEST_TIMEOUT": "request_timeout",
    "AGENTLOOP_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTLOOP_MAX_TURNS": "max_turns",
    "AGENTLOOP_MAX_RETRIES": "max_retries",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"


@dataclass(slots=True)
class Settings:
    """User-facing configuration for the client, the loop and the tool set."""

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    model: str = DEFAULT_MODEL
    organization: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    request_timeout: float = 90.0
    max_retries: int = 1
    max_turns: int = DEFAULT_MAX_TURNS
    approval_mode: str = ApprovalMode.DEFAULT
    enable_write: bool = False
    enable_todo: bool = False
    debug_logging: bool = False
    workspace: str = "."

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            debug_logging=self.debug_logging,
        )

    def loop_config(self, *, system_prompt: str | None = None) -> LoopConfig:
        return LoopConfig(
            max_turns=self.max_turns,
            system_prompt=system_prompt,
            temperature=self.temperature,
            approval_mode=self.approval_mode,
        )


class SecretVault:
    """Encrypts secrets with a Fernet key stored next to the settings file."""

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply CLI and environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            api_key = self._decrypt_api_key(payload.pop(_API_KEY_FIELD, None))
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
            if api_key:
                settings = replace(settings, api_key=api_key)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings with an atomic file replace; the API key is encrypted."""

        data = asdict(settings)
        ciphertext = self._vault.encrypt(data.pop("api_key", "") or "")
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _decrypt_api_key(self, ciphertext: str | None) -> str:
        try:
            return self._vault.decrypt(ciphertext)
        except ValueError as exc:
            LOGGER.warning("Unable to decrypt API key: %s", exc)
            return ""

    @staticmethod
    def _apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
