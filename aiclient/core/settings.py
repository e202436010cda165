# aiclient/core/settings.py
from __future__ import annotations
import logging
import os
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import KeyringError

from aiclient.constants import API_KEY_ENV_VARS, KEYRING_API_KEY_ACCOUNT, KEYRING_SERVICE
from aiclient.settings import load_settings, update_client_settings

log = logging.getLogger("settings")


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    CUSTOM = "custom"    # any OpenAI-compatible server (Ollama, LM Studio, ...)

    @property
    def display_name(self) -> str:
        return _PROVIDER_DEFAULTS[self][0]

    @property
    def default_endpoint(self) -> str:
        return _PROVIDER_DEFAULTS[self][1]

    @property
    def default_model(self) -> str:
        return _PROVIDER_DEFAULTS[self][2]


_PROVIDER_DEFAULTS = {
    Provider.OPENAI: ("OpenAI", "https://api.openai.com/v1", "gpt-4o"),
    Provider.ANTHROPIC: ("Anthropic", "https://api.anthropic.com/v1", "claude-3-opus-20240229"),
    Provider.CUSTOM: ("Custom", "http://localhost:11434/v1", "llama2"),
}


@dataclass(frozen=True)
class ClientSettings:
    api_key: str = ""
    api_endpoint: str = Provider.OPENAI.default_endpoint
    model: str = Provider.OPENAI.default_model
    temperature: float = 0.7
    max_tokens: int = 2048
    system_prompt: str = ""
    streaming_enabled: bool = True
    provider: Provider = Provider.OPENAI
    transport: str = "http"   # "http" | "openai"

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def apply_provider(self, provider: Provider) -> "ClientSettings":
        """Switch provider; endpoint and model reset to that provider's defaults."""
        return replace(self, provider=provider,
                       api_endpoint=provider.default_endpoint,
                       model=provider.default_model)

    @classmethod
    def from_dict(cls, data: dict, api_key: str = "") -> "ClientSettings":
        """Build from the JSON "client" section; a malformed section raises ValueError."""
        if not isinstance(data, dict):
            raise ValueError(f"client settings must be an object, got {type(data).__name__}")
        try:
            provider = Provider(str(data.get("provider", Provider.OPENAI.value)).lower())
        except ValueError:
            log.warning("Unknown provider %r in settings; using custom", data.get("provider"))
            provider = Provider.CUSTOM
        try:
            temperature = float(data.get("temperature", 0.7))
            max_tokens = int(data.get("max_tokens", 2048))
        except TypeError as exc:
            raise ValueError(f"Invalid client settings: {exc}") from exc
        return cls(
            api_key=api_key or "",
            api_endpoint=str(data.get("api_endpoint") or provider.default_endpoint),
            model=str(data.get("model") or provider.default_model),
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=str(data.get("system_prompt") or ""),
            streaming_enabled=bool(data.get("streaming_enabled", True)),
            provider=provider,
            transport=str(data.get("transport") or "http"),
        )


class SettingsProvider:
    """Abstract settings source. get() may block (secure storage lookup)."""
    def get(self) -> ClientSettings:
        raise NotImplementedError


class StaticSettingsProvider(SettingsProvider):
    def __init__(self, settings: ClientSettings | None = None, **overrides):
        self._settings = replace(settings or ClientSettings(), **overrides)

    def get(self) -> ClientSettings:
        return self._settings

    def update(self, **changes) -> None:
        self._settings = replace(self._settings, **changes)


class FileSettingsProvider(SettingsProvider):
    """
    Reads the "client" section of the JSON settings file on every get(), so
    edits are picked up without a restart. The API key comes from the OS
    keyring, else from the first non-empty env var in API_KEY_ENV_VARS.
    """
    def __init__(self, path: Path, *, service: str = KEYRING_SERVICE,
                 account: str = KEYRING_API_KEY_ACCOUNT):
        self.path = path
        self.service = service
        self.account = account

    def get(self) -> ClientSettings:
        cfg = load_settings(self.path)
        return ClientSettings.from_dict(cfg.get("client", {}), api_key=self.resolve_api_key())

    def resolve_api_key(self) -> str:
        val = self._keyring_key()
        if val:
            return val
        for name in API_KEY_ENV_VARS:
            val = os.getenv(name, "").strip()
            if val:
                return val
        return ""

    def _keyring_key(self) -> Optional[str]:
        try:
            val = keyring.get_password(self.service, self.account)
        except KeyringError as exc:
            log.warning("Keyring lookup failed (%s); falling back to environment", exc)
            return None
        return val.strip() if val else None

    def store_api_key(self, api_key: str) -> None:
        keyring.set_password(self.service, self.account, api_key)
        log.info("API key stored in keyring (%s/%s)", self.service, self.account)

    def update(self, **changes) -> None:
        if "provider" in changes:
            provider = Provider(changes["provider"])
            changes["provider"] = provider.value
            changes.setdefault("api_endpoint", provider.default_endpoint)
            changes.setdefault("model", provider.default_model)
        update_client_settings(self.path, load_settings(self.path), **changes)
