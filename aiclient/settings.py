# aiclient/settings.py
from __future__ import annotations
import copy
import json
from pathlib import Path
from typing import Any, Dict
from .constants import DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT

DEFAULT_SETTINGS: Dict[str, Any] = {
    "schema": 1,
    "logging": {
        "level": "INFO",
        "max_bytes": DEFAULT_LOG_MAX_BYTES,
        "backup_count": DEFAULT_LOG_BACKUP_COUNT
    },
    "client": {
        "provider": "openai",
        "api_endpoint": "https://api.openai.com/v1",
        "model": "gpt-4o",
        "temperature": 0.7,
        "max_tokens": 2048,
        "system_prompt": "",
        "streaming_enabled": True,
        "transport": "http"
    }
}


def _fill_missing(target: dict, defaults: dict) -> dict:
    for key, value in defaults.items():
        if key not in target:
            target[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(target[key], dict):
            _fill_missing(target[key], value)
    return target


def load_settings(path: Path) -> dict:
    """Read the settings file, creating it from defaults on first use."""
    if not path.exists():
        save_settings(path, DEFAULT_SETTINGS)
        return copy.deepcopy(DEFAULT_SETTINGS)
    with path.open("r", encoding="utf-8") as f:
        cfg = json.load(f)
    if not isinstance(cfg, dict):
        raise ValueError(f"{path}: expected a JSON object, got {type(cfg).__name__}")
    return _fill_missing(cfg, DEFAULT_SETTINGS)


def save_settings(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    tmp.replace(path)


def update_client_settings(path: Path, cfg: dict, **changes: Any) -> dict:
    """Persist changed keys of the "client" section; unknown keys are rejected."""
    unknown = set(changes) - set(DEFAULT_SETTINGS["client"])
    if unknown:
        raise KeyError(f"Unknown client setting(s): {', '.join(sorted(unknown))}")
    client = dict(cfg.get("client", {}))
    if all(client.get(k) == v for k, v in changes.items()):
        return cfg
    client.update(changes)
    updated = {**cfg, "client": client}
    save_settings(path, updated)
    return updated
