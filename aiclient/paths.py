# aiclient/paths.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Tuple

def default_data_dir() -> Path:
    # Local "data" folder by default; override via env AICLIENT_DATA_DIR.
    env = os.getenv("AICLIENT_DATA_DIR")
    if env:
        return Path(env).expanduser().resolve()
    return Path("data").resolve()

def log_paths(data_dir: Path) -> Tuple[Path, Path]:
    logs_dir = data_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir, logs_dir / "aiclient.log"

def settings_path(data_dir: Path) -> Path:
    # Non-sensitive JSON settings; the API key lives in the keyring.
    s = data_dir / "settings"
    s.mkdir(parents=True, exist_ok=True)
    return s / "app.json"
