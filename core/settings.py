"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "LearnRelax"


DATA_DIR = Path(os.environ.get("LEARNRELAX_DATA_DIR") or get_default_data_dir(APP_NAME))
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "offline_queue.db"
DEVICE_ID_PATH = DATA_DIR / "client_id.txt"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class OfflineSyncSettings:
    api_base_url: str = field(
        default_factory=lambda: os.environ.get("LEARNRELAX_API_URL", "http://localhost:5000")
    )
    request_timeout_sec: float = field(
        default_factory=lambda: _env_float("LEARNRELAX_API_TIMEOUT", 10.0)
    )
    # Offline -> online transitions closer together than this collapse into one sync.
    reconnect_debounce_sec: float = 2.0
    auto_sync: bool = True
    log_path: Path = SYNC_LOG_PATH


SYNC = OfflineSyncSettings()


@dataclass(frozen=True)
class ConnectivitySettings:
    probe_enabled: bool = True
    probe_interval_sec: int = 15
    probe_timeout_sec: float = 3.0


CONNECTIVITY = ConnectivitySettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "DB_PATH",
    "DEVICE_ID_PATH",
    "SYNC_LOG_PATH",
    "SYNC",
    "CONNECTIVITY",
    "ConnectivitySettings",
    "OfflineSyncSettings",
    "get_default_data_dir",
]
