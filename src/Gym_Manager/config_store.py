"""
Gym_Manager.config_store

Centralized configuration for Gym Manager.

Responsibilities:
- Pick the data location for the current environment
  (GYM_MANAGER_ENV = development | production, GYM_MANAGER_DATA_DIR override)
- Persist user config to a JSON file next to the database image
- Provide helpers for:
    - storage backend selection (file / keyvalue / memory)
    - autosave and status-refresh intervals
    - dashboard preferences (view mode, "expiring soon" window)

Environment variables may also come from a .env file (python-dotenv).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Paths & constants
# ---------------------------------------------------------------------------

ENV_VAR = "GYM_MANAGER_ENV"
DATA_DIR_VAR = "GYM_MANAGER_DATA_DIR"
LOG_LEVEL_VAR = "GYM_MANAGER_LOG_LEVEL"

ENV_DEVELOPMENT = "development"
ENV_PRODUCTION = "production"

CONFIG_FILENAME = "user_config.json"

# Package directory: .../src/Gym_Manager
_PACKAGE_DIR = Path(__file__).resolve().parent

_VALID_BACKENDS = {"file", "keyvalue", "memory"}
_VALID_VIEW_MODES = {"list", "cards"}


def get_environment() -> str:
    load_dotenv()
    env = (os.getenv(ENV_VAR) or ENV_PRODUCTION).strip().lower()
    if env in ("dev", "develop"):
        env = ENV_DEVELOPMENT
    if env not in (ENV_DEVELOPMENT, ENV_PRODUCTION):
        log.warning("Unknown %s=%r, falling back to production", ENV_VAR, env)
        env = ENV_PRODUCTION
    return env


def get_log_level() -> str:
    load_dotenv()
    return (os.getenv(LOG_LEVEL_VAR) or "INFO").strip().upper()


def get_data_dir(base_dir: Optional[Path] = None) -> Path:
    """
    Directory holding the database image and the config file.

    - explicit base_dir wins
    - then GYM_MANAGER_DATA_DIR
    - development: src/Gym_Manager/data/db/
    - production:  ~/.gym_manager/
    """
    if base_dir is not None:
        return Path(base_dir)

    load_dotenv()
    override = os.getenv(DATA_DIR_VAR)
    if override:
        return Path(override).expanduser()

    if get_environment() == ENV_DEVELOPMENT:
        return _PACKAGE_DIR / "data" / "db"
    return Path.home() / ".gym_manager"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class AppConfig:
    """
    Top-level config structure.

    Stored as JSON at: <data dir>/user_config.json
    """
    storage_backend: str = "file"
    autosave_interval_seconds: float = 30.0
    status_refresh_interval_seconds: float = 60.0
    expiring_soon_days: int = 7
    view_mode: str = "list"


# ---------------------------------------------------------------------------
# Internal helpers for JSON I/O
# ---------------------------------------------------------------------------


def _config_file(base_dir: Optional[Path] = None) -> Path:
    return get_data_dir(base_dir) / CONFIG_FILENAME


def _read_raw_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        # Corrupt or unreadable config: start from defaults
        log.warning("Ignoring unreadable config file %s", path, exc_info=True)
        return {}
    return data if isinstance(data, dict) else {}


def _write_raw_config(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)


def _positive_float(raw: Any, default: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _from_raw_config(raw: Dict[str, Any]) -> AppConfig:
    """
    Convert dict -> AppConfig, applying defaults for missing or invalid keys.
    """
    defaults = AppConfig()

    backend = str(raw.get("storage_backend") or defaults.storage_backend).lower()
    if backend not in _VALID_BACKENDS:
        backend = defaults.storage_backend

    view_mode = str(raw.get("view_mode") or defaults.view_mode).lower()
    if view_mode not in _VALID_VIEW_MODES:
        view_mode = defaults.view_mode

    try:
        expiring_days = int(raw.get("expiring_soon_days", defaults.expiring_soon_days))
    except (TypeError, ValueError):
        expiring_days = defaults.expiring_soon_days

    return AppConfig(
        storage_backend=backend,
        autosave_interval_seconds=_positive_float(
            raw.get("autosave_interval_seconds"), defaults.autosave_interval_seconds
        ),
        status_refresh_interval_seconds=_positive_float(
            raw.get("status_refresh_interval_seconds"), defaults.status_refresh_interval_seconds
        ),
        expiring_soon_days=max(1, expiring_days),
        view_mode=view_mode,
    )


# ---------------------------------------------------------------------------
# Public config API
# ---------------------------------------------------------------------------


def load_config(base_dir: Optional[Path] = None) -> AppConfig:
    return _from_raw_config(_read_raw_config(_config_file(base_dir)))


def save_config(cfg: AppConfig, base_dir: Optional[Path] = None) -> None:
    _write_raw_config(_config_file(base_dir), asdict(cfg))


def get_view_mode(base_dir: Optional[Path] = None) -> str:
    return load_config(base_dir).view_mode


def set_view_mode(mode: str, base_dir: Optional[Path] = None) -> None:
    cleaned = (mode or "").strip().lower()
    if cleaned not in _VALID_VIEW_MODES:
        raise ValueError(f"Invalid view mode: {mode!r}")
    cfg = load_config(base_dir)
    cfg.view_mode = cleaned
    save_config(cfg, base_dir)
