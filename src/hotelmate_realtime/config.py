"""
Settings for the hub and the CLI.

Precedence: keyword overrides > HOTELMATE_* environment > ~/.hotelmate/config.json > defaults.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".hotelmate" / "config.json"
ENV_PREFIX = "HOTELMATE_"


class Settings(BaseModel):
    api_base_url: str = "https://hotel-porter-d25ad83b12cf.herokuapp.com/api"
    realtime_url: Optional[str] = None
    hotel_slug: Optional[str] = None
    staff_id: Optional[str] = None
    auth_token: Optional[str] = None
    ledger_capacity: int = 1000
    attendance_window_s: float = 5.0
    guest_page_size: int = 50
    notification_limit: int = 200


def _load_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _from_env(env: Mapping[str, str]) -> dict[str, str]:
    values = {}
    for name in Settings.model_fields:
        key = ENV_PREFIX + name.upper()
        if env.get(key):
            values[name] = env[key]
    return values


def load_settings(
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> Settings:
    merged: dict[str, Any] = {}
    merged.update({k: v for k, v in _load_file(path or CONFIG_FILE).items() if k in Settings.model_fields})
    merged.update(_from_env(os.environ if env is None else env))
    merged.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**merged)
    except ValidationError as e:
        raise ValueError(f"Invalid settings: {e}") from e


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(settings.model_dump(exclude_none=True), indent=2))
    return target
