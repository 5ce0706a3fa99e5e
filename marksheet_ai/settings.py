"""
Runtime configuration: API credentials, model choice, debug flag and the
directory holding the persisted exam library and grading history.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from .utils import read_json, write_json

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
DEFAULT_DATA_DIR = Path.home() / ".marksheet-ai"
DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 3
SETTINGS_FILENAME = "settings.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigurationError(RuntimeError):
    """Raised when the settings needed for an operation are missing."""


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    debug: bool = False
    data_dir: Path = DEFAULT_DATA_DIR
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "API key not configured. Set OPENAI_API_KEY in the environment or a .env file."
            )
        return self.api_key

    def summary(self) -> Dict[str, Any]:
        """Settings safe to display (the key itself is never shown)."""
        data = asdict(self)
        data["data_dir"] = str(self.data_dir)
        data["api_key"] = bool(self.api_key)
        return data


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return default


def _as_float(value: Any, default: float) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if result > 0 else default


def _as_int(value: Any, default: int) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return default
    return result if result >= 0 else default


def _read_persisted(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = read_json(path)
    except (OSError, ValueError) as exc:
        logger.debug("Ignoring unreadable settings file %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    *,
    data_dir: Optional[Path] = None,
    use_dotenv: bool = True,
) -> Settings:
    """
    Resolve settings from ``.env``, the environment and the persisted file.

    Values saved with :func:`save_settings` (model, debug flag) take precedence
    over environment defaults. Malformed values fall back to the defaults.
    """
    if env is None:
        if use_dotenv:
            load_dotenv()
        env = os.environ

    base_dir = data_dir or Path(env.get("MARKSHEET_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()
    persisted = _read_persisted(base_dir / SETTINGS_FILENAME)

    model = persisted.get("model") or env.get("MARKSHEET_MODEL") or DEFAULT_MODEL
    debug = _as_bool(persisted.get("debug", env.get("MARKSHEET_DEBUG")), False)
    return Settings(
        api_key=(env.get("OPENAI_API_KEY") or "").strip() or None,
        model=str(model),
        debug=debug,
        data_dir=base_dir,
        timeout=_as_float(env.get("MARKSHEET_TIMEOUT"), DEFAULT_TIMEOUT),
        max_retries=_as_int(env.get("MARKSHEET_MAX_RETRIES"), DEFAULT_MAX_RETRIES),
    )


def save_settings(settings: Settings) -> None:
    """Persist the user-editable preferences. The API key is not written."""
    write_json(settings.settings_path, {"model": settings.model, "debug": settings.debug})


def update_settings(settings: Settings, **changes: Any) -> Settings:
    updated = replace(settings, **changes)
    save_settings(updated)
    return updated
