"""User configuration stored at ~/.SourceSailor/config.json.

A flat JSON object of API keys, default models, the analysis output
directory and the reader's expertise profile.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".SourceSailor"
CONFIG_FILENAME = "config.json"

DEFAULT_MODEL_KEY = "DEFAULT_MODEL"
ANALYSIS_DIR_KEY = "ANALYSIS_DIR"
USER_EXPERTISE_KEY = "USER_EXPERTISE"
PROJECT_ROOT_MARKER = "p"  # ANALYSIS_DIR value meaning "next to the project"

API_KEY_NAMES = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}
PROVIDER_MODEL_KEYS = {
    "openai": "DEFAULT_OPENAI_MODEL",
    "anthropic": "DEFAULT_ANTHROPIC_MODEL",
    "gemini": "DEFAULT_GEMINI_MODEL",
}
SECRET_KEYS = frozenset(API_KEY_NAMES.values())


def config_path() -> Path:
    return Path.home() / CONFIG_DIRNAME / CONFIG_FILENAME


def read_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load the config. Missing or malformed files give an empty mapping."""
    path = Path(path) if path else config_path()
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.error("Failed to read config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.error("Ignoring config %s: expected a JSON object", path)
        return {}
    return data


def write_config(values: dict[str, Any], path: str | Path | None = None) -> Path:
    path = Path(path) if path else config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(values, f, indent=2)
    return path


def update_config(updates: dict[str, Any], path: str | Path | None = None) -> dict[str, Any]:
    """Merge non-empty ``updates`` into the stored config and save it."""
    config = read_config(path)
    config.update({k: v for k, v in updates.items() if v not in (None, "")})
    write_config(config, path)
    return config


def mask_secret(value: str) -> str:
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"
