"""Process-level settings: file locations and the hub access token.

Environment variables:
    CHATPIPE_MODELS: Path to the model registry TOML (default: ./models.toml).
    CHATPIPE_CONFIG: Path to the settings TOML (default: ./config.toml).
    HF_TOKEN: Hugging Face access token; takes precedence over the settings file.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from chatpipe.engine.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_FILE = "models.toml"
DEFAULT_SETTINGS_FILE = "config.toml"


def registry_path(path: str | os.PathLike[str] | None = None) -> Path:
    if path is not None:
        return Path(path)
    return Path(os.environ.get("CHATPIPE_MODELS", DEFAULT_REGISTRY_FILE))


def settings_path(path: str | os.PathLike[str] | None = None) -> Path:
    if path is not None:
        return Path(path)
    return Path(os.environ.get("CHATPIPE_CONFIG", DEFAULT_SETTINGS_FILE))


def read_toml(path: Path) -> dict[str, Any]:
    """Parse a TOML file, mapping I/O and syntax problems to ConfigurationError."""
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc


def load_hf_token(path: str | os.PathLike[str] | None = None) -> str | None:
    """Return the hub token from $HF_TOKEN or `[huggingface] token`, if any."""
    token = os.environ.get("HF_TOKEN")
    if token:
        return token

    p = settings_path(path)
    if not p.is_file():
        return None

    data = read_toml(p)
    section = data.get("huggingface")
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigurationError(f"{p}: [huggingface] must be a table")
    token = section.get("token")
    if token is not None and not isinstance(token, str):
        raise ConfigurationError(f"{p}: huggingface.token must be a string")
    if token:
        logger.debug("Using hub token from %s", p)
    return token or None
