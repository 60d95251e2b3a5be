"""Runtime configuration.

Loaded from a JSON file (default ~/.config/imgupv2/config.json), with
environment overrides:

    IMGUP_CONFIG     path of the configuration file
    IMGUP_EXIFTOOL   path of the exiftool executable
    IMGUP_LOG_LEVEL  log level name (default WARNING)
    IMGUP_DEBUG      any non-empty value forces DEBUG logging

File layout:
    {
        "default": {"format": "markdown"},
        "templates": {"wiki": "[[%image_url%]]"},
        "exiftool": "/opt/homebrew/bin/exiftool",
        "flickr": {"consumer_key": "...", "access_token": "..."}
    }

Every other top-level object is the settings block of the backend with
that name.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .collaborators.templates import DEFAULT_FORMAT, merge_templates
from .errors import ConfigError

logger = logging.getLogger(__name__)

_RESERVED_KEYS = frozenset({"default", "templates", "exiftool"})


def default_config_path() -> Path:
    """Configuration file location, honouring IMGUP_CONFIG."""
    if env_path := os.getenv("IMGUP_CONFIG"):
        return Path(env_path)
    return Path.home() / ".config" / "imgupv2" / "config.json"


@dataclass
class RuntimeConfig:
    """Settings for the protocol engine and its collaborators."""

    default_format: str = DEFAULT_FORMAT
    templates: dict[str, str] = field(default_factory=merge_templates)
    exiftool_path: str | None = None
    embed_metadata: bool = True
    log_level: str = "WARNING"
    backends: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuntimeConfig:
        """Build a configuration from the parsed JSON file.

        Raises:
            ConfigError: If a section has the wrong type
        """
        defaults = data.get("default") or {}
        templates = data.get("templates") or {}
        if not isinstance(defaults, dict) or not isinstance(templates, dict):
            raise ConfigError("'default' and 'templates' must be JSON objects")

        exiftool = data.get("exiftool")
        if exiftool is not None and not isinstance(exiftool, str):
            raise ConfigError("'exiftool' must be a string")

        backends = {
            name: settings
            for name, settings in data.items()
            if name not in _RESERVED_KEYS and isinstance(settings, dict)
        }
        return cls(
            default_format=str(defaults.get("format") or DEFAULT_FORMAT),
            templates=merge_templates({str(k): str(v) for k, v in templates.items()}),
            exiftool_path=exiftool,
            backends=backends,
        )

    @classmethod
    def load(cls, path: Path | None = None) -> RuntimeConfig:
        """Load configuration from `path` (or the default location).

        A missing file yields the defaults.

        Raises:
            ConfigError: If the file cannot be read or is not valid JSON
        """
        path = path or default_config_path()
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"No configuration at {path}, using defaults")
            config = cls()
        except OSError as e:
            raise ConfigError(f"failed to read config {path}: {e}") from e
        else:
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigError(f"failed to parse config {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"config {path} must contain a JSON object")
            config = cls.from_dict(data)

        config.apply_environment()
        return config

    def apply_environment(self) -> None:
        """Apply IMGUP_* environment overrides."""
        if exiftool := os.getenv("IMGUP_EXIFTOOL"):
            self.exiftool_path = exiftool
        if level := os.getenv("IMGUP_LOG_LEVEL"):
            self.log_level = level.upper()
        if os.getenv("IMGUP_DEBUG"):
            self.log_level = "DEBUG"
