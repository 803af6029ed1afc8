"""
Shared YAML configuration loading.

Services describe their configuration as pydantic models with no defaults
and load it once per process through ``create_settings_loader``.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import yaml

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import BaseModel

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEY_PARTS: tuple[str, ...] = ("password", "secret", "private_key", "api_key")

SettingsT = TypeVar("SettingsT", bound="BaseModel")


def get_config_path(env_var_name: str, default_filename: str) -> Path:
    """
    Resolve the configuration file path.

    The environment variable wins; otherwise ``default_filename`` is looked up
    relative to the current working directory.
    """
    configured = os.environ.get(env_var_name)
    if configured:
        return Path(configured)
    return Path.cwd() / default_filename


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Read a YAML mapping from disk."""
    if not config_path.is_file():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return raw


def create_settings_loader(
    settings_cls: type[SettingsT],
    path_resolver: Callable[[], Path],
) -> tuple[Callable[[], SettingsT], Callable[[], None]]:
    """
    Build a cached ``get_settings`` function and its cache-clearing companion.

    Validation errors propagate: a service must not start on a broken config.
    """

    @lru_cache(maxsize=1)
    def get_settings() -> SettingsT:
        raw = load_yaml_config(path_resolver())
        return settings_cls.model_validate(raw)

    def clear_settings_cache() -> None:
        get_settings.cache_clear()

    return get_settings, clear_settings_cache


def _redact(value: Any, marker: str) -> Any:
    if isinstance(value, dict):
        return {
            key: marker
            if any(part in str(key).lower() for part in _SENSITIVE_KEY_PARTS)
            else _redact(item, marker)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item, marker) for item in value]
    return value


def get_safe_model_config(settings: BaseModel, marker: str = REDACTION_MARKER) -> dict[str, Any]:
    """Dump settings with sensitive keys replaced by ``marker``."""
    redacted: dict[str, Any] = _redact(settings.model_dump(), marker)
    return redacted
