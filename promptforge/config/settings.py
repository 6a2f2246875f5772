"""
Application settings.

Resolution order (later wins):
1. Built-in defaults
2. Optional YAML file (``PROMPTFORGE_CONFIG`` or an explicit path)
3. Environment variables

Example YAML:
    call_timeout: 45
    max_failover_attempts: 3
    high_quality_preference: [anthropic, openai]
    providers:
      groq:
        model: llama-3.1-8b-instant
        max_tokens: 1000
        max_retries: 2
    cache_ttls:
      suggestions: 600
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from promptforge.exceptions import ConfigurationError
from promptforge.providers.base import ProviderName, ProviderSettings
from promptforge.providers.registry import (
    DEFAULT_HIGH_QUALITY_PREFERENCE,
    DEFAULT_PROVIDER_SETTINGS,
)

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "PROMPTFORGE_CONFIG"

# Environment variable overriding each backend's model
MODEL_ENV_VARS = {
    ProviderName.OPENAI: "OPENAI_MODEL",
    ProviderName.ANTHROPIC: "ANTHROPIC_MODEL",
    ProviderName.GOOGLE: "GOOGLE_MODEL",
    ProviderName.GROQ: "GROQ_MODEL",
}


# Value type of each per-backend setting accepted from YAML
PROVIDER_FIELD_TYPES: dict[str, type] = {
    "model": str,
    "max_tokens": int,
    "temperature": float,
    "timeout_seconds": float,
    "max_retries": int,
    "base_url": str,
}

@dataclass
class AppSettings:
    """Engine-wide settings."""

    providers: dict[ProviderName, ProviderSettings] = field(
        default_factory=lambda: {name: replace(s) for name, s in DEFAULT_PROVIDER_SETTINGS.items()}
    )
    call_timeout: float = 60.0
    max_failover_attempts: int = 3
    default_target_quality: int = 85
    high_quality_preference: tuple[str, ...] = DEFAULT_HIGH_QUALITY_PREFERENCE
    cache_ttls: dict[str, float] = field(default_factory=dict)
    log_level: str = "INFO"


def _coerce(value: Any, kind: type, key: str) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {key}: {value!r}", config_key=key
        ) from e


def _apply_provider_overrides(
    settings: AppSettings, overrides: Mapping[str, Any]
) -> None:
    known = {f.name for f in fields(ProviderSettings)}
    for raw_name, values in overrides.items():
        try:
            name = ProviderName(str(raw_name).lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown provider in configuration: {raw_name}", config_key="providers"
            ) from e
        if not isinstance(values, Mapping):
            raise ConfigurationError(
                f"Provider settings for {raw_name} must be a mapping",
                config_key=f"providers.{raw_name}",
            )
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown settings for {raw_name}: {', '.join(sorted(unknown))}",
                config_key=f"providers.{raw_name}",
            )
        coerced = {}
        for key, value in values.items():
            if value is None and key == "base_url":
                coerced[key] = None
            else:
                coerced[key] = _coerce(
                    value, PROVIDER_FIELD_TYPES[key], f"providers.{name.value}.{key}"
                )
        if coerced.get("max_retries", 1) < 1:
            raise ConfigurationError(
                f"max_retries for {raw_name} must be at least 1",
                config_key=f"providers.{name.value}.max_retries",
            )
        settings.providers[name] = replace(settings.providers[name], **coerced)


def _apply_yaml(settings: AppSettings, path: Path) -> None:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}") from e

    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Top level of {path} must be a mapping")

    if "providers" in data:
        _apply_provider_overrides(settings, data["providers"] or {})
    if "call_timeout" in data:
        settings.call_timeout = _coerce(data["call_timeout"], float, "call_timeout")
    if "max_failover_attempts" in data:
        settings.max_failover_attempts = _coerce(
            data["max_failover_attempts"], int, "max_failover_attempts"
        )
    if "default_target_quality" in data:
        settings.default_target_quality = _coerce(
            data["default_target_quality"], int, "default_target_quality"
        )
    if "high_quality_preference" in data:
        settings.high_quality_preference = tuple(
            str(name).lower() for name in data["high_quality_preference"] or ()
        )
    if "cache_ttls" in data:
        settings.cache_ttls = {
            str(op): _coerce(ttl, float, f"cache_ttls.{op}")
            for op, ttl in (data["cache_ttls"] or {}).items()
        }
    if "log_level" in data:
        settings.log_level = str(data["log_level"]).upper()

    logger.info(f"Loaded settings from {path}")


def _apply_env(settings: AppSettings, environ: Mapping[str, str]) -> None:
    for name, var in MODEL_ENV_VARS.items():
        if environ.get(var):
            settings.providers[name] = replace(settings.providers[name], model=environ[var])

    if environ.get("PROMPTFORGE_CALL_TIMEOUT"):
        settings.call_timeout = _coerce(
            environ["PROMPTFORGE_CALL_TIMEOUT"], float, "PROMPTFORGE_CALL_TIMEOUT"
        )
    if environ.get("PROMPTFORGE_MAX_FAILOVER"):
        settings.max_failover_attempts = _coerce(
            environ["PROMPTFORGE_MAX_FAILOVER"], int, "PROMPTFORGE_MAX_FAILOVER"
        )
    if environ.get("LOG_LEVEL"):
        settings.log_level = environ["LOG_LEVEL"].upper()


def load_settings(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppSettings:
    """
    Build settings from defaults, an optional YAML file and the environment.

    Args:
        config_path: YAML file to read (defaults to $PROMPTFORGE_CONFIG)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        AppSettings

    Raises:
        ConfigurationError: If the file is malformed or a value has the wrong type
    """
    environ = os.environ if environ is None else environ
    settings = AppSettings()

    path = config_path or environ.get(CONFIG_PATH_ENV)
    if path:
        path = Path(path)
        if path.exists():
            _apply_yaml(settings, path)
        else:
            logger.warning(f"Settings file not found: {path}")

    _apply_env(settings, environ)

    if settings.call_timeout <= 0:
        raise ConfigurationError("call_timeout must be positive", config_key="call_timeout")
    if settings.max_failover_attempts < 1:
        raise ConfigurationError(
            "max_failover_attempts must be at least 1", config_key="max_failover_attempts"
        )
    if not 0 <= settings.default_target_quality <= 100:
        raise ConfigurationError(
            "default_target_quality must be within 0-100", config_key="default_target_quality"
        )
    return settings
