"""Rolodex configuration loading and validation.

Reads ``rolodex.toml``, resolves ``${VAR}`` references against the process
environment, and returns a validated ``RolodexConfig`` dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rolodex.classification.ai import (
    DEFAULT_CLASSIFIER_MODEL,
    DEFAULT_MAX_BODY_CHARS,
    DEFAULT_TIMEOUT_S,
)
from rolodex.db import db_params_from_env, normalize_ssl_mode

CONFIG_FILENAME = "rolodex.toml"

# Pattern matching ${VAR_NAME}: alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class DatabaseConfig:
    """Connection settings from the [database] section.

    Host/port/user/password default to ``DATABASE_URL`` / ``POSTGRES_*``.
    """

    name: str = "rolodex"
    host: str = "localhost"
    port: int = 5432
    user: str = "rolodex"
    password: str = "rolodex"
    ssl: str | None = None
    min_pool_size: int = 2
    max_pool_size: int = 10


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class ClassifierConfig:
    """AI classifier settings from the [classifier] section.

    The AI fallback is disabled when no API key is configured; weak heuristic
    results are then kept as-is.
    """

    api_key: str | None = None
    model: str = DEFAULT_CLASSIFIER_MODEL
    timeout_s: float = DEFAULT_TIMEOUT_S
    max_body_chars: int = DEFAULT_MAX_BODY_CHARS
    cache_ttl_s: float = 300.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass
class VerificationConfig:
    """Auto-verification thresholds from the [verification] section."""

    auto_verify_min_emails: int = 3
    queue_min_confidence: float = 0.85
    queue_min_emails: int = 2
    batch_concurrency: int = 5


@dataclass
class SyncConfig:
    """Directory sync settings from the [sync] section."""

    lease_timeout_s: float = 900.0
    interval_s: float = 3600.0
    page_size: int = 200
    request_timeout_s: float = 20.0
    access_token_env: str = "ROLODEX_GOOGLE_ACCESS_TOKEN"


@dataclass
class RolodexConfig:
    """Parsed and validated rolodex configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]
    if isinstance(value, str):
        return _resolve_string(value)
    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )
    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name, {})
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a TOML table")
    return raw


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.")
    return raw


def _positive_float(section: dict[str, Any], key: str, default: float, path: str) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int | float) or raw <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive number.")
    return float(raw)


def _parse_database(section: dict[str, Any]) -> DatabaseConfig:
    env_params = db_params_from_env()
    name = str(section.get("name", "rolodex")).strip()
    if not name:
        raise ConfigError("database.name must be a non-empty string")
    min_pool = _positive_int(section, "min_pool_size", 2, "database")
    max_pool = _positive_int(section, "max_pool_size", 10, "database")
    if min_pool > max_pool:
        raise ConfigError("database.min_pool_size must not exceed database.max_pool_size")
    ssl = section.get("ssl", env_params["ssl"])
    return DatabaseConfig(
        name=name,
        host=str(section.get("host", env_params["host"])),
        port=int(section.get("port", env_params["port"])),
        user=str(section.get("user", env_params["user"])),
        password=str(section.get("password", env_params["password"])),
        ssl=normalize_ssl_mode(ssl) if isinstance(ssl, str) else None,
        min_pool_size=min_pool,
        max_pool_size=max_pool,
    )


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    log_level = str(section.get("level", "INFO")).upper()
    log_format = str(section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=log_level, format=log_format, log_file=section.get("log_file"))


def _parse_classifier(section: dict[str, Any]) -> ClassifierConfig:
    api_key = section.get("api_key")
    if api_key is not None and not isinstance(api_key, str):
        raise ConfigError("classifier.api_key must be a string when set")
    model = section.get("model", DEFAULT_CLASSIFIER_MODEL)
    if not isinstance(model, str) or not model.strip():
        raise ConfigError("classifier.model must be a non-empty string")
    return ClassifierConfig(
        api_key=(api_key.strip() or None) if api_key else None,
        model=model.strip(),
        timeout_s=_positive_float(section, "timeout_s", DEFAULT_TIMEOUT_S, "classifier"),
        max_body_chars=_positive_int(
            section, "max_body_chars", DEFAULT_MAX_BODY_CHARS, "classifier"
        ),
        cache_ttl_s=_positive_float(section, "cache_ttl_s", 300.0, "classifier"),
    )


def _parse_verification(section: dict[str, Any]) -> VerificationConfig:
    confidence = section.get("queue_min_confidence", 0.85)
    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        raise ConfigError("verification.queue_min_confidence must be a number")
    if not 0.0 <= float(confidence) <= 1.0:
        raise ConfigError(
            f"Invalid verification.queue_min_confidence: {confidence!r}. Must be within [0, 1]."
        )
    return VerificationConfig(
        auto_verify_min_emails=_positive_int(section, "auto_verify_min_emails", 3, "verification"),
        queue_min_confidence=float(confidence),
        queue_min_emails=_positive_int(section, "queue_min_emails", 2, "verification"),
        batch_concurrency=_positive_int(section, "batch_concurrency", 5, "verification"),
    )


def _parse_sync(section: dict[str, Any]) -> SyncConfig:
    page_size = _positive_int(section, "page_size", 200, "sync")
    if page_size > 1000:
        raise ConfigError(f"Invalid sync.page_size: {page_size!r}. Maximum is 1000.")
    access_token_env = section.get("access_token_env", "ROLODEX_GOOGLE_ACCESS_TOKEN")
    if not isinstance(access_token_env, str) or not access_token_env.strip():
        raise ConfigError("sync.access_token_env must be a non-empty string")
    return SyncConfig(
        lease_timeout_s=_positive_float(section, "lease_timeout_s", 900.0, "sync"),
        interval_s=_positive_float(section, "interval_s", 3600.0, "sync"),
        page_size=page_size,
        request_timeout_s=_positive_float(section, "request_timeout_s", 20.0, "sync"),
        access_token_env=access_token_env.strip(),
    )


def parse_config(data: dict[str, Any]) -> RolodexConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)
    return RolodexConfig(
        database=_parse_database(_section(data, "database")),
        logging=_parse_logging(_section(data, "logging")),
        classifier=_parse_classifier(_section(data, "classifier")),
        verification=_parse_verification(_section(data, "verification")),
        sync=_parse_sync(_section(data, "sync")),
    )


def load_config(path: Path) -> RolodexConfig:
    """Load and validate a ``rolodex.toml``.

    *path* may point at the file itself or at the directory holding it.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    toml_path = path / CONFIG_FILENAME if path.is_dir() else path
    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
