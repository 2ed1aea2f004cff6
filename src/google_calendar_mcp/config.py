"""Server configuration loading and validation.

Settings come from an optional TOML file (``--config`` or ``GCAL_MCP_CONFIG``)
with ``[auth]``, ``[calendar]`` and ``[logging]`` sections. ``${VAR}``
references in string values are resolved from the environment, and the
``CLIENT_SECRET_PATH`` / ``TOKEN_PATH`` variables override the file.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_PATH_ENV = "GCAL_MCP_CONFIG"
CLIENT_SECRET_PATH_ENV = "CLIENT_SECRET_PATH"
TOKEN_PATH_ENV = "TOKEN_PATH"

# ${VAR_NAME} references; names are alphanumeric plus underscore.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when server configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"


@dataclass
class AuthConfig:
    client_secret_path: Path
    token_path: Path
    timeout_seconds: float = 300.0
    open_browser: bool = True


@dataclass
class ServerConfig:
    auth: AuthConfig
    default_calendar_id: str = "primary"
    request_timeout_seconds: float = 30.0
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged. Raises ``ConfigError`` if a referenced variable is not set.
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
            return match.group(0)  # keep placeholder for error reporting
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _read_toml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = tomllib.loads(config_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
    return resolve_env_vars(data)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _positive_float(section: dict[str, Any], key: str, default: float, where: str) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int | float) or raw <= 0:
        raise ConfigError(f"{where}.{key} must be a positive number, got {raw!r}")
    return float(raw)


def _path_setting(env_name: str, section: dict[str, Any], key: str) -> Path | None:
    value = os.environ.get(env_name) or section.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if not isinstance(value, str):
        raise ConfigError(f"auth.{key} must be a string path, got {value!r}")
    return Path(value.strip()).expanduser()


def load_config(config_path: Path | None = None) -> ServerConfig:
    """Load the server configuration.

    *config_path* falls back to ``$GCAL_MCP_CONFIG``; with neither, only the
    environment is consulted. Raises ``ConfigError`` when the client secret or
    token path is missing or any setting is malformed.
    """
    if config_path is None and os.environ.get(CONFIG_PATH_ENV):
        config_path = Path(os.environ[CONFIG_PATH_ENV]).expanduser()

    data = _read_toml(config_path) if config_path is not None else {}

    auth_section = _section(data, "auth")
    client_secret_path = _path_setting(CLIENT_SECRET_PATH_ENV, auth_section, "client_secret_path")
    token_path = _path_setting(TOKEN_PATH_ENV, auth_section, "token_path")
    if client_secret_path is None or token_path is None:
        raise ConfigError(
            f"Both {CLIENT_SECRET_PATH_ENV} and {TOKEN_PATH_ENV} must be set "
            "(environment variables or [auth] client_secret_path / token_path)"
        )

    open_browser = auth_section.get("open_browser", True)
    if not isinstance(open_browser, bool):
        raise ConfigError(f"auth.open_browser must be a boolean, got {open_browser!r}")

    auth = AuthConfig(
        client_secret_path=client_secret_path,
        token_path=token_path,
        timeout_seconds=_positive_float(auth_section, "timeout_seconds", 300.0, "auth"),
        open_browser=open_browser,
    )

    calendar_section = _section(data, "calendar")
    default_calendar_id = str(calendar_section.get("default_calendar_id", "primary")).strip()
    if not default_calendar_id:
        raise ConfigError("calendar.default_calendar_id must be a non-empty string")

    logging_section = _section(data, "logging")
    log_level = str(logging_section.get("level", "INFO")).upper()
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"Invalid logging.format: {log_format!r}. Expected 'text' or 'json'.")

    return ServerConfig(
        auth=auth,
        default_calendar_id=default_calendar_id,
        request_timeout_seconds=_positive_float(
            calendar_section, "request_timeout_seconds", 30.0, "calendar"
        ),
        logging=LoggingConfig(level=log_level, format=log_format),
    )
