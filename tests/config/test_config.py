"""Tests for server configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from google_calendar_mcp.config import (
    CLIENT_SECRET_PATH_ENV,
    CONFIG_PATH_ENV,
    TOKEN_PATH_ENV,
    ConfigError,
    load_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (CONFIG_PATH_ENV, CLIENT_SECRET_PATH_ENV, TOKEN_PATH_ENV):
        monkeypatch.delenv(name, raising=False)


def _write_toml(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "gcal.toml"
    path.write_text(content)
    return path


# ---------------------------------------------------------------------------
# resolve_env_vars
# ---------------------------------------------------------------------------


class TestResolveEnvVars:
    def test_simple_string(self, monkeypatch):
        monkeypatch.setenv("MY_SECRET", "hunter2")
        assert resolve_env_vars("${MY_SECRET}") == "hunter2"

    def test_partial_string(self, monkeypatch):
        monkeypatch.setenv("HOME_DIR", "/home/me")
        assert resolve_env_vars("${HOME_DIR}/.config/token.json") == (
            "/home/me/.config/token.json"
        )

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("ITEM", "alpha")
        data = {"outer": {"items": ["${ITEM}", "literal"]}, "count": 3}
        assert resolve_env_vars(data) == {"outer": {"items": ["alpha", "literal"]}, "count": 3}

    def test_missing_variables_reported_together(self, monkeypatch):
        monkeypatch.delenv("NOPE_A", raising=False)
        monkeypatch.delenv("NOPE_B", raising=False)
        with pytest.raises(ConfigError, match="NOPE_A, NOPE_B"):
            resolve_env_vars("${NOPE_A}:${NOPE_B}")


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_environment_only(self, monkeypatch, tmp_path):
        monkeypatch.setenv(CLIENT_SECRET_PATH_ENV, str(tmp_path / "secret.json"))
        monkeypatch.setenv(TOKEN_PATH_ENV, str(tmp_path / "token.json"))

        config = load_config()

        assert config.auth.client_secret_path == tmp_path / "secret.json"
        assert config.auth.token_path == tmp_path / "token.json"
        assert config.auth.timeout_seconds == 300.0
        assert config.auth.open_browser is True
        assert config.default_calendar_id == "primary"
        assert config.request_timeout_seconds == 30.0
        assert config.logging.level == "INFO"
        assert config.logging.format == "text"

    def test_missing_paths_raise(self, monkeypatch, tmp_path):
        monkeypatch.setenv(CLIENT_SECRET_PATH_ENV, str(tmp_path / "secret.json"))
        with pytest.raises(ConfigError, match="CLIENT_SECRET_PATH and TOKEN_PATH"):
            load_config()

    def test_full_file(self, tmp_path):
        path = _write_toml(
            tmp_path,
            f"""
[auth]
client_secret_path = "{tmp_path / 'secret.json'}"
token_path = "{tmp_path / 'token.json'}"
timeout_seconds = 60
open_browser = false

[calendar]
default_calendar_id = "team@example.com"
request_timeout_seconds = 12.5

[logging]
level = "debug"
format = "JSON"
""",
        )

        config = load_config(path)

        assert config.auth.timeout_seconds == 60.0
        assert config.auth.open_browser is False
        assert config.default_calendar_id == "team@example.com"
        assert config.request_timeout_seconds == 12.5
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"

    def test_environment_overrides_file_paths(self, monkeypatch, tmp_path):
        path = _write_toml(
            tmp_path,
            '[auth]\nclient_secret_path = "/from/file.json"\ntoken_path = "/from/token.json"\n',
        )
        monkeypatch.setenv(TOKEN_PATH_ENV, "/from/env/token.json")

        config = load_config(path)

        assert config.auth.client_secret_path == Path("/from/file.json")
        assert config.auth.token_path == Path("/from/env/token.json")

    def test_config_path_from_environment(self, monkeypatch, tmp_path):
        path = _write_toml(
            tmp_path,
            '[auth]\nclient_secret_path = "/s.json"\ntoken_path = "/t.json"\n'
            '[calendar]\ndefault_calendar_id = "work"\n',
        )
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        assert load_config().default_calendar_id == "work"

    def test_env_var_references_in_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GCAL_HOME", str(tmp_path))
        path = _write_toml(
            tmp_path,
            '[auth]\nclient_secret_path = "${GCAL_HOME}/secret.json"\n'
            'token_path = "${GCAL_HOME}/token.json"\n',
        )

        config = load_config(path)

        assert config.auth.client_secret_path == tmp_path / "secret.json"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            load_config(tmp_path / "absent.toml")

    def test_invalid_toml(self, tmp_path):
        path = _write_toml(tmp_path, "[auth\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)

    @pytest.mark.parametrize(
        ("section", "match"),
        [
            ('[auth]\ntimeout_seconds = 0\n', "auth.timeout_seconds"),
            ('[auth]\ntimeout_seconds = true\n', "auth.timeout_seconds"),
            ('[auth]\nopen_browser = "yes"\n', "auth.open_browser"),
            ('[calendar]\nrequest_timeout_seconds = -1\n', "calendar.request_timeout_seconds"),
            ('[calendar]\ndefault_calendar_id = "  "\n', "default_calendar_id"),
            ('[logging]\nformat = "xml"\n', "Invalid logging.format"),
            ('auth = "flat"\n', r"\[auth\] must be a table"),
        ],
    )
    def test_invalid_settings(self, monkeypatch, tmp_path, section, match):
        monkeypatch.setenv(CLIENT_SECRET_PATH_ENV, "/s.json")
        monkeypatch.setenv(TOKEN_PATH_ENV, "/t.json")
        path = _write_toml(tmp_path, section)
        with pytest.raises(ConfigError, match=match):
            load_config(path)
