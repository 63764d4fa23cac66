"""Tests for config.py and logging_config.py."""

import json
import logging

import pytest

from config import ENV_KEYS, Config, load_config
from logging_config import JSONFormatter, PlainFormatter, setup_logging, split_tag


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for env_name in ENV_KEYS.values():
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.delenv("CONTACTS_MCP_CONFIG", raising=False)


class TestConfig:
    def test_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.json")
        assert config.base_url == "http://localhost:8080"
        assert config.host == "localhost"
        assert config.port == 8080
        assert config.auto_register_clients is True
        assert config.upstream_timeout == 15
        assert config.upstream_scopes is None
        assert config.credential_file.endswith("google_credentials.json")
        assert config.log_level == "INFO"
        assert config.log_json is False

    def test_file_then_env(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"base_url": "https://from-file.example/", "port": 9000}))
        monkeypatch.setenv("MCP_PORT", "9100")
        monkeypatch.setenv("AUTO_REGISTER_CLIENTS", "false")
        monkeypatch.setenv("OAUTH_UPSTREAM_SCOPES", "openid, email")

        config = load_config(path)
        assert config.base_url == "https://from-file.example"
        assert config.port == 9100
        assert config.auto_register_clients is False
        assert config.upstream_scopes == ["openid", "email"]

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"secret_project": "p", "secret_name": "n"}))
        monkeypatch.setenv("CONTACTS_MCP_CONFIG", str(path))

        config = load_config()
        assert config.secret_project == "p"
        assert config.secret_name == "n"

    def test_unreadable_file_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken")
        assert load_config(path).base_url == "http://localhost:8080"

    @pytest.mark.parametrize("value,expected", [("1", True), ("yes", True), ("0", False), ("off", False), (True, True)])
    def test_bool_values(self, value, expected):
        assert Config({"log_json": value}).log_json is expected


class TestLogging:
    def _record(self, message):
        return logging.LogRecord("oauth.server", logging.INFO, __file__, 10, message, None, None)

    def test_split_tag(self):
        assert split_tag("[TOKEN] Issued token") == ("TOKEN", "Issued token")
        assert split_tag("no tag here") == (None, "no tag here")

    def test_json_formatter(self):
        line = JSONFormatter().format(self._record("[AUTHORIZE] Redirecting client claude"))
        entry = json.loads(line)
        assert entry["tag"] == "AUTHORIZE"
        assert entry["message"] == "Redirecting client claude"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "oauth.server"

    def test_plain_formatter(self):
        text = PlainFormatter().format(self._record("[REAPER] Stopped"))
        assert text.endswith("[INFO] [REAPER] Stopped")

    def test_setup_logging(self):
        root = setup_logging(level="debug", json_format=True)
        try:
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            setup_logging()
