"""Config management for contacts-mcp-server.

Values come from an optional JSON file (~/.contacts-mcp/config.json, or the
path in CONTACTS_MCP_CONFIG), overridden by environment variables. Entry
points load `.env` with python-dotenv before calling load_config().
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".contacts-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_CREDENTIAL_FILE = "~/.credentials/google_credentials.json"

# config key -> environment variable
ENV_KEYS = {
    "base_url": "BASE_URL",
    "host": "MCP_HOST",
    "port": "MCP_PORT",
    "secret_project": "OAUTH_SECRET_PROJECT",
    "secret_name": "OAUTH_SECRET_NAME",
    "credential_file": "OAUTH_CREDENTIAL_FILE",
    "auto_register_clients": "AUTO_REGISTER_CLIENTS",
    "upstream_scopes": "OAUTH_UPSTREAM_SCOPES",
    "upstream_timeout": "OAUTH_UPSTREAM_TIMEOUT",
    "resource_scopes": "OAUTH_RESOURCE_SCOPES",
    "log_level": "LOG_LEVEL",
    "log_json": "LOG_JSON",
}


def _as_bool(value, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_list(value) -> Optional[list[str]]:
    if not value:
        return None
    if isinstance(value, list):
        return [str(v) for v in value if v]
    return [v for v in str(value).replace(",", " ").split() if v]


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def base_url(self) -> str:
        return (self.data.get("base_url") or "http://localhost:8080").rstrip("/")

    @property
    def host(self) -> str:
        return self.data.get("host") or "localhost"

    @property
    def port(self) -> int:
        return int(self.data.get("port") or 8080)

    @property
    def secret_project(self) -> str:
        return self.data.get("secret_project") or ""

    @property
    def secret_name(self) -> str:
        return self.data.get("secret_name") or ""

    @property
    def credential_file(self) -> str:
        return self.data.get("credential_file") or DEFAULT_CREDENTIAL_FILE

    @property
    def auto_register_clients(self) -> bool:
        return _as_bool(self.data.get("auto_register_clients"), True)

    @property
    def upstream_scopes(self) -> Optional[list[str]]:
        return _as_list(self.data.get("upstream_scopes"))

    @property
    def resource_scopes(self) -> Optional[list[str]]:
        return _as_list(self.data.get("resource_scopes"))

    @property
    def upstream_timeout(self) -> float:
        return float(self.data.get("upstream_timeout") or 15)

    @property
    def log_level(self) -> str:
        return str(self.data.get("log_level") or "INFO").upper()

    @property
    def log_json(self) -> bool:
        return _as_bool(self.data.get("log_json"), False)


def config_path() -> Path:
    override = os.getenv("CONTACTS_MCP_CONFIG")
    return Path(override).expanduser() if override else CONFIG_FILE


def load_config(path: Optional[Path] = None) -> Config:
    """Load config from file, then apply environment overrides."""
    path = path or config_path()
    data = {}

    if path.exists():
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"[CONFIG] Ignoring unreadable config file {path}: {e}")
            data = {}
        if not isinstance(data, dict):
            logger.warning(f"[CONFIG] Ignoring config file {path}: expected a JSON object")
            data = {}

    for key, env_name in ENV_KEYS.items():
        value = os.getenv(env_name)
        if value is not None and value != "":
            data[key] = value

    return Config(data)
