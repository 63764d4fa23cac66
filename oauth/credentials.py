"""Upstream identity provider credentials.

The provider's client id/secret are loaded once, on first use, from Google
Secret Manager when a project and secret name are configured, otherwise (or
when Secret Manager fails) from a local credential file. The JSON may be a
Google client secret file ({"web": {...}} or {"installed": {...}}) or a flat
object with the same keys.

The provider's redirect URI always points back at this server's
/oauth/callback, never at the MCP client's own callback.
"""

import asyncio
import json
import logging
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from google.cloud import secretmanager

from oauth.errors import ConfigError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Google People API scopes needed by the contacts tools
DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/contacts",
    "https://www.googleapis.com/auth/contacts.other.readonly",
]


@dataclass
class ProviderConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))

    def authorization_url(self, state: str) -> str:
        """Consent URL for the provider.

        Always asks for offline access and forces the consent screen so a
        refresh token is issued even on repeat authorizations.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        separator = "&" if "?" in self.auth_uri else "?"
        return f"{self.auth_uri}{separator}{urllib.parse.urlencode(params)}"


def parse_credentials(raw: bytes, redirect_uri: str, scopes: Optional[list[str]] = None) -> ProviderConfig:
    """Parse provider client credentials JSON into a ProviderConfig."""
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"Failed to parse OAuth credentials: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Failed to parse OAuth credentials: expected a JSON object")

    section = data.get("web") or data.get("installed") or data
    if not isinstance(section, dict):
        raise ConfigError("Failed to parse OAuth credentials: expected a JSON object")
    client_id = section.get("client_id")
    client_secret = section.get("client_secret")
    if not client_id or not client_secret:
        raise ConfigError("OAuth credentials are missing client_id or client_secret")

    return ProviderConfig(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=redirect_uri,
        auth_uri=section.get("auth_uri") or GOOGLE_AUTH_URI,
        token_uri=section.get("token_uri") or GOOGLE_TOKEN_URI,
        scopes=list(scopes or DEFAULT_SCOPES),
    )


def _access_secret(project: str, secret_name: str) -> bytes:
    name = f"projects/{project}/secrets/{secret_name}/versions/latest"
    with secretmanager.SecretManagerServiceClient() as client:
        response = client.access_secret_version(request={"name": name})
    return response.payload.data


class CredentialLoader:
    """Loads the provider config exactly once and caches it.

    Concurrent first callers wait on the same lock; only one performs I/O.
    A failed load is not cached, so the next request retries.
    """

    def __init__(
        self,
        base_url: str,
        secret_project: str = "",
        secret_name: str = "",
        credential_file: str = "",
        scopes: Optional[list[str]] = None,
    ):
        self.redirect_uri = f"{base_url.rstrip('/')}/oauth/callback"
        self.secret_project = secret_project
        self.secret_name = secret_name
        self.credential_file = credential_file
        self.scopes = scopes
        self._config: Optional[ProviderConfig] = None
        self._lock = asyncio.Lock()

    @classmethod
    def preloaded(cls, config: ProviderConfig) -> "CredentialLoader":
        """A loader that already holds `config` and never performs I/O."""
        loader = cls(base_url="")
        loader.redirect_uri = config.redirect_uri
        loader._config = config
        return loader

    @property
    def loaded(self) -> bool:
        return self._config is not None

    async def load(self) -> ProviderConfig:
        config = self._config
        if config is not None:
            return config

        async with self._lock:
            if self._config is None:
                self._config = await self._load()
            return self._config

    async def _load(self) -> ProviderConfig:
        raw = None

        if self.secret_project and self.secret_name:
            try:
                raw = await asyncio.to_thread(_access_secret, self.secret_project, self.secret_name)
                logger.info(f"[CREDENTIALS] Loaded from Secret Manager: {self.secret_project}/{self.secret_name}")
            except Exception as e:
                logger.warning(f"[CREDENTIALS] Secret Manager failed, trying credential file: {e}")
                raw = None

        if raw is None and self.credential_file:
            path = Path(self.credential_file).expanduser()
            try:
                raw = path.read_bytes()
            except OSError as e:
                raise ConfigError(f"Failed to read credentials file {path}: {e}") from e
            logger.info(f"[CREDENTIALS] Loaded from file: {path}")

        if raw is None:
            raise ConfigError("No OAuth credentials available: configure Secret Manager or a credential file")

        return parse_credentials(raw, self.redirect_uri, self.scopes)
