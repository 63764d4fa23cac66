"""In-memory stores for OAuth sessions.

Three tables are shared between the OAuth endpoints:
- registered clients (dynamic or auto-registration)
- pending authorizations (internal state token -> AuthorizationState)
- authorization codes (code -> AuthorizationCode)

Each table has its own asyncio.Lock. Critical sections never await, so a
lookup followed by a delete is atomic with respect to other requests.
State and codes expire after ENTRY_TTL seconds; an expired entry is refused
on read even if the reaper has not removed it yet.
"""

import asyncio
import logging
import secrets
import time
from typing import Generic, Optional, TypeVar

from oauth.errors import OAuthError
from oauth.models import RegisteredClient

logger = logging.getLogger(__name__)

ENTRY_TTL = 600  # 10 minutes

T = TypeVar("T")


class ExpiringStore(Generic[T]):
    """Single-use records with a fixed time-to-live.

    Values must expose a `created_at` Unix timestamp.
    """

    def __init__(self, name: str, ttl: float = ENTRY_TTL):
        self.name = name
        self.ttl = ttl
        self._entries: dict[str, T] = {}
        self.lock = asyncio.Lock()

    def _expired(self, entry: T, now: float) -> bool:
        return now - entry.created_at > self.ttl

    async def put(self, key: str, entry: T) -> None:
        async with self.lock:
            self._entries[key] = entry

    async def consume(self, key: str) -> Optional[T]:
        """Remove and return the entry, or None if unknown or expired."""
        if not key:
            return None
        async with self.lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        if self._expired(entry, time.time()):
            logger.info(f"[STORE] Expired {self.name} entry presented")
            return None
        return entry

    async def purge_expired(self) -> int:
        async with self.lock:
            now = time.time()
            expired = [k for k, v in self._entries.items() if self._expired(v, now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ClientRegistry:
    """Registered OAuth clients. Records live for the lifetime of the process."""

    def __init__(self, auto_register: bool = True):
        self.auto_register = auto_register
        self._clients: dict[str, RegisteredClient] = {}
        self.lock = asyncio.Lock()

    async def get(self, client_id: str) -> Optional[RegisteredClient]:
        async with self.lock:
            return self._clients.get(client_id)

    async def register(self, redirect_uris, metadata: Optional[dict] = None) -> RegisteredClient:
        """Dynamic Client Registration (RFC 7591)."""
        if not isinstance(redirect_uris, list) or not redirect_uris:
            raise OAuthError("invalid_request", "redirect_uris is required")
        if not all(isinstance(uri, str) and uri for uri in redirect_uris):
            raise OAuthError("invalid_request", "redirect_uris must be non-empty strings")

        metadata = metadata or {}
        for key in ("grant_types", "response_types"):
            value = metadata.get(key)
            if value is not None and not (
                isinstance(value, list) and all(isinstance(v, str) and v for v in value)
            ):
                raise OAuthError("invalid_client_metadata", f"{key} must be a list of strings")
        auth_method = metadata.get("token_endpoint_auth_method")
        if auth_method is not None and not isinstance(auth_method, str):
            raise OAuthError("invalid_client_metadata", "token_endpoint_auth_method must be a string")
        client_name = metadata.get("client_name")
        if client_name is not None and not isinstance(client_name, str):
            raise OAuthError("invalid_client_metadata", "client_name must be a string")

        async with self.lock:
            client_id = secrets.token_urlsafe(16)
            while client_id in self._clients:
                client_id = secrets.token_urlsafe(16)
            client = RegisteredClient(
                client_id=client_id,
                client_secret=secrets.token_urlsafe(32),
                client_name=metadata.get("client_name") or "MCP Client",
                redirect_uris=set(redirect_uris),
            )
            if metadata.get("grant_types"):
                client.grant_types = list(metadata["grant_types"])
            if metadata.get("response_types"):
                client.response_types = list(metadata["response_types"])
            if metadata.get("token_endpoint_auth_method"):
                client.token_endpoint_auth_method = metadata["token_endpoint_auth_method"]
            self._clients[client_id] = client

        logger.info(f"[REGISTER] Registered client {client_id} (name: {client.client_name})")
        return client

    async def resolve_or_auto_register(self, client_id: str, redirect_uri: str) -> RegisteredClient:
        """Return the client for an authorize request, creating it if needed.

        Known clients accept unseen redirect URIs by appending them. PKCE, not
        client identity, protects code redemption. With auto_register off both
        cases are rejected.
        """
        async with self.lock:
            client = self._clients.get(client_id)
            if client is None:
                if not self.auto_register:
                    raise OAuthError("invalid_request", "Unknown client_id")
                client = RegisteredClient(
                    client_id=client_id,
                    redirect_uris={redirect_uri},
                    token_endpoint_auth_method="none",
                )
                self._clients[client_id] = client
                logger.info(f"[AUTHORIZE] Auto-registered client {client_id} with redirect_uri {redirect_uri}")
                return client

            if redirect_uri not in client.redirect_uris:
                if not self.auto_register:
                    raise OAuthError("invalid_request", "redirect_uri is not registered for this client")
                client.redirect_uris.add(redirect_uri)
                logger.info(f"[AUTHORIZE] Added redirect_uri {redirect_uri} for client {client_id}")
            return client

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)
