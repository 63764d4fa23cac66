"""MCP Tools for contacts-mcp-server.

Tools run behind MCPOAuthMiddleware and call Google with the credentials it
attached to the request.
"""

import logging
from typing import Optional

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request

from oauth.middleware import get_current_credentials
from oauth.upstream import ProviderCredentials

logger = logging.getLogger(__name__)

PEOPLE_ME_URL = "https://people.googleapis.com/v1/people/me"

# Create the FastMCP server instance
mcp = FastMCP("contacts-mcp-server")


def _request_credentials() -> ProviderCredentials:
    credentials: Optional[ProviderCredentials] = get_current_credentials()
    if credentials is None:
        credentials = getattr(get_http_request().state, "credentials", None)
    if credentials is None:
        raise RuntimeError("No provider credentials attached to this request")
    return credentials


def _pick(entries: list, key: str) -> str:
    """Primary entry's `key`, else the first entry's."""
    for entry in entries:
        if entry.get("metadata", {}).get("primary"):
            return entry.get(key, "")
    return entries[0].get(key, "") if entries else ""


async def fetch_profile(credentials: ProviderCredentials) -> dict:
    """Name and primary email of the Google account behind `credentials`."""
    resp = await credentials.request(
        "GET",
        PEOPLE_ME_URL,
        params={"personFields": "emailAddresses,names"},
    )
    resp.raise_for_status()
    person = resp.json()
    return {
        "email": _pick(person.get("emailAddresses", []), "value"),
        "name": _pick(person.get("names", []), "displayName"),
    }


@mcp.tool()
async def whoami() -> dict:
    """Return the Google account the current access token belongs to.

    Returns:
        A dict with the account's primary email and display name
    """
    profile = await fetch_profile(_request_credentials())
    logger.info(f"[TOOL] whoami invoked for {profile['email'] or 'unknown account'}")
    return profile
