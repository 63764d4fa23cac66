"""Shared test doubles: a fake Google token endpoint and a stub protected app."""

import base64
import hashlib
import secrets
import time

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse

from oauth.errors import TokenRejectedError, UpstreamError
from oauth.middleware import get_current_credentials
from oauth.models import UpstreamToken
from oauth.upstream import UpstreamBridge

BASE_URL = "http://testserver"

# RFC 7636 appendix B
RFC_VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
RFC_CHALLENGE = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

PEOPLE_ME = {
    "names": [{"displayName": "Ada Lovelace", "metadata": {"primary": True}}],
    "emailAddresses": [
        {"value": "ada@work.example", "metadata": {}},
        {"value": "ada@example.com", "metadata": {"primary": True}},
    ],
}


def make_pkce_pair():
    """Generate a PKCE code_verifier and code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


def google_api(request: httpx.Request) -> httpx.Response:
    """Stand-in for Google APIs called with a bearer token."""
    if request.headers.get("Authorization") == "Bearer revoked-token":
        return httpx.Response(401, json={"error": {"code": 401, "status": "UNAUTHENTICATED"}})
    return httpx.Response(200, json=PEOPLE_ME)


class FakeBridge(UpstreamBridge):
    """UpstreamBridge that never talks to Google's token endpoint."""

    def __init__(self):
        super().__init__(timeout=5, transport=httpx.MockTransport(google_api))
        self.exchanged = []
        self.refreshed = []
        self.issued = []
        self.fail = False
        self.rotate_refresh_token = False

    async def exchange_code(self, provider, code):
        if self.fail:
            raise UpstreamError("provider returned 400")
        self.exchanged.append(code)
        token = UpstreamToken(
            access_token=f"ya29.fake-{len(self.exchanged)}",
            refresh_token="1//fake-refresh",
            expiry=time.time() + 3599,
            scope=" ".join(provider.scopes),
        )
        self.issued.append(token)
        return token

    async def refresh(self, provider, refresh_token):
        if self.fail:
            raise UpstreamError("provider returned 400")
        self.refreshed.append(refresh_token)
        return UpstreamToken(
            access_token=f"ya29.refreshed-{len(self.refreshed)}",
            refresh_token="1//rotated" if self.rotate_refresh_token else refresh_token,
            expiry=time.time() + 3599,
        )


async def whoami_endpoint(request: Request):
    credentials = get_current_credentials()
    try:
        resp = await credentials.request("GET", "https://people.googleapis.com/v1/people/me")
    except TokenRejectedError:
        # Mimics a tool framework that turns tool failures into a normal response
        return JSONResponse({"isError": True})
    return JSONResponse({
        "access_token": credentials.access_token,
        "same_object": request.state.credentials is credentials,
        "status": resp.status_code,
    })

