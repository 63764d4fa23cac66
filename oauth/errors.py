"""Exceptions raised by the OAuth proxy.

Only OAuthError carries client-visible text. The others are mapped to the
standard OAuth vocabulary at the endpoint boundary.
"""

from typing import Optional


class OAuthError(Exception):
    """Error reported to the caller as `{error, error_description}`."""

    def __init__(self, error: str, description: Optional[str] = None, status_code: int = 400):
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class ConfigError(Exception):
    """Upstream provider credentials are unavailable (operator error)."""


class UpstreamError(Exception):
    """The identity provider rejected an exchange or refresh."""


class TokenRejectedError(UpstreamError):
    """The identity provider refused a bearer token on use."""
