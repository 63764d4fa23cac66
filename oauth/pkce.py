"""PKCE (RFC 7636) helpers. Only the S256 method is supported."""

import base64
import hashlib
import hmac

SUPPORTED_METHODS = ("S256",)


def normalize_method(method: str) -> str:
    """Treat a missing method as S256; anything else is returned unchanged."""
    return method or "S256"


def compute_challenge(verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify(verifier: str, challenge: str, method: str = "S256") -> bool:
    if normalize_method(method) not in SUPPORTED_METHODS:
        return False
    try:
        computed = compute_challenge(verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed.encode("ascii"), challenge.encode("utf-8"))
