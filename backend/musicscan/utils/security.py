"""Security utilities for API tokens."""

import hashlib
import secrets


class TokenError(Exception):
    """Raised when an Authorization header cannot be used."""
    pass


def hash_token(token: str) -> str:
    """SHA-256 hex digest of an API token; only digests are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def parse_bearer(authorization: str | None) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        TokenError: If the header is missing or not a bearer token
    """
    if not authorization:
        raise TokenError("Missing Authorization header")

    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise TokenError("Authorization header must be 'Bearer <token>'")
    return token

