"""
Session credential issuing.

Tokens are JWTs carrying the account id in `sub`. RS256 with PEM key files
is the production default; an HS* algorithm with a shared secret is
accepted for single-service deployments and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

import jwt

from idres.config import get_settings

_private_key: str | None = None
_public_key: str | None = None


class CredentialIssuer(Protocol):
    """Mints an opaque bearer credential for an account id."""

    async def issue(self, account_id: str) -> str:
        ...


def _load_keys() -> tuple[str, str]:
    """Return (signing key, verification key), cached after first call."""
    global _private_key, _public_key  # noqa: PLW0603
    if _private_key is None or _public_key is None:
        settings = get_settings()
        if settings.jwt_algorithm.startswith("HS"):
            if not settings.jwt_secret:
                msg = f"jwt_secret must be set for {settings.jwt_algorithm}"
                raise RuntimeError(msg)
            _private_key = _public_key = settings.jwt_secret
        else:
            _private_key = Path(settings.jwt_private_key_path).read_text()
            _public_key = Path(settings.jwt_public_key_path).read_text()
    return _private_key, _public_key


def reset_keys() -> None:
    """Reset cached keys (useful for testing)."""
    global _private_key, _public_key  # noqa: PLW0603
    _private_key = None
    _public_key = None


def create_session_token(account_id: str) -> str:
    """
    Create a session token for an account.

    Args:
        account_id: The account's canonical id.

    Returns:
        Encoded JWT string.
    """
    private_key, _ = _load_keys()
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": account_id,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_session_token_expire_minutes),
        "iss": settings.jwt_issuer,
        "type": "session",
    }
    return jwt.encode(payload, private_key, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = "session") -> dict[str, Any]:
    """
    Verify and decode a session token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or wrong type.
    """
    _, public_key = _load_keys()
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            public_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp", "iat", "iss"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload


class JwtCredentialIssuer:
    """CredentialIssuer backed by create_session_token()."""

    async def issue(self, account_id: str) -> str:
        return create_session_token(account_id)
