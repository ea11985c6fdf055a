"""Request/response schemas for identity endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


def _strip_or_none(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    return v or None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AnonymousRequest(BaseModel):
    """Sign in without a wallet, optionally claiming a username."""

    username: str | None = Field(None, max_length=64)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str | None) -> str | None:
        """Treat blank usernames as absent."""
        return _strip_or_none(v)


class WalletConnectRequest(BaseModel):
    """Sign in with a wallet address, optionally with a username for new accounts."""

    wallet_address: str = Field(..., min_length=1, max_length=64)
    username: str | None = Field(None, max_length=64)

    @field_validator("wallet_address")
    @classmethod
    def strip_wallet(cls, v: str) -> str:
        """Strip surrounding whitespace."""
        return v.strip()

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str | None) -> str | None:
        """Treat blank usernames as absent."""
        return _strip_or_none(v)


class AuthResponse(BaseModel):
    """Session credential returned after successful reconciliation."""

    token: str
    uid: str
    is_new_user: bool
    username: str | None = None
    auth_type: str
    message: str


# ---------------------------------------------------------------------------
# Linking and rename
# ---------------------------------------------------------------------------


class WalletLinkRequest(BaseModel):
    """Attach a wallet to an existing account."""

    uid: str = Field(..., min_length=1, max_length=128)
    wallet_address: str = Field(..., min_length=1, max_length=64)


class WalletLinkResponse(BaseModel):
    wallet_address: str
    message: str = "Wallet connected successfully"


class UsernameUpdateRequest(BaseModel):
    """Set or change an account's username."""

    uid: str = Field(..., min_length=1, max_length=128)
    username: str = Field(..., min_length=1, max_length=64)


class UsernameUpdateResponse(BaseModel):
    username: str
    message: str = "Username updated successfully"


class LogoutRequest(BaseModel):
    uid: str = Field(..., min_length=1, max_length=128)


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Account profile."""

    uid: str
    username: str | None = None
    is_anonymous: bool
    has_wallet: bool
    wallet_address: str | None = None
    created_at: datetime | None = None
    last_active_at: datetime | None = None
    wallet_linked_at: datetime | None = None


class AvailabilityResponse(BaseModel):
    available: bool
