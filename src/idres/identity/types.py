"""Account data model and reconciliation results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Mapping

from idres.identity.errors import InvariantViolation

AuthType = Literal["wallet", "anonymous"]

# Attributes the store indexes for equality lookups.
WALLET_ATTRIBUTE = "wallet_address"
USERNAME_ATTRIBUTE = "username_key"
UNIQUE_ATTRIBUTES = (WALLET_ATTRIBUTE, USERNAME_ATTRIBUTE)

ACCOUNT_FIELDS = frozenset(
    {
        "username",
        "username_key",
        "wallet_address",
        "is_anonymous",
        "created_at",
        "last_active_at",
        "wallet_linked_at",
    }
)


class AccountState(str, Enum):
    """The four reachable per-account states."""

    ANONYMOUS_NO_USERNAME = "anonymous_no_username"
    ANONYMOUS_WITH_USERNAME = "anonymous_with_username"
    WALLET_NO_USERNAME = "wallet_no_username"
    WALLET_WITH_USERNAME = "wallet_with_username"

    @property
    def has_wallet(self) -> bool:
        return self in (AccountState.WALLET_NO_USERNAME, AccountState.WALLET_WITH_USERNAME)

    @property
    def has_username(self) -> bool:
        return self in (AccountState.ANONYMOUS_WITH_USERNAME, AccountState.WALLET_WITH_USERNAME)

    def can_become(self, other: AccountState) -> bool:
        """A wallet or username, once present, is never removed."""
        if self.has_wallet and not other.has_wallet:
            return False
        return not (self.has_username and not other.has_username)


@dataclass(frozen=True, slots=True)
class Account:
    """Canonical persisted identity record."""

    id: str
    created_at: datetime
    last_active_at: datetime
    username: str | None = None
    username_key: str | None = None
    wallet_address: str | None = None
    is_anonymous: bool = True
    wallet_linked_at: datetime | None = None

    @property
    def state(self) -> AccountState:
        if self.wallet_address is None:
            if self.username is None:
                return AccountState.ANONYMOUS_NO_USERNAME
            return AccountState.ANONYMOUS_WITH_USERNAME
        if self.username is None:
            return AccountState.WALLET_NO_USERNAME
        return AccountState.WALLET_WITH_USERNAME

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> Account:
        """
        Build an Account from a raw store document.

        Raises:
            InvariantViolation: If the document has no id, no created_at, or an is_anonymous flag that disagrees with wallet_address.
        """
        account_id = document.get("id")
        if not account_id:
            msg = "Store returned an account document without an id"
            raise InvariantViolation(msg)

        wallet_address = document.get("wallet_address")
        is_anonymous = bool(document.get("is_anonymous", wallet_address is None))
        if is_anonymous != (wallet_address is None):
            msg = f"Account '{account_id}' has is_anonymous={is_anonymous} but wallet_address={wallet_address!r}"
            raise InvariantViolation(msg)

        created_at = document.get("created_at")
        if created_at is None:
            msg = f"Account '{account_id}' has no created_at"
            raise InvariantViolation(msg)

        return cls(
            id=str(account_id),
            username=document.get("username"),
            username_key=document.get("username_key"),
            wallet_address=wallet_address,
            is_anonymous=is_anonymous,
            created_at=created_at,
            last_active_at=document.get("last_active_at") or created_at,
            wallet_linked_at=document.get("wallet_linked_at"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "username_key": self.username_key,
            "wallet_address": self.wallet_address,
            "is_anonymous": self.is_anonymous,
            "created_at": self.created_at,
            "last_active_at": self.last_active_at,
            "wallet_linked_at": self.wallet_linked_at,
        }


@dataclass(frozen=True, slots=True)
class AuthResult:
    """Outcome of a successful authenticate() call."""

    uid: str
    token: str
    is_new_user: bool
    username: str | None
    auth_type: AuthType
