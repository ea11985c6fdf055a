"""Uniqueness checks for usernames and wallet addresses."""

from __future__ import annotations

from typing import TYPE_CHECKING

from idres.identity.types import USERNAME_ATTRIBUTE, WALLET_ATTRIBUTE

if TYPE_CHECKING:
    from idres.identity.store import IdentityStore


def username_key(username: str | None, *, case_sensitive: bool = True) -> str | None:
    """Return the form of `username` that uniqueness is judged on."""
    if not username:
        return None
    return username if case_sensitive else username.casefold()


class UniquenessGuard:
    """
    Read-only lookups answering "is this value already bound?".

    The answers reflect the store at call time and nothing more. They are an
    early rejection path; the store's unique indexes are what actually keep
    two accounts from sharing a value.
    """

    def __init__(self, store: IdentityStore, *, case_sensitive: bool = True) -> None:
        self._store = store
        self._case_sensitive = case_sensitive

    def key_for(self, username: str | None) -> str | None:
        return username_key(username, case_sensitive=self._case_sensitive)

    async def is_username_taken(self, username: str | None, *, exclude_id: str | None = None) -> bool:
        """True iff an account (other than `exclude_id`) holds this username."""
        key = self.key_for(username)
        if key is None:
            return False
        holder = await self._store.get_by_attribute(USERNAME_ATTRIBUTE, key)
        return holder is not None and holder.id != exclude_id

    async def is_wallet_taken(self, wallet_address: str | None, *, exclude_id: str | None = None) -> bool:
        """True iff an account (other than `exclude_id`) holds this wallet address."""
        if not wallet_address:
            return False
        holder = await self._store.get_by_attribute(WALLET_ATTRIBUTE, wallet_address)
        return holder is not None and holder.id != exclude_id
