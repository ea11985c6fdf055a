"""
Identity store abstraction and the in-memory implementation.

The store is a document store keyed by account id. It offers point
lookups, equality lookups on one indexed attribute, insert-with-id and
partial update. Uniqueness of `username_key` and `wallet_address` is
enforced here, at write time; the engine's own checks are advisory.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Mapping, Protocol

import structlog

from idres.identity.errors import (
    DocumentExistsError,
    DocumentMissingError,
    DuplicateValueError,
    InvalidIdentifierError,
    PreconditionFailedError,
)
from idres.identity.types import ACCOUNT_FIELDS, UNIQUE_ATTRIBUTES, Account

logger = structlog.get_logger()

_ACCOUNT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_account_id(account_id: str) -> str:
    """
    Check that an account id is well-formed before it reaches the store.

    Raises:
        InvalidIdentifierError: If the id is empty or contains unsupported characters.
    """
    if not isinstance(account_id, str) or not _ACCOUNT_ID_RE.match(account_id):
        raise InvalidIdentifierError("account id", "must be 1-128 characters of [A-Za-z0-9_-]")
    return account_id


def validate_attribute(name: str) -> str:
    if name not in UNIQUE_ATTRIBUTES:
        raise InvalidIdentifierError("attribute", f"'{name}' is not an indexed attribute")
    return name


def check_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - ACCOUNT_FIELDS
    if unknown:
        msg = f"Unknown account fields: {sorted(unknown)}"
        raise ValueError(msg)


class IdentityStore(Protocol):
    """
    Persistence abstraction for accounts.

    Implementations are responsible for:
    - Mapping stored documents to the `Account` model.
    - Rejecting writes that would bind a username key or wallet address twice.
    """

    async def get_by_id(self, account_id: str) -> Account | None:
        """Return the account with the given id, or None if not found."""

        ...

    async def get_by_attribute(self, name: str, value: str) -> Account | None:
        """Return the account whose indexed attribute equals `value`, if any."""

        ...

    async def insert(self, account_id: str, fields: Mapping[str, Any]) -> Account:
        """
        Create a new account document.

        Raises DocumentExistsError if the id is taken and DuplicateValueError
        if a unique attribute is already bound to another account.
        """

        ...

    async def update(
        self,
        account_id: str,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> Account:
        """
        Apply a partial update.

        `expect` maps field names to the values they must currently hold;
        a mismatch raises PreconditionFailedError and nothing is written.
        Raises DocumentMissingError if the id does not exist.
        """

        ...


class InMemoryIdentityStore:
    """Process-local store with the same uniqueness guarantees as the SQL store."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._documents)

    def all(self) -> list[Account]:
        """Snapshot of every stored account."""
        return [Account.from_document(doc) for doc in self._documents.values()]

    async def get_by_id(self, account_id: str) -> Account | None:
        validate_account_id(account_id)
        document = self._documents.get(account_id)
        return Account.from_document(document) if document is not None else None

    async def get_by_attribute(self, name: str, value: str) -> Account | None:
        validate_attribute(name)
        document = self._find(name, value)
        return Account.from_document(document) if document is not None else None

    async def insert(self, account_id: str, fields: Mapping[str, Any]) -> Account:
        validate_account_id(account_id)
        check_fields(fields)
        async with self._lock:
            if account_id in self._documents:
                msg = f"Account '{account_id}' already exists"
                raise DocumentExistsError(msg)
            self._check_unique(account_id, fields)
            document = {"id": account_id, **fields}
            self._documents[account_id] = document
        return Account.from_document(document)

    async def update(
        self,
        account_id: str,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> Account:
        validate_account_id(account_id)
        check_fields(fields)
        async with self._lock:
            current = self._documents.get(account_id)
            if current is None:
                msg = f"Account '{account_id}' does not exist"
                raise DocumentMissingError(msg)
            for name, expected in (expect or {}).items():
                if current.get(name) != expected:
                    msg = f"Account '{account_id}' field '{name}' changed concurrently"
                    raise PreconditionFailedError(msg)
            self._check_unique(account_id, fields)
            updated = {**current, **fields}
            self._documents[account_id] = updated
        return Account.from_document(updated)

    def _find(self, name: str, value: Any) -> dict[str, Any] | None:
        if value is None:
            return None
        for document in self._documents.values():
            if document.get(name) == value:
                return document
        return None

    def _check_unique(self, account_id: str, fields: Mapping[str, Any]) -> None:
        for name in UNIQUE_ATTRIBUTES:
            value = fields.get(name)
            if value is None:
                continue
            holder = self._find(name, value)
            if holder is not None and holder["id"] != account_id:
                logger.debug("unique_attribute_collision", attribute=name, holder=holder["id"])
                raise DuplicateValueError(name, value)
