"""
SQLAlchemy-backed identity store.

Each write runs in its own short transaction: the store offers per-document
atomicity only. Unique indexes on `username_key` and `wallet_address` turn a
racing insert or update into an IntegrityError, which is classified here
into a DuplicateValueError naming the attribute that collided.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Mapping

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from idres.db.models import AccountRecord
from idres.identity.errors import (
    DocumentExistsError,
    DocumentMissingError,
    DuplicateValueError,
    PreconditionFailedError,
    TransientError,
)
from idres.identity.store import check_fields, validate_account_id, validate_attribute
from idres.identity.types import UNIQUE_ATTRIBUTES, Account

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger()


def _to_document(record: AccountRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "username": record.username,
        "username_key": record.username_key,
        "wallet_address": record.wallet_address,
        "is_anonymous": record.is_anonymous,
        "created_at": record.created_at,
        "last_active_at": record.last_active_at,
        "wallet_linked_at": record.wallet_linked_at,
    }


class SqlIdentityStore:
    """Identity store over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError, PoolTimeoutError) as e:
            logger.warning("identity_store_unavailable", error=str(e))
            msg = "Identity store unavailable"
            raise TransientError(msg) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, account_id: str) -> Account | None:
        validate_account_id(account_id)
        async with self._session() as session:
            record = await session.get(AccountRecord, account_id)
            return Account.from_document(_to_document(record)) if record is not None else None

    async def get_by_attribute(self, name: str, value: str) -> Account | None:
        validate_attribute(name)
        async with self._session() as session:
            record = await self._find(session, name, value)
            return Account.from_document(_to_document(record)) if record is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert(self, account_id: str, fields: Mapping[str, Any]) -> Account:
        validate_account_id(account_id)
        check_fields(fields)
        async with self._session() as session:
            if await session.get(AccountRecord, account_id) is not None:
                msg = f"Account '{account_id}' already exists"
                raise DocumentExistsError(msg)

            record = AccountRecord(id=account_id, **fields)
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                await self._classify_integrity_error(session, account_id, fields, e, inserting=True)
            return Account.from_document(_to_document(record))

    async def update(
        self,
        account_id: str,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> Account:
        validate_account_id(account_id)
        check_fields(fields)
        async with self._session() as session:
            stmt = update(AccountRecord).where(AccountRecord.id == account_id)
            for name, expected in (expect or {}).items():
                column = getattr(AccountRecord, name)
                stmt = stmt.where(column.is_(None) if expected is None else column == expected)
            stmt = stmt.values(**fields)

            try:
                result = await session.execute(stmt)
                if result.rowcount == 0:  # type: ignore[attr-defined]
                    await session.rollback()
                    if await session.get(AccountRecord, account_id) is None:
                        msg = f"Account '{account_id}' does not exist"
                        raise DocumentMissingError(msg)
                    msg = f"Account '{account_id}' changed concurrently"
                    raise PreconditionFailedError(msg)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                await self._classify_integrity_error(session, account_id, fields, e)

            record = await session.get(AccountRecord, account_id, populate_existing=True)
            if record is None:
                msg = f"Account '{account_id}' does not exist"
                raise DocumentMissingError(msg)
            return Account.from_document(_to_document(record))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _find(session: AsyncSession, name: str, value: Any) -> AccountRecord | None:  # noqa: ANN401
        if value is None:
            return None
        result = await session.execute(select(AccountRecord).where(getattr(AccountRecord, name) == value))
        return result.scalar_one_or_none()

    async def _classify_integrity_error(
        self,
        session: AsyncSession,
        account_id: str,
        fields: Mapping[str, Any],
        error: IntegrityError,
        *,
        inserting: bool = False,
    ) -> None:
        """Re-read the colliding rows to name the constraint that was hit, then raise."""
        for name in UNIQUE_ATTRIBUTES:
            holder = await self._find(session, name, fields.get(name))
            if holder is not None and holder.id != account_id:
                raise DuplicateValueError(name, fields.get(name)) from error
        if inserting and await session.get(AccountRecord, account_id) is not None:
            msg = f"Account '{account_id}' already exists"
            raise DocumentExistsError(msg) from error
        raise error
