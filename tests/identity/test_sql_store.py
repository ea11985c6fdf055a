"""Tests for the SQLAlchemy identity store (SQLite in-memory)."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from idres.identity.engine import ReconciliationEngine
from idres.identity.errors import (
    ConflictError,
    DocumentExistsError,
    DocumentMissingError,
    DuplicateValueError,
    ErrorKind,
    InvalidIdentifierError,
    PreconditionFailedError,
)
from idres.identity.sql_store import SqlIdentityStore
from tests.helpers import WALLET_A, WALLET_B, FakeClock, StaticIssuer

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _fields(username: str | None = None, wallet: str | None = None) -> dict:
    return {
        "username": username,
        "username_key": username,
        "wallet_address": wallet,
        "is_anonymous": wallet is None,
        "created_at": NOW,
        "last_active_at": NOW,
        "wallet_linked_at": NOW if wallet else None,
    }


class TestSqlStoreReads:
    async def test_get_missing_returns_none(self, sql_store: SqlIdentityStore):
        assert await sql_store.get_by_id("absent") is None
        assert await sql_store.get_by_attribute("wallet_address", WALLET_A) is None

    async def test_insert_then_lookup(self, sql_store: SqlIdentityStore):
        created = await sql_store.insert("acct-1", _fields("alice", WALLET_A))

        assert created.id == "acct-1"
        by_id = await sql_store.get_by_id("acct-1")
        by_wallet = await sql_store.get_by_attribute("wallet_address", WALLET_A)
        by_name = await sql_store.get_by_attribute("username_key", "alice")
        assert by_id.username == "alice"
        assert by_wallet.id == by_name.id == "acct-1"
        assert by_id.is_anonymous is False

    async def test_unknown_attribute_rejected(self, sql_store: SqlIdentityStore):
        with pytest.raises(InvalidIdentifierError):
            await sql_store.get_by_attribute("created_at", "x")


class TestSqlStoreWrites:
    async def test_duplicate_username_on_insert(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields("alice"))

        with pytest.raises(DuplicateValueError) as exc_info:
            await sql_store.insert("acct-2", _fields("alice"))

        assert exc_info.value.attribute == "username_key"
        assert await sql_store.get_by_id("acct-2") is None

    async def test_duplicate_wallet_on_insert(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields(wallet=WALLET_A))

        with pytest.raises(DuplicateValueError) as exc_info:
            await sql_store.insert("acct-2", _fields("bob", WALLET_A))

        assert exc_info.value.attribute == "wallet_address"

    async def test_duplicate_id_on_insert(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields())
        with pytest.raises(DocumentExistsError):
            await sql_store.insert("acct-1", _fields())

    async def test_accounts_without_identifiers_coexist(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields())
        await sql_store.insert("acct-2", _fields())
        assert await sql_store.get_by_id("acct-2") is not None

    async def test_update_applies_fields(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields("alice"))

        updated = await sql_store.update("acct-1", {"username": "alicia", "username_key": "alicia"})

        assert updated.username == "alicia"
        assert await sql_store.get_by_attribute("username_key", "alice") is None

    async def test_update_missing_document(self, sql_store: SqlIdentityStore):
        with pytest.raises(DocumentMissingError):
            await sql_store.update("absent", {"username": "x", "username_key": "x"})

    async def test_conditional_update_precondition(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields(wallet=WALLET_A))

        with pytest.raises(PreconditionFailedError):
            await sql_store.update(
                "acct-1",
                {"wallet_address": WALLET_B, "is_anonymous": False},
                expect={"wallet_address": None},
            )

        assert (await sql_store.get_by_id("acct-1")).wallet_address == WALLET_A

    async def test_update_to_taken_wallet(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields(wallet=WALLET_A))
        await sql_store.insert("acct-2", _fields("bob"))

        with pytest.raises(DuplicateValueError) as exc_info:
            await sql_store.update(
                "acct-2",
                {"wallet_address": WALLET_A, "is_anonymous": False},
                expect={"wallet_address": None},
            )

        assert exc_info.value.attribute == "wallet_address"
        assert (await sql_store.get_by_id("acct-2")).wallet_address is None

    async def test_unknown_field_rejected(self, sql_store: SqlIdentityStore):
        await sql_store.insert("acct-1", _fields())
        with pytest.raises(ValueError, match="Unknown account fields"):
            await sql_store.update("acct-1", {"email": "a@b.c"})


class TestEngineOverSql:
    @pytest.fixture
    def sql_engine(self, sql_store: SqlIdentityStore) -> ReconciliationEngine:
        return ReconciliationEngine(sql_store, StaticIssuer(), clock=FakeClock())

    async def test_full_lifecycle(self, sql_engine: ReconciliationEngine):
        created = await sql_engine.authenticate(None, "carol")
        assert created.is_new_user is True

        linked = await sql_engine.authenticate(WALLET_A, "carol")
        assert linked.uid == created.uid
        assert linked.auth_type == "wallet"

        again = await sql_engine.authenticate(WALLET_A, "someone-else")
        assert again.uid == created.uid
        assert again.username == "carol"

        renamed = await sql_engine.rename(created.uid, "caroline")
        assert renamed.username == "caroline"
        assert renamed.wallet_address == WALLET_A

    async def test_conflicts_surface_as_typed_errors(self, sql_engine: ReconciliationEngine):
        dave = await sql_engine.authenticate(WALLET_A, "dave")
        other = await sql_engine.authenticate(None, "erin")

        with pytest.raises(ConflictError) as exc_info:
            await sql_engine.authenticate(WALLET_B, "dave")
        assert exc_info.value.kind is ErrorKind.USERNAME_LINKED_TO_DIFFERENT_WALLET

        with pytest.raises(ConflictError) as exc_info:
            await sql_engine.link_wallet(other.uid, WALLET_A)
        assert exc_info.value.kind is ErrorKind.WALLET_ALREADY_LINKED_TO_ANOTHER_ACCOUNT

        with pytest.raises(ConflictError) as exc_info:
            await sql_engine.rename(other.uid, "dave")
        assert exc_info.value.kind is ErrorKind.USERNAME_ALREADY_EXISTS

        with pytest.raises(ConflictError) as exc_info:
            await sql_engine.link_wallet(dave.uid, WALLET_B)
        assert exc_info.value.kind is ErrorKind.ACCOUNT_ALREADY_HAS_WALLET
