"""Tests for the account model."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from idres.identity.errors import InvariantViolation
from idres.identity.types import Account, AccountState
from tests.helpers import WALLET_A

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestFromDocument:
    def test_builds_account(self):
        account = Account.from_document(
            {"id": "a1", "username": "alice", "username_key": "alice", "wallet_address": WALLET_A,
             "is_anonymous": False, "created_at": NOW, "last_active_at": NOW, "wallet_linked_at": NOW}
        )
        assert account.state is AccountState.WALLET_WITH_USERNAME
        assert Account.from_document(account.to_document()) == account

    def test_missing_id(self):
        with pytest.raises(InvariantViolation):
            Account.from_document({"created_at": NOW})

    def test_anonymous_flag_must_match_wallet(self):
        with pytest.raises(InvariantViolation, match="is_anonymous"):
            Account.from_document({"id": "a1", "is_anonymous": True, "wallet_address": WALLET_A, "created_at": NOW})

    def test_missing_created_at(self):
        with pytest.raises(InvariantViolation, match="created_at"):
            Account.from_document({"id": "a1"})

    def test_last_active_defaults_to_created(self):
        account = Account.from_document({"id": "a1", "created_at": NOW})
        assert account.last_active_at == NOW
        assert account.is_anonymous is True
        assert account.state is AccountState.ANONYMOUS_NO_USERNAME


class TestAccountState:
    @pytest.mark.parametrize(
        ("before", "after", "allowed"),
        [
            (AccountState.ANONYMOUS_NO_USERNAME, AccountState.WALLET_WITH_USERNAME, True),
            (AccountState.ANONYMOUS_WITH_USERNAME, AccountState.WALLET_WITH_USERNAME, True),
            (AccountState.WALLET_NO_USERNAME, AccountState.WALLET_WITH_USERNAME, True),
            (AccountState.WALLET_NO_USERNAME, AccountState.ANONYMOUS_NO_USERNAME, False),
            (AccountState.ANONYMOUS_WITH_USERNAME, AccountState.ANONYMOUS_NO_USERNAME, False),
            (AccountState.WALLET_WITH_USERNAME, AccountState.WALLET_NO_USERNAME, False),
        ],
    )
    def test_transitions(self, before: AccountState, after: AccountState, allowed: bool):
        assert before.can_become(after) is allowed
