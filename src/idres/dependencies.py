"""Shared FastAPI dependencies and identity store lifecycle."""

from __future__ import annotations

from idres.config import Settings, get_settings
from idres.database import get_session_factory
from idres.identity.credentials import JwtCredentialIssuer
from idres.identity.engine import ReconciliationEngine
from idres.identity.sql_store import SqlIdentityStore
from idres.identity.store import IdentityStore, InMemoryIdentityStore

_store: IdentityStore | None = None


def init_store(settings: Settings) -> IdentityStore:
    """Create the identity store selected by `store_backend`."""
    global _store  # noqa: PLW0603
    if settings.store_backend == "memory":
        _store = InMemoryIdentityStore()
    else:
        _store = SqlIdentityStore(get_session_factory())
    return _store


def close_store() -> None:
    global _store  # noqa: PLW0603
    _store = None


def get_store() -> IdentityStore:
    """Get the identity store instance."""
    if _store is None:
        msg = "Identity store not initialized. Call init_store() first."
        raise RuntimeError(msg)
    return _store


def get_reconciliation_engine() -> ReconciliationEngine:
    """Build a ReconciliationEngine over the shared store (FastAPI dependency)."""
    return ReconciliationEngine.from_settings(get_store(), JwtCredentialIssuer(), get_settings())
