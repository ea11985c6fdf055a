"""ORM models for the identity store.

Uniqueness of usernames and wallet addresses is enforced by unique indexes
so that concurrent inserts cannot both bind the same value. NULLs never
collide under a unique index, so accounts without a username or wallet
coexist freely.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from idres.db.base import Base


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountRecord(Base):
    """Maps to the 'accounts' table."""

    __tablename__ = "accounts"
    __table_args__ = (
        Index("ix_accounts_username_key", "username_key", unique=True),
        Index("ix_accounts_wallet_address", "wallet_address", unique=True),
        CheckConstraint(
            "(is_anonymous AND wallet_address IS NULL) OR (NOT is_anonymous AND wallet_address IS NOT NULL)",
            name="ck_accounts_anonymous_iff_no_wallet",
        ),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    username_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_active_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    wallet_linked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
