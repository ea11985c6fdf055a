"""Accounts table.

Creates the single identity table with unique indexes on the username
comparison key and the wallet address. The indexes are what make
concurrent first logins safe: the losing insert fails instead of
creating a second account.

Revision ID: 001_accounts
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_accounts"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the accounts table and its unique indexes."""
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("username_key", sa.String(64), nullable=True),
        sa.Column("wallet_address", sa.String(64), nullable=True),
        sa.Column("is_anonymous", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("wallet_linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "(is_anonymous AND wallet_address IS NULL) OR (NOT is_anonymous AND wallet_address IS NOT NULL)",
            name="ck_accounts_anonymous_iff_no_wallet",
        ),
    )
    op.create_index("ix_accounts_username_key", "accounts", ["username_key"], unique=True)
    op.create_index("ix_accounts_wallet_address", "accounts", ["wallet_address"], unique=True)


def downgrade() -> None:
    """Drop the accounts table."""
    op.drop_index("ix_accounts_wallet_address", table_name="accounts")
    op.drop_index("ix_accounts_username_key", table_name="accounts")
    op.drop_table("accounts")
