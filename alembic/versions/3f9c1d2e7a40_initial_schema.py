"""initial_schema

Revision ID: 3f9c1d2e7a40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3f9c1d2e7a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the events, subscriptions, notifications and watermarks tables.

    Tables that already exist (e.g. created by `defroster init-db`) are left alone.
    """
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "events" not in existing_tables:
        op.create_table(
            "events",
            sa.Column("id", sa.String(length=64), primary_key=True),
            sa.Column("category", sa.String(length=32), nullable=False),
            sa.Column("latitude", sa.Float(), nullable=False),
            sa.Column("longitude", sa.Float(), nullable=False),
            sa.Column("cell_code", sa.String(length=22), nullable=False),
            sa.Column("created_at", sa.BigInteger(), nullable=False),
            sa.Column("expires_at", sa.BigInteger(), nullable=False),
        )
        op.create_index("idx_events_cell_code", "events", ["cell_code"])
        op.create_index("idx_events_created_at", "events", ["created_at"])
        op.create_index("idx_events_expires_at", "events", ["expires_at"])

    if "subscriptions" not in existing_tables:
        op.create_table(
            "subscriptions",
            sa.Column("device_id", sa.String(length=36), primary_key=True),
            sa.Column("push_token", sa.String(length=300), nullable=False),
            sa.Column("cell_code", sa.String(length=22), nullable=False),
            sa.Column("updated_at", sa.BigInteger(), nullable=False),
        )
        op.create_index("idx_subscriptions_cell_code", "subscriptions", ["cell_code"])
        op.create_index("idx_subscriptions_updated_at", "subscriptions", ["updated_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("key", sa.String(length=128), primary_key=True),
            sa.Column("event_id", sa.String(length=64), nullable=False),
            sa.Column("device_id", sa.String(length=36), nullable=False),
            sa.Column("sent_at", sa.BigInteger(), nullable=False),
            sa.Column("expires_at", sa.BigInteger(), nullable=False),
        )
        op.create_index("idx_notifications_sent_at", "notifications", ["sent_at"])
        op.create_index("idx_notifications_expires_at", "notifications", ["expires_at"])

    if "watermarks" not in existing_tables:
        op.create_table(
            "watermarks",
            sa.Column("cell_key", sa.String(length=22), primary_key=True),
            sa.Column("last_fetched_at", sa.BigInteger(), nullable=False),
        )
        op.create_index("idx_watermarks_last_fetched_at", "watermarks", ["last_fetched_at"])


def downgrade() -> None:
    """Drop all record store tables."""
    for table in ("watermarks", "notifications", "subscriptions", "events"):
        op.drop_table(table)
