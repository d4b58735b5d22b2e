"""create_ledger_tables

Revision ID: a3f19c0d2b71
Revises:
Create Date: 2026-10-18 10:12:40.118203

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a3f19c0d2b71"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "pools",
        sa.Column("name", sa.String(length=32), nullable=False),
        sa.Column("initial_liquidity", sa.Float(), nullable=False),
        sa.Column("cumulative_realized_pnl", sa.Float(), nullable=False),
        sa.Column("total_liquidity", sa.Float(), nullable=False),
        sa.Column("distributed_liquidity", sa.Float(), nullable=False),
        sa.Column("available_liquidity", sa.Float(), nullable=False),
        sa.Column("positions_active", sa.Integer(), nullable=False),
        sa.Column("positions_closed", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("name"),
    )

    op.create_table(
        "ledger_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(length=20), nullable=False),
        sa.Column("pool", sa.String(length=32), nullable=False),
        sa.Column("position_id", sa.String(length=36), nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=True),
        sa.Column("side", sa.String(length=4), nullable=True),
        sa.Column("entry_price", sa.Float(), nullable=True),
        sa.Column("entry_range_min", sa.Float(), nullable=True),
        sa.Column("entry_range_max", sa.Float(), nullable=True),
        sa.Column("shares", sa.Float(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("fill_id", sa.String(length=36), nullable=True),
        sa.Column("percentage", sa.Float(), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("price_range_min", sa.Float(), nullable=True),
        sa.Column("price_range_max", sa.Float(), nullable=True),
        sa.Column("effective_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("supersedes_event_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["pool"], ["pools.name"]),
        sa.ForeignKeyConstraint(["supersedes_event_id"], ["ledger_events.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_ledger_events_position", "ledger_events", ["position_id", "id"])
    op.create_index("idx_ledger_events_pool", "ledger_events", ["pool", "id"])
    op.create_index("idx_ledger_events_fill", "ledger_events", ["fill_id"])
    op.create_index("idx_ledger_events_recorded", "ledger_events", ["recorded_at"])

    op.create_table(
        "pool_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("pool", sa.String(length=32), nullable=False),
        sa.Column("snapshot_date", sa.Date(), nullable=False),
        sa.Column("total_portfolio_value", sa.Float(), nullable=False),
        sa.Column("initial_liquidity", sa.Float(), nullable=False),
        sa.Column("cumulative_realized_pnl", sa.Float(), nullable=False),
        sa.Column("unrealized_pnl", sa.Float(), nullable=False),
        sa.Column("total_liquidity", sa.Float(), nullable=False),
        sa.Column("distributed_liquidity", sa.Float(), nullable=False),
        sa.Column("available_liquidity", sa.Float(), nullable=False),
        sa.Column("positions_active", sa.Integer(), nullable=False),
        sa.Column("positions_closed", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["pool"], ["pools.name"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pool", "snapshot_date", name="uq_pool_snapshots_pool_date"),
    )
    op.create_index("idx_pool_snapshots_pool_date", "pool_snapshots", ["pool", "snapshot_date"])

    op.create_table(
        "price_marks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("marked_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_price_marks_symbol_time", "price_marks", ["symbol", "marked_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_price_marks_symbol_time", table_name="price_marks")
    op.drop_table("price_marks")
    op.drop_index("idx_pool_snapshots_pool_date", table_name="pool_snapshots")
    op.drop_table("pool_snapshots")
    op.drop_index("idx_ledger_events_recorded", table_name="ledger_events")
    op.drop_index("idx_ledger_events_fill", table_name="ledger_events")
    op.drop_index("idx_ledger_events_pool", table_name="ledger_events")
    op.drop_index("idx_ledger_events_position", table_name="ledger_events")
    op.drop_table("ledger_events")
    op.drop_table("pools")
