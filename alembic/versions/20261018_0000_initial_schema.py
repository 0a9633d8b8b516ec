"""Initial schema for runner state, bot snapshots and simulated series.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Scalar watermarks
    op.create_table(
        "runner_state",
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    # Latest-wins bot snapshots
    op.create_table(
        "bot_state",
        sa.Column("bot_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("bot_account", sa.String(42), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("handle", sa.Text(), nullable=True),
        sa.Column("has_token", sa.Boolean(), nullable=False),
        sa.Column("token_address", sa.String(42), nullable=True),
        sa.Column("token_symbol", sa.String(64), nullable=True),
        sa.Column("lifecycle_state", sa.Integer(), nullable=False),
        sa.Column("paused", sa.Boolean(), nullable=False),
        sa.Column("cooldown_seconds", sa.Integer(), nullable=False),
        sa.Column("updated_ts", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("bot_id"),
    )
    op.create_index("idx_bot_state_updated", "bot_state", ["updated_ts"])

    op.create_table(
        "bot_last_activity",
        sa.Column("bot_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("ts", sa.BigInteger(), nullable=False),
        sa.Column("event_name", sa.String(32), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("tx_hash", sa.String(128), nullable=False),
        sa.PrimaryKeyConstraint("bot_id"),
    )

    # Performance samples, unique per (bot_id, ts)
    op.create_table(
        "bot_perf",
        sa.Column("bot_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("ts", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("equity", sa.Float(), nullable=False),
        sa.Column("pnl", sa.Float(), nullable=False),
        sa.Column("pnl_pct", sa.Float(), nullable=False),
        sa.Column("trades", sa.Integer(), nullable=False),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.PrimaryKeyConstraint("bot_id", "ts"),
    )
    op.create_index("idx_bot_perf_bot_ts", "bot_perf", ["bot_id", "ts"])

    op.create_table(
        "bot_decisions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("bot_id", sa.Integer(), nullable=False),
        sa.Column("ts", sa.BigInteger(), nullable=False),
        sa.Column("decision", sa.String(8), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_bot_decisions_bot_ts", "bot_decisions", ["bot_id", "ts"])

    op.create_table(
        "bot_trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("bot_id", sa.Integer(), nullable=False),
        sa.Column("ts", sa.BigInteger(), nullable=False),
        sa.Column("side", sa.String(8), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_bot_trades_bot_ts", "bot_trades", ["bot_id", "ts"])


def downgrade() -> None:
    op.drop_index("idx_bot_trades_bot_ts", table_name="bot_trades")
    op.drop_table("bot_trades")
    op.drop_index("idx_bot_decisions_bot_ts", table_name="bot_decisions")
    op.drop_table("bot_decisions")
    op.drop_index("idx_bot_perf_bot_ts", table_name="bot_perf")
    op.drop_table("bot_perf")
    op.drop_table("bot_last_activity")
    op.drop_index("idx_bot_state_updated", table_name="bot_state")
    op.drop_table("bot_state")
    op.drop_table("runner_state")
