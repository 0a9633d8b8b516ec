"""SQLAlchemy models for persistent storage.

This module defines the database schema for runner watermarks, the
latest-wins bot snapshots and activity markers, and the append-only
performance, decision and trade series. All timestamps are integer
UNIX seconds.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class RunnerStateModel(Base):
    """Process-wide and per-bot scalar watermarks (key/value, upsert only)."""

    __tablename__ = "runner_state"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class BotStateModel(Base):
    """Latest-known mirror of a bot's on-chain attributes."""

    __tablename__ = "bot_state"

    bot_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    bot_account: Mapped[str] = mapped_column(String(42), nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    handle: Mapped[str | None] = mapped_column(Text, nullable=True)
    has_token: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    token_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    token_symbol: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lifecycle_state: Mapped[int] = mapped_column(Integer, nullable=False)
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cooldown_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_ts: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_bot_state_updated", "updated_ts"),)


class BotLastActivityModel(Base):
    """Single latest-activity marker per bot."""

    __tablename__ = "bot_last_activity"

    bot_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_name: Mapped[str] = mapped_column(String(32), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False)


class BotPerfModel(Base):
    """Simulated performance sample, at most one per (bot, ts)."""

    __tablename__ = "bot_perf"

    bot_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    ts: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    equity: Mapped[float] = mapped_column(Float, nullable=False)
    pnl: Mapped[float] = mapped_column(Float, nullable=False)
    pnl_pct: Mapped[float] = mapped_column(Float, nullable=False)
    trades: Mapped[int] = mapped_column(Integer, nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (Index("idx_bot_perf_bot_ts", "bot_id", "ts"),)


class BotDecisionModel(Base):
    """Append-only decision log."""

    __tablename__ = "bot_decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bot_id: Mapped[int] = mapped_column(Integer, nullable=False)
    ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    decision: Mapped[str] = mapped_column(String(8), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (Index("idx_bot_decisions_bot_ts", "bot_id", "ts"),)


class BotTradeModel(Base):
    """Append-only simulated trade log."""

    __tablename__ = "bot_trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bot_id: Mapped[int] = mapped_column(Integer, nullable=False)
    ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (Index("idx_bot_trades_bot_ts", "bot_id", "ts"),)
