"""Repository pattern implementations for data access.

This module provides clean data access abstractions for runner
watermarks, bot snapshots and activity markers (latest-wins upserts),
and the append-only performance, decision and trade series.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from clawfolio_runner.storage.models import (
    Base,
    BotDecisionModel,
    BotLastActivityModel,
    BotPerfModel,
    BotStateModel,
    BotTradeModel,
    RunnerStateModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

LAST_TICK_TS_KEY = "lastTickTs"
LATEST_BLOCK_KEY = "latestBlock"


def nonce_key(bot_id: int) -> str:
    """ScalarState key holding the last seen nonce of a bot."""
    return f"nonce:{bot_id}"


async def _upsert(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    index_elements: list[str],
) -> None:
    """INSERT ... ON CONFLICT DO UPDATE for the session's bound dialect."""
    insert = pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert
    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={k: stmt.excluded[k] for k in values if k not in index_elements},
    )
    await session.execute(stmt)


@dataclass
class BotStateDTO:
    """Data transfer object for bot snapshots."""

    bot_id: int
    bot_account: str
    lifecycle_state: int
    paused: bool
    cooldown_seconds: int
    updated_ts: int
    name: str | None = None
    handle: str | None = None
    has_token: bool = False
    token_address: str | None = None
    token_symbol: str | None = None

    @classmethod
    def from_model(cls, model: BotStateModel) -> BotStateDTO:
        return cls(
            bot_id=model.bot_id,
            bot_account=model.bot_account,
            lifecycle_state=model.lifecycle_state,
            paused=bool(model.paused),
            cooldown_seconds=model.cooldown_seconds,
            updated_ts=model.updated_ts,
            name=model.name,
            handle=model.handle,
            has_token=bool(model.has_token),
            token_address=model.token_address,
            token_symbol=model.token_symbol,
        )


@dataclass
class ActivityDTO:
    """Data transfer object for the latest activity marker of a bot."""

    bot_id: int
    ts: int
    event_name: str
    block_number: int
    tx_hash: str

    @classmethod
    def from_model(cls, model: BotLastActivityModel) -> ActivityDTO:
        return cls(
            bot_id=model.bot_id,
            ts=model.ts,
            event_name=model.event_name,
            block_number=model.block_number,
            tx_hash=model.tx_hash,
        )


@dataclass
class PerfSampleDTO:
    """Data transfer object for performance samples."""

    bot_id: int
    ts: int
    equity: float
    pnl: float
    pnl_pct: float
    trades: int
    mode: str = "simulation"

    @classmethod
    def from_model(cls, model: BotPerfModel) -> PerfSampleDTO:
        return cls(
            bot_id=model.bot_id,
            ts=model.ts,
            equity=model.equity,
            pnl=model.pnl,
            pnl_pct=model.pnl_pct,
            trades=model.trades,
            mode=model.mode,
        )


@dataclass
class DecisionDTO:
    """Data transfer object for decision log rows."""

    bot_id: int
    ts: int
    decision: str
    reason: str
    meta: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    @classmethod
    def from_model(cls, model: BotDecisionModel) -> DecisionDTO:
        return cls(
            bot_id=model.bot_id,
            ts=model.ts,
            decision=model.decision,
            reason=model.reason,
            meta=dict(model.meta or {}),
            id=model.id,
        )


@dataclass
class TradeDTO:
    """Data transfer object for simulated trades."""

    bot_id: int
    ts: int
    side: str
    qty: int
    price: float
    reason: str
    meta: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    @classmethod
    def from_model(cls, model: BotTradeModel) -> TradeDTO:
        return cls(
            bot_id=model.bot_id,
            ts=model.ts,
            side=model.side,
            qty=model.qty,
            price=model.price,
            reason=model.reason,
            meta=dict(model.meta or {}),
            id=model.id,
        )


@dataclass
class LeaderboardEntryDTO:
    """One ranked bot as served by the leaderboard."""

    bot_id: int
    name: str | None
    handle: str | None
    has_token: bool
    token_symbol: str | None
    pnl_pct: float
    pnl: float
    trades: int
    last_decision_ts: int | None
    last_activity_ts: int | None


class RunnerStateRepository:
    """Repository for scalar watermarks."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, key: str) -> str | None:
        result = await self.session.execute(
            select(RunnerStateModel.value).where(RunnerStateModel.key == key)
        )
        return result.scalar_one_or_none()

    async def get_int(self, key: str) -> int | None:
        """Get a watermark as an integer, or None when absent or malformed."""
        value = await self.get(key)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning("Ignoring non-integer runner_state value %s=%r", key, value)
            return None

    async def set(self, key: str, value: str | int) -> None:
        await _upsert(
            self.session,
            RunnerStateModel,
            {"key": key, "value": str(value)},
            ["key"],
        )
        await self.session.flush()


class BotStateRepository:
    """Repository for latest-wins bot snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, bot_id: int) -> BotStateDTO | None:
        result = await self.session.execute(select(BotStateModel).where(BotStateModel.bot_id == bot_id))
        model = result.scalar_one_or_none()
        return BotStateDTO.from_model(model) if model else None

    async def upsert(self, dto: BotStateDTO) -> BotStateDTO:
        """Upsert snapshot by bot_id."""
        await _upsert(
            self.session,
            BotStateModel,
            {
                "bot_id": dto.bot_id,
                "bot_account": dto.bot_account,
                "name": dto.name,
                "handle": dto.handle,
                "has_token": dto.has_token,
                "token_address": dto.token_address if dto.has_token else None,
                "token_symbol": dto.token_symbol,
                "lifecycle_state": dto.lifecycle_state,
                "paused": dto.paused,
                "cooldown_seconds": dto.cooldown_seconds,
                "updated_ts": dto.updated_ts,
            },
            ["bot_id"],
        )
        await self.session.flush()
        return dto


class ActivityRepository:
    """Repository for the per-bot latest activity marker."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, bot_id: int) -> ActivityDTO | None:
        result = await self.session.execute(
            select(BotLastActivityModel).where(BotLastActivityModel.bot_id == bot_id)
        )
        model = result.scalar_one_or_none()
        return ActivityDTO.from_model(model) if model else None

    async def upsert(self, dto: ActivityDTO) -> ActivityDTO:
        await _upsert(
            self.session,
            BotLastActivityModel,
            {
                "bot_id": dto.bot_id,
                "ts": dto.ts,
                "event_name": dto.event_name,
                "block_number": dto.block_number,
                "tx_hash": dto.tx_hash,
            },
            ["bot_id"],
        )
        await self.session.flush()
        return dto


class PerfRepository:
    """Repository for performance samples."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: PerfSampleDTO) -> PerfSampleDTO:
        """Write the sample for (bot_id, ts), replacing one from a re-tick."""
        await _upsert(
            self.session,
            BotPerfModel,
            {
                "bot_id": dto.bot_id,
                "ts": dto.ts,
                "equity": dto.equity,
                "pnl": dto.pnl,
                "pnl_pct": dto.pnl_pct,
                "trades": dto.trades,
                "mode": dto.mode,
            },
            ["bot_id", "ts"],
        )
        await self.session.flush()
        return dto

    async def get_latest(self, bot_id: int) -> PerfSampleDTO | None:
        result = await self.session.execute(
            select(BotPerfModel)
            .where(BotPerfModel.bot_id == bot_id)
            .order_by(BotPerfModel.ts.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return PerfSampleDTO.from_model(model) if model else None

    async def list_series(self, bot_id: int, *, limit: int) -> list[PerfSampleDTO]:
        """Return the most recent ``limit`` samples in ascending time order."""
        result = await self.session.execute(
            select(BotPerfModel)
            .where(BotPerfModel.bot_id == bot_id)
            .order_by(BotPerfModel.ts.desc())
            .limit(limit)
        )
        rows = [PerfSampleDTO.from_model(m) for m in result.scalars().all()]
        rows.reverse()
        return rows

    async def count(self, bot_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(BotPerfModel).where(BotPerfModel.bot_id == bot_id)
        )
        return int(result.scalar_one())


class DecisionRepository:
    """Repository for the append-only decision log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: DecisionDTO) -> DecisionDTO:
        if not dto.reason:
            raise ValueError("Decision reason must not be empty")
        model = BotDecisionModel(
            bot_id=dto.bot_id,
            ts=dto.ts,
            decision=dto.decision,
            reason=dto.reason,
            meta=dto.meta,
        )
        self.session.add(model)
        await self.session.flush()
        dto.id = model.id
        return dto

    async def list_recent(self, bot_id: int, *, limit: int = 50) -> list[DecisionDTO]:
        result = await self.session.execute(
            select(BotDecisionModel)
            .where(BotDecisionModel.bot_id == bot_id)
            .order_by(BotDecisionModel.ts.desc(), BotDecisionModel.id.desc())
            .limit(limit)
        )
        return [DecisionDTO.from_model(m) for m in result.scalars().all()]


class TradeRepository:
    """Repository for the append-only simulated trade log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: TradeDTO) -> TradeDTO:
        model = BotTradeModel(
            bot_id=dto.bot_id,
            ts=dto.ts,
            side=dto.side,
            qty=dto.qty,
            price=dto.price,
            reason=dto.reason,
            meta=dto.meta,
        )
        self.session.add(model)
        await self.session.flush()
        dto.id = model.id
        return dto

    async def get_last_trade_ts(self, bot_id: int) -> int | None:
        """Timestamp of the most recent trade, used for cooldown gating."""
        result = await self.session.execute(
            select(BotTradeModel.ts)
            .where(BotTradeModel.bot_id == bot_id)
            .order_by(BotTradeModel.ts.desc(), BotTradeModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, bot_id: int, *, limit: int = 50) -> list[TradeDTO]:
        """Most recent trades first."""
        result = await self.session.execute(
            select(BotTradeModel)
            .where(BotTradeModel.bot_id == bot_id)
            .order_by(BotTradeModel.ts.desc(), BotTradeModel.id.desc())
            .limit(limit)
        )
        return [TradeDTO.from_model(m) for m in result.scalars().all()]


class LeaderboardRepository:
    """Read-side query ranking bots by their latest performance sample."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_top(self, *, limit: int = 20) -> list[LeaderboardEntryDTO]:
        latest = (
            select(BotPerfModel.bot_id, func.max(BotPerfModel.ts).label("max_ts"))
            .group_by(BotPerfModel.bot_id)
            .subquery()
        )
        last_decision_ts = (
            select(func.max(BotDecisionModel.ts))
            .where(BotDecisionModel.bot_id == BotStateModel.bot_id)
            .correlate(BotStateModel)
            .scalar_subquery()
        )
        stmt = (
            select(
                BotStateModel,
                BotPerfModel,
                BotLastActivityModel.ts.label("last_activity_ts"),
                last_decision_ts.label("last_decision_ts"),
            )
            .join(BotPerfModel, BotPerfModel.bot_id == BotStateModel.bot_id)
            .join(
                latest,
                and_(latest.c.bot_id == BotPerfModel.bot_id, latest.c.max_ts == BotPerfModel.ts),
            )
            .outerjoin(BotLastActivityModel, BotLastActivityModel.bot_id == BotStateModel.bot_id)
            .order_by(BotPerfModel.pnl_pct.desc(), BotStateModel.bot_id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)

        entries: list[LeaderboardEntryDTO] = []
        for state, perf, last_activity_ts, last_decision in result.all():
            entries.append(
                LeaderboardEntryDTO(
                    bot_id=state.bot_id,
                    name=state.name,
                    handle=state.handle,
                    has_token=bool(state.has_token),
                    token_symbol=state.token_symbol,
                    pnl_pct=perf.pnl_pct,
                    pnl=perf.pnl,
                    trades=perf.trades,
                    last_decision_ts=last_decision,
                    last_activity_ts=last_activity_ts,
                )
            )
        return entries
