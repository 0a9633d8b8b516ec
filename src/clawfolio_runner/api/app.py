"""Read-side HTTP surface of the runner.

Serves health, the leaderboard and per-bot series straight from the
store, plus an authenticated trigger for an out-of-band tick. Read
endpoints return whatever is currently persisted; storage failures come
back as ``{"ok": false, "error": ...}`` with status 500.
"""

from __future__ import annotations

import logging
import math
import secrets
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clawfolio_runner.scheduler import RunnerScheduler, TickInProgressError
from clawfolio_runner.storage.repos import (
    LAST_TICK_TS_KEY,
    LATEST_BLOCK_KEY,
    ActivityRepository,
    DecisionRepository,
    LeaderboardRepository,
    PerfRepository,
    PerfSampleDTO,
    RunnerStateRepository,
    TradeRepository,
)

logger = logging.getLogger(__name__)

API_VERSION = "0.2.0-sim"
ADMIN_TOKEN_HEADER = "X-Runner-Admin-Token"


def parse_limit(raw: str | None, *, default: int, lo: int, hi: int) -> int:
    """Clamp a ``limit`` query value; anything non-numeric yields ``default``."""
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    return int(max(lo, min(hi, math.floor(value))))


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


def _perf_row(sample: PerfSampleDTO, *, include_bot_id: bool) -> dict[str, Any]:
    row: dict[str, Any] = {
        "ts": sample.ts,
        "equity": sample.equity,
        "pnl": sample.pnl,
        "pnlPct": sample.pnl_pct,
        "trades": sample.trades,
        "mode": sample.mode,
    }
    if include_bot_id:
        row = {"botId": sample.bot_id, **row}
    return row


def create_app(scheduler: RunnerScheduler, *, manage_scheduler: bool = True) -> FastAPI:
    """Build the FastAPI application around a scheduler.

    Args:
        scheduler: Scheduler whose store and tick the endpoints use.
        manage_scheduler: Start and stop the scheduler with the app lifespan.

    Returns:
        The configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_scheduler:
            await scheduler.start()
        try:
            yield
        finally:
            if manage_scheduler:
                await scheduler.stop()

    app = FastAPI(
        title="Clawfolio Runner API",
        description="Simulated bot performance and leaderboard",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> Any:
        """Process status and tick watermarks."""
        settings = scheduler.settings
        try:
            async with scheduler.db.get_async_session() as session:
                runner_state = RunnerStateRepository(session)
                last_tick_ts = await runner_state.get_int(LAST_TICK_TS_KEY)
                latest_block = await runner_state.get_int(LATEST_BLOCK_KEY)
        except Exception as e:
            logger.exception("Health query failed")
            return _error(500, str(e))

        return {
            "ok": True,
            "ts": int(time.time()),
            "chainId": settings.chain.chain_id,
            "storageMode": scheduler.db.backend,
            "lastTickTs": last_tick_ts,
            "latestBlock": latest_block,
            "schedulerState": scheduler.state.value,
            "version": API_VERSION,
        }

    @app.get("/leaderboard")
    async def leaderboard(limit: str | None = None) -> Any:
        """Bots ranked by their latest pnlPct, best first."""
        n = parse_limit(limit, default=20, lo=1, hi=100)
        try:
            async with scheduler.db.get_async_session() as session:
                rows = await LeaderboardRepository(session).list_top(limit=n)
        except Exception as e:
            logger.exception("Leaderboard query failed")
            return _error(500, str(e))

        return {
            "ok": True,
            "mode": "simulation",
            "count": len(rows),
            "bots": [
                {
                    "botId": row.bot_id,
                    "name": row.name,
                    "handle": row.handle,
                    "hasToken": row.has_token,
                    "tokenSymbol": row.token_symbol,
                    "pnlPct": row.pnl_pct,
                    "pnl": row.pnl,
                    "trades": row.trades,
                    "lastDecisionTs": row.last_decision_ts,
                    "lastActivityTs": row.last_activity_ts,
                }
                for row in rows
            ],
        }

    @app.get("/bots/{bot_id}/perf")
    async def bot_perf(bot_id: int, limit: str | None = None) -> Any:
        """Latest sample and the ascending series of the most recent samples."""
        n = parse_limit(limit, default=200, lo=1, hi=1000)
        try:
            async with scheduler.db.get_async_session() as session:
                repo = PerfRepository(session)
                latest = await repo.get_latest(bot_id)
                series = await repo.list_series(bot_id, limit=n)
                sample_count = await repo.count(bot_id)
                activity = await ActivityRepository(session).get(bot_id)
        except Exception as e:
            logger.exception("Perf query failed for bot %d", bot_id)
            return _error(500, str(e))

        return {
            "ok": True,
            "botId": bot_id,
            "latest": _perf_row(latest, include_bot_id=True) if latest else None,
            "sampleCount": sample_count,
            "lastActivity": (
                {
                    "ts": activity.ts,
                    "eventName": activity.event_name,
                    "blockNumber": activity.block_number,
                    "txHash": activity.tx_hash,
                }
                if activity
                else None
            ),
            "series": [_perf_row(s, include_bot_id=False) for s in series],
        }

    @app.get("/bots/{bot_id}/decisions")
    async def bot_decisions(bot_id: int, limit: str | None = None) -> Any:
        """Most recent decisions first, executed or not."""
        n = parse_limit(limit, default=50, lo=1, hi=200)
        try:
            async with scheduler.db.get_async_session() as session:
                decisions = await DecisionRepository(session).list_recent(bot_id, limit=n)
        except Exception as e:
            logger.exception("Decisions query failed for bot %d", bot_id)
            return _error(500, str(e))

        return {
            "ok": True,
            "botId": bot_id,
            "count": len(decisions),
            "decisions": [
                {
                    "id": d.id,
                    "ts": d.ts,
                    "decision": d.decision,
                    "reason": d.reason,
                    "meta": d.meta,
                }
                for d in decisions
            ],
        }

    @app.get("/bots/{bot_id}/trades")
    async def bot_trades(bot_id: int, limit: str | None = None) -> Any:
        """Most recent simulated trades first."""
        n = parse_limit(limit, default=50, lo=1, hi=200)
        try:
            async with scheduler.db.get_async_session() as session:
                trades = await TradeRepository(session).list_recent(bot_id, limit=n)
        except Exception as e:
            logger.exception("Trades query failed for bot %d", bot_id)
            return _error(500, str(e))

        return {
            "ok": True,
            "botId": bot_id,
            "count": len(trades),
            "trades": [
                {
                    "id": t.id,
                    "ts": t.ts,
                    "side": t.side,
                    "qty": t.qty,
                    "price": t.price,
                    "reason": t.reason,
                    "meta": t.meta,
                }
                for t in trades
            ],
        }

    @app.post("/admin/tick")
    async def admin_tick(
        request: Request,
        x_runner_admin_token: str | None = Header(default=None, alias=ADMIN_TOKEN_HEADER),
    ) -> Any:
        """Run one tick now. Requires the pre-shared admin token."""
        configured = scheduler.settings.server.admin_token
        if configured is None:
            return _error(403, "RUNNER_ADMIN_TOKEN not configured")
        if not x_runner_admin_token or not secrets.compare_digest(
            x_runner_admin_token.encode(), configured.get_secret_value().encode()
        ):
            logger.warning("Rejected admin tick from %s", request.client.host if request.client else "?")
            return _error(401, "Unauthorized")

        try:
            summary = await scheduler.tick()
        except TickInProgressError as e:
            return _error(409, str(e))
        except Exception as e:
            logger.exception("Admin tick failed")
            return _error(500, str(e))

        return {
            "ok": True,
            "indexedBots": summary.indexed_bots,
            "updatedPerf": summary.updated_perf,
            "ts": summary.ts,
            "skipped": summary.skipped,
            "errors": summary.errors,
        }

    return app
