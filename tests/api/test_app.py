"""Tests for the HTTP API."""

from __future__ import annotations

import asyncio
import contextlib

import pytest
from httpx import ASGITransport, AsyncClient

from clawfolio_runner.api.app import ADMIN_TOKEN_HEADER, API_VERSION, create_app, parse_limit
from clawfolio_runner.scheduler import RunnerScheduler

NOW = 1_700_000_000
TOKEN = "let-me-in"


@pytest.fixture
def make_client(make_settings, fake_reader, db):
    """Factory for an API client over a scheduler that is never auto-started."""

    def _make(admin_token: str | None = TOKEN, clock=None, **overrides) -> tuple[AsyncClient, RunnerScheduler]:
        scheduler = RunnerScheduler(
            make_settings(admin_token=admin_token, **overrides),
            reader=fake_reader,
            db=db,
            clock=clock or (lambda: NOW),
        )
        app = create_app(scheduler, manage_scheduler=False)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        return client, scheduler

    return _make


@pytest.fixture
async def client(make_client):
    """API client with an admin token configured."""
    ac, _ = make_client()
    async with ac:
        yield ac


async def _tick(client: AsyncClient) -> dict:
    response = await client.post("/admin/tick", headers={ADMIN_TOKEN_HEADER: TOKEN})
    assert response.status_code == 200
    return response.json()


# ============================================================================
# parse_limit
# ============================================================================


class TestParseLimit:
    """Tests for limit clamping."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (None, 200),
            ("50", 50),
            ("12.9", 12),
            ("0", 1),
            ("-4", 1),
            ("999999", 1000),
            ("abc", 200),
            ("inf", 200),
            ("nan", 200),
        ],
    )
    def test_values(self, raw: str | None, expected: int) -> None:
        assert parse_limit(raw, default=200, lo=1, hi=1000) == expected


# ============================================================================
# Read endpoints
# ============================================================================


class TestHealth:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    async def test_before_first_tick(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["chainId"] == 10143
        assert data["storageMode"] == "sqlite"
        assert data["lastTickTs"] is None
        assert data["latestBlock"] is None
        assert data["schedulerState"] == "idle"
        assert data["version"] == API_VERSION

    @pytest.mark.asyncio
    async def test_after_tick(self, client: AsyncClient, fake_reader) -> None:
        fake_reader.add_bot(0)
        await _tick(client)

        data = (await client.get("/health")).json()

        assert data["lastTickTs"] == NOW
        assert data["latestBlock"] == fake_reader.latest_block

    @pytest.mark.asyncio
    async def test_answers_during_boot_tick(self, make_settings, fake_reader, db, monkeypatch) -> None:
        fake_reader.add_bot(0)
        release = asyncio.Event()
        entered = asyncio.Event()
        original = fake_reader.get_latest_block_height

        async def slow_height() -> int:
            entered.set()
            await release.wait()
            return await original()

        monkeypatch.setattr(fake_reader, "get_latest_block_height", slow_height)
        scheduler = RunnerScheduler(
            make_settings(disable_loop=False, tick_interval_seconds=3600),
            reader=fake_reader,
            db=db,
            clock=lambda: NOW,
        )
        app = create_app(scheduler)

        async with contextlib.AsyncExitStack() as stack:
            # entering the lifespan must not wait for the boot tick
            await asyncio.wait_for(stack.enter_async_context(app.router.lifespan_context(app)), timeout=5)
            await asyncio.wait_for(entered.wait(), timeout=5)
            ac = await stack.enter_async_context(
                AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
            )

            response = await ac.get("/health")
            release.set()

        assert response.status_code == 200
        assert response.json()["schedulerState"] == "ticking"
        assert response.json()["lastTickTs"] is None
        assert scheduler.stats.ticks_completed == 1


class TestLeaderboard:
    """Tests for GET /leaderboard."""

    @pytest.mark.asyncio
    async def test_empty(self, client: AsyncClient) -> None:
        data = (await client.get("/leaderboard")).json()
        assert data == {"ok": True, "mode": "simulation", "count": 0, "bots": []}

    @pytest.mark.asyncio
    async def test_ranked(self, client: AsyncClient, fake_reader) -> None:
        for bot_id in range(3):
            fake_reader.add_bot(bot_id)
        await _tick(client)

        data = (await client.get("/leaderboard", params={"limit": "2"})).json()

        assert data["count"] == 2
        pnl = [row["pnlPct"] for row in data["bots"]]
        assert pnl == sorted(pnl, reverse=True)
        row = data["bots"][0]
        assert set(row) == {
            "botId",
            "name",
            "handle",
            "hasToken",
            "tokenSymbol",
            "pnlPct",
            "pnl",
            "trades",
            "lastDecisionTs",
            "lastActivityTs",
        }
        assert row["lastDecisionTs"] == NOW
        assert row["lastActivityTs"] == NOW


class TestBotSeries:
    """Tests for per-bot perf and trades."""

    @pytest.mark.asyncio
    async def test_perf_unknown_bot(self, client: AsyncClient) -> None:
        data = (await client.get("/bots/9/perf")).json()
        assert data == {"ok": True, "botId": 9, "latest": None, "sampleCount": 0, "lastActivity": None, "series": []}

    @pytest.mark.asyncio
    async def test_perf_after_tick(self, client: AsyncClient, fake_reader) -> None:
        fake_reader.add_bot(0)
        await _tick(client)

        data = (await client.get("/bots/0/perf", params={"limit": "abc"})).json()

        assert data["latest"]["botId"] == 0
        assert data["latest"]["ts"] == NOW
        assert data["latest"]["mode"] == "simulation"
        assert len(data["series"]) == 1
        assert "botId" not in data["series"][0]
        assert data["sampleCount"] == 1
        assert data["lastActivity"] == {
            "ts": NOW,
            "eventName": "Heartbeat",
            "blockNumber": fake_reader.latest_block,
            "txHash": f"sim-0-{NOW}",
        }

    @pytest.mark.asyncio
    async def test_decisions_unknown_bot(self, client: AsyncClient) -> None:
        data = (await client.get("/bots/9/decisions")).json()
        assert data == {"ok": True, "botId": 9, "count": 0, "decisions": []}

    @pytest.mark.asyncio
    async def test_decisions_after_tick(self, client: AsyncClient, fake_reader) -> None:
        fake_reader.add_bot(0)
        fake_reader.add_bot(1)
        await _tick(client)

        data = (await client.get("/bots/0/decisions", params={"limit": "5"})).json()

        assert data["ok"] is True
        assert data["botId"] == 0
        assert data["count"] == 1
        decision = data["decisions"][0]
        assert set(decision) == {"id", "ts", "decision", "reason", "meta"}
        assert decision["ts"] == NOW
        assert decision["decision"] in ("BUY", "SELL", "HOLD")
        assert decision["reason"]

    @pytest.mark.asyncio
    async def test_decisions_newest_first_and_limited(self, make_client, fake_reader) -> None:
        fake_reader.add_bot(0)
        ticks = iter([NOW, NOW + 30, NOW + 60])
        ac, _ = make_client(clock=lambda: next(ticks))

        async with ac:
            for _ in range(3):
                await _tick(ac)
            data = (await ac.get("/bots/0/decisions", params={"limit": "2"})).json()

        assert [d["ts"] for d in data["decisions"]] == [NOW + 60, NOW + 30]

    @pytest.mark.asyncio
    async def test_trades_shape(self, client: AsyncClient, fake_reader) -> None:
        fake_reader.add_bot(0)
        await _tick(client)

        data = (await client.get("/bots/0/trades", params={"limit": "-3"})).json()

        assert data["ok"] is True
        assert data["botId"] == 0
        assert data["count"] == len(data["trades"])
        assert data["count"] <= 1
        for trade in data["trades"]:
            assert trade["side"] in ("BUY", "SELL")
            assert 1 <= trade["qty"] <= 10
            assert 0.8 <= trade["price"] <= 1.2

    @pytest.mark.asyncio
    async def test_non_integer_bot_id(self, client: AsyncClient) -> None:
        response = await client.get("/bots/abc/perf")
        assert response.status_code == 422


# ============================================================================
# Admin tick
# ============================================================================


class TestAdminTick:
    """Tests for POST /admin/tick."""

    @pytest.mark.asyncio
    async def test_not_configured(self, make_client) -> None:
        ac, _ = make_client(admin_token=None)
        async with ac:
            response = await ac.post("/admin/tick", headers={ADMIN_TOKEN_HEADER: TOKEN})

        assert response.status_code == 403
        assert response.json()["ok"] is False

    @pytest.mark.asyncio
    async def test_wrong_token(self, client: AsyncClient) -> None:
        missing = await client.post("/admin/tick")
        wrong = await client.post("/admin/tick", headers={ADMIN_TOKEN_HEADER: "nope"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert wrong.json() == {"ok": False, "error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_tick_summary(self, client: AsyncClient, fake_reader) -> None:
        fake_reader.add_bot(0)
        fake_reader.add_bot(1)

        data = await _tick(client)

        assert data == {"ok": True, "indexedBots": 2, "updatedPerf": 2, "ts": NOW, "skipped": 0, "errors": 0}

    @pytest.mark.asyncio
    async def test_tick_in_progress(self, make_client, fake_reader, monkeypatch) -> None:
        fake_reader.add_bot(0)
        release = asyncio.Event()
        entered = asyncio.Event()
        original = fake_reader.get_latest_block_height

        async def slow_height() -> int:
            entered.set()
            await release.wait()
            return await original()

        monkeypatch.setattr(fake_reader, "get_latest_block_height", slow_height)
        ac, scheduler = make_client()

        async with ac:
            running = asyncio.create_task(scheduler.tick())
            await entered.wait()
            response = await ac.post("/admin/tick", headers={ADMIN_TOKEN_HEADER: TOKEN})
            release.set()
            await running

        assert response.status_code == 409
        assert response.json()["ok"] is False

    @pytest.mark.asyncio
    async def test_tick_failure(self, client: AsyncClient, fake_reader, monkeypatch) -> None:
        async def broken_roster() -> int:
            raise RuntimeError("registry unreachable")

        monkeypatch.setattr(fake_reader, "get_roster_size", broken_roster)

        response = await client.post("/admin/tick", headers={ADMIN_TOKEN_HEADER: TOKEN})

        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "registry unreachable"}
