"""Tests for the fleet indexing run."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from clawfolio_runner.chain.abi import EventKind
from clawfolio_runner.chain.retry import RetryPolicy
from clawfolio_runner.config import ZERO_ADDRESS
from clawfolio_runner.indexer.events import parse_event
from clawfolio_runner.indexer.metrics import format_amount, shorten_address, tokens_touched
from clawfolio_runner.indexer.run import EventSummary, FleetIndexer

TOKEN = "0x00000000000000000000000000000000000000Bb"
OTHER = "0x00000000000000000000000000000000000000cc"
UNKNOWN = "0x00000000000000000000000000000000000000dd"
NO_DELAY = RetryPolicy(max_attempts=2, base_delay_seconds=0.0)


def _flow_args(kind: EventKind, amount: int) -> dict:
    if kind == EventKind.DEPOSITED:
        return {"botId": 0, "token": TOKEN, "amount": amount, "depositor": TOKEN}
    return {"botId": 0, "token": TOKEN, "amount": amount, "to": TOKEN}


def _trade_args(path: list[str]) -> dict:
    return {
        "botId": 0,
        "nonce": 1,
        "operator": OTHER,
        "router": UNKNOWN,
        "path": path,
        "amountIn": 10,
        "amountOut": 9,
        "timestamp": 1_700_000_000,
    }


class TestEventSummary:
    """Tests for summary aggregation."""

    def test_empty(self) -> None:
        summary = EventSummary.from_events([])
        assert summary.to_dict() == {"tradeCount": 0, "lastActivity": None, "netFlows": {}}

    def test_net_flows(self) -> None:
        events = [
            parse_event(
                EventKind.WITHDRAWN,
                {"args": _flow_args(EventKind.WITHDRAWN, 30), "transactionHash": "0x2", "blockNumber": 9, "logIndex": 0},
            ),
            parse_event(
                EventKind.DEPOSITED,
                {"args": _flow_args(EventKind.DEPOSITED, 100), "transactionHash": "0x1", "blockNumber": 5, "logIndex": 0},
            ),
        ]

        data = EventSummary.from_events(events).to_dict()

        assert data["netFlows"] == {TOKEN.lower(): "70"}
        assert data["lastActivity"] == {"blockNumber": 9, "tx": "0x2", "type": "Withdrawn"}


class TestFormatting:
    """Tests for amount and address formatting."""

    @pytest.mark.parametrize(
        ("amount", "decimals", "expected"),
        [
            (0, 18, "0"),
            (15 * 10**17, 18, "1.5"),
            (3_750_000, 6, "3.75"),
            (-1_250_000, 6, "-1.25"),
            (123_456_789, 6, "123.4567"),
            (10**18 + 1, 18, "1"),
            (42, 0, "42"),
        ],
    )
    def test_format_amount(self, amount: int, decimals: int, expected: str) -> None:
        assert format_amount(amount, decimals) == expected

    def test_shorten_address(self) -> None:
        assert shorten_address(OTHER) == "0x0000...00cc"

    def test_tokens_touched_skips_zero_address(self) -> None:
        trade = parse_event(
            EventKind.TRADE_EXECUTED,
            {"args": _trade_args([TOKEN, ZERO_ADDRESS, OTHER]), "transactionHash": "0x3", "blockNumber": 9, "logIndex": 0},
        )
        deposit = parse_event(
            EventKind.DEPOSITED,
            {"args": _flow_args(EventKind.DEPOSITED, 1), "transactionHash": "0x1", "blockNumber": 5, "logIndex": 0},
        )

        assert tokens_touched([trade, deposit]) == [TOKEN.lower(), OTHER]


class TestFleetIndexer:
    """Tests for FleetIndexer.run."""

    @pytest.mark.asyncio
    async def test_writes_index_files(self, fake_reader, tmp_path: Path) -> None:
        account = fake_reader.add_bot(0)
        fake_reader.add_log(
            EventKind.DEPOSITED,
            block_number=900,
            log_index=1,
            tx_hash="0xd1",
            args=_flow_args(EventKind.DEPOSITED, 5 * 10**18),
        )
        indexer = FleetIndexer(fake_reader, out_dir=tmp_path, start_block=800, retry_policy=NO_DELAY)

        stats = await indexer.run()

        assert stats.bots_indexed == 1
        assert stats.events_total == 1
        payload = json.loads((tmp_path / "index" / "0.json").read_text())
        assert payload["botId"] == 0
        assert payload["botAccount"] == account
        assert payload["startBlock"] == 800
        assert payload["endBlock"] == fake_reader.latest_block
        assert payload["eventCount"] == 1
        assert payload["events"][0]["type"] == "Deposited"
        assert payload["summary"]["netFlows"] == {TOKEN.lower(): str(5 * 10**18)}

    @pytest.mark.asyncio
    async def test_unregistered_bot_skipped(self, fake_reader, tmp_path: Path) -> None:
        fake_reader.add_bot(1)
        indexer = FleetIndexer(fake_reader, out_dir=tmp_path, retry_policy=NO_DELAY)

        stats = await indexer.run()

        assert stats.bots_total == 2
        assert stats.bots_skipped == 1
        assert stats.bots_indexed == 1
        assert not (tmp_path / "index" / "0.json").exists()
        assert (tmp_path / "index" / "1.json").exists()

    @pytest.mark.asyncio
    async def test_failing_bot_does_not_stop_run(self, fake_reader, tmp_path: Path, monkeypatch) -> None:
        fake_reader.add_bot(0)
        fake_reader.add_bot(1)
        fake_reader.add_bot(2)
        original = fake_reader.get_account_of

        async def flaky_account_of(bot_id: int) -> str:
            if bot_id == 1:
                raise RuntimeError("rpc down")
            return await original(bot_id)

        monkeypatch.setattr(fake_reader, "get_account_of", flaky_account_of)
        indexer = FleetIndexer(fake_reader, out_dir=tmp_path, retry_policy=NO_DELAY)

        stats = await indexer.run()

        assert stats.failed_bot_ids == [1]
        assert stats.bots_indexed == 2
        assert (tmp_path / "index" / "2.json").exists()

    @pytest.mark.asyncio
    async def test_max_bots_caps_run(self, fake_reader, tmp_path: Path) -> None:
        for bot_id in range(5):
            fake_reader.add_bot(bot_id)
        indexer = FleetIndexer(fake_reader, out_dir=tmp_path, max_bots=2, retry_policy=NO_DELAY)

        stats = await indexer.run()

        assert stats.bots_total == 2
        assert sorted(p.name for p in (tmp_path / "index").iterdir()) == ["0.json", "1.json"]


class TestBotMetrics:
    """Tests for the metrics file written next to each index file."""

    @pytest.mark.asyncio
    async def test_writes_metrics_file(self, fake_reader, tmp_path: Path) -> None:
        account = fake_reader.add_bot(0, paused=True, lifecycle_state=2)
        token = TOKEN.lower()
        fake_reader.symbols[token] = "USDC"
        fake_reader.decimals[token] = 6
        fake_reader.decimals[OTHER] = 18
        fake_reader.token_balances[(token, account)] = 2_500_000
        fake_reader.native_balances[account] = 15 * 10**17
        fake_reader.add_log(
            EventKind.DEPOSITED, block_number=900, log_index=0, tx_hash="0xd1", args=_flow_args(EventKind.DEPOSITED, 5_000_000)
        )
        fake_reader.add_log(
            EventKind.WITHDRAWN, block_number=910, log_index=0, tx_hash="0xw1", args=_flow_args(EventKind.WITHDRAWN, 1_250_000)
        )
        fake_reader.add_log(
            EventKind.TRADE_EXECUTED, block_number=920, log_index=0, tx_hash="0xt1", args=_trade_args([TOKEN, OTHER, UNKNOWN])
        )
        indexer = FleetIndexer(fake_reader, out_dir=tmp_path, retry_policy=NO_DELAY)

        stats = await indexer.run()

        assert stats.metrics_written == 1
        assert stats.metrics_failed == 0
        metrics = json.loads((tmp_path / "metrics" / "0.json").read_text())
        assert metrics["botId"] == 0
        assert metrics["botAccount"] == account
        assert metrics["paused"] is True
        assert metrics["lifecycleState"] == 2
        assert metrics["operator"] == fake_reader.roles[account].operator
        assert metrics["creator"] == fake_reader.roles[account].creator
        assert metrics["tradeCount"] == 1
        assert metrics["lastActivity"] == {"blockNumber": 920, "tx": "0xt1", "type": "TradeExecuted"}
        assert metrics["balances"] == [
            {"token": "MON", "symbol": "MON", "decimals": 18, "raw": str(15 * 10**17), "formatted": "1.5"},
            {"token": token, "symbol": "USDC", "decimals": 6, "raw": "2500000", "formatted": "2.5"},
            {"token": OTHER, "symbol": "0x0000...00cc", "decimals": 18, "raw": "0", "formatted": "0"},
        ]
        assert metrics["flows"] == [
            {"token": token, "symbol": "USDC", "decimals": 6, "netRaw": "3750000", "netFormatted": "3.75"},
        ]

    @pytest.mark.asyncio
    async def test_metrics_failure_keeps_index(self, fake_reader, tmp_path: Path, monkeypatch) -> None:
        fake_reader.add_bot(0)

        async def broken_roles(account: str):
            raise RuntimeError("operator() reverted")

        monkeypatch.setattr(fake_reader, "get_roles", broken_roles)
        indexer = FleetIndexer(fake_reader, out_dir=tmp_path, retry_policy=NO_DELAY)

        stats = await indexer.run()

        assert stats.bots_indexed == 1
        assert stats.bots_failed == 0
        assert stats.metrics_failed == 1
        assert (tmp_path / "index" / "0.json").exists()
        assert not (tmp_path / "metrics" / "0.json").exists()
