"""Tests for chunked log fetching."""

from __future__ import annotations

import pytest

from clawfolio_runner.chain.abi import EventKind
from clawfolio_runner.chain.reader import ChainReaderError
from clawfolio_runner.chain.retry import RetryPolicy
from clawfolio_runner.indexer.events import Deposited, PausedUpdated, TradeExecuted, parse_event
from clawfolio_runner.indexer.fetcher import EVENT_KINDS, LogIndexer, block_windows, dedupe_and_sort

ACCOUNT = "0x00000000000000000000000000000000000000aa"
TOKEN = "0x00000000000000000000000000000000000000bb"
NO_DELAY = RetryPolicy(max_attempts=3, base_delay_seconds=0.0)


def _deposit_log(block: int, log_index: int, tx_hash: str, amount: int = 10) -> dict:
    return {
        "event": "Deposited",
        "args": {"botId": 0, "token": TOKEN, "amount": amount, "depositor": ACCOUNT},
        "transactionHash": tx_hash,
        "blockNumber": block,
        "logIndex": log_index,
    }


# ============================================================================
# Windows
# ============================================================================


class TestBlockWindows:
    """Tests for backward window enumeration."""

    def test_two_windows(self) -> None:
        assert block_windows(100, 250) == [(151, 250), (100, 150)]

    def test_single_block(self) -> None:
        assert block_windows(7, 7) == [(7, 7)]

    def test_exact_chunk(self) -> None:
        assert block_windows(1, 100) == [(1, 100)]

    def test_empty_range(self) -> None:
        assert block_windows(300, 250) == []

    def test_windows_cover_range(self) -> None:
        windows = block_windows(0, 1234, chunk_size=100)
        covered = sorted(b for start, end in windows for b in range(start, end + 1))
        assert covered == list(range(0, 1235))
        assert all(end - start + 1 <= 100 for start, end in windows)


# ============================================================================
# Dedupe and sort
# ============================================================================


class TestDedupeAndSort:
    """Tests for identity dedupe and ordering."""

    def test_first_occurrence_wins(self) -> None:
        first = parse_event(EventKind.DEPOSITED, _deposit_log(10, 0, "0xAA", amount=1))
        repeat = parse_event(EventKind.DEPOSITED, _deposit_log(10, 0, "0xaa", amount=2))

        result = dedupe_and_sort([first, repeat])

        assert len(result) == 1
        assert isinstance(result[0], Deposited)
        assert result[0].amount == 1

    def test_sorted_newest_first_stable(self) -> None:
        a = parse_event(EventKind.DEPOSITED, _deposit_log(10, 1, "0x01"))
        b = parse_event(EventKind.DEPOSITED, _deposit_log(30, 0, "0x02"))
        c = parse_event(EventKind.DEPOSITED, _deposit_log(10, 0, "0x03"))

        result = dedupe_and_sort([a, b, c])

        assert [e.tx_hash for e in result] == ["0x02", "0x01", "0x03"]


# ============================================================================
# LogIndexer
# ============================================================================


class TestLogIndexer:
    """Tests for LogIndexer.fetch_events."""

    @pytest.mark.asyncio
    async def test_one_read_per_kind_per_window(self, fake_reader) -> None:
        indexer = LogIndexer(fake_reader, retry_policy=NO_DELAY)

        events = await indexer.fetch_events(ACCOUNT, 100, 250)

        assert events == []
        assert len(fake_reader.log_calls) == 12
        assert fake_reader.windows == [(151, 250), (100, 150)]
        for window in fake_reader.windows:
            kinds = {kind for _, kind, start, end in fake_reader.log_calls if (start, end) == window}
            assert kinds == set(EVENT_KINDS)

    @pytest.mark.asyncio
    async def test_empty_range_no_reads(self, fake_reader) -> None:
        indexer = LogIndexer(fake_reader, retry_policy=NO_DELAY)

        assert await indexer.fetch_events(ACCOUNT, 500, 400) == []
        assert fake_reader.log_calls == []

    @pytest.mark.asyncio
    async def test_events_typed_and_ordered(self, fake_reader) -> None:
        fake_reader.add_log(
            EventKind.TRADE_EXECUTED,
            block_number=120,
            log_index=2,
            tx_hash="0xt1",
            args={
                "botId": 0,
                "nonce": 1,
                "operator": ACCOUNT,
                "router": TOKEN,
                "path": [TOKEN, ACCOUNT],
                "amountIn": 100,
                "amountOut": 90,
                "timestamp": 1_700_000_000,
            },
        )
        fake_reader.add_log(
            EventKind.PAUSED_UPDATED,
            block_number=240,
            log_index=0,
            tx_hash="0xp1",
            args={"botId": 0, "paused": True},
        )
        indexer = LogIndexer(fake_reader, retry_policy=NO_DELAY)

        events = await indexer.fetch_events(ACCOUNT, 100, 250)

        assert [type(e) for e in events] == [PausedUpdated, TradeExecuted]
        trade = events[1]
        assert isinstance(trade, TradeExecuted)
        assert trade.path == (TOKEN, ACCOUNT)
        assert trade.to_dict()["type"] == "TradeExecuted"

    @pytest.mark.asyncio
    async def test_failed_kind_aborts(self, fake_reader) -> None:
        fake_reader.failing_log_kinds.add(EventKind.WITHDRAWN)
        indexer = LogIndexer(fake_reader, retry_policy=NO_DELAY)

        with pytest.raises(ChainReaderError):
            await indexer.fetch_events(ACCOUNT, 0, 50)

        withdrawn_calls = [c for c in fake_reader.log_calls if c[1] == EventKind.WITHDRAWN]
        assert len(withdrawn_calls) == 3
