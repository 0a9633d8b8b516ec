"""On-demand indexing run over the whole bot fleet.

For every registered bot the run fetches all account events from the
configured start block up to the current chain height and writes them,
with a small summary, to ``{out_dir}/index/{bot_id}.json``. It then reads
the bot's current state and balances into ``{out_dir}/metrics/{bot_id}.json``.
A failing bot is logged and skipped; the run continues with the next one.
A metrics failure leaves the index file in place.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from clawfolio_runner.chain.reader import ChainReader, is_zero_address
from clawfolio_runner.chain.retry import RetryPolicy, retry_call
from clawfolio_runner.indexer.events import IndexedEvent
from clawfolio_runner.indexer.fetcher import LogIndexer
from clawfolio_runner.indexer.metrics import EventSummary, MetricsCollector, write_bot_metrics

if TYPE_CHECKING:
    from clawfolio_runner.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BotIndexResult:
    """Files written for one bot."""

    event_count: int
    index_path: Path
    metrics_path: Path | None = None


@dataclass
class IndexRunStats:
    """Counters for one indexing run."""

    bots_total: int = 0
    bots_indexed: int = 0
    bots_skipped: int = 0
    bots_failed: int = 0
    events_total: int = 0
    metrics_written: int = 0
    metrics_failed: int = 0
    failed_bot_ids: list[int] = field(default_factory=list)


def write_bot_index(
    out_dir: Path,
    *,
    bot_id: int,
    account: str,
    start_block: int,
    end_block: int,
    events: list[IndexedEvent],
) -> Path:
    """Write one bot's index file and return its path."""
    index_dir = out_dir / "index"
    index_dir.mkdir(parents=True, exist_ok=True)
    path = index_dir / f"{bot_id}.json"
    payload = {
        "botId": bot_id,
        "botAccount": account,
        "indexedAt": datetime.now(UTC).isoformat(),
        "startBlock": start_block,
        "endBlock": end_block,
        "eventCount": len(events),
        "summary": EventSummary.from_events(events).to_dict(),
        "events": [event.to_dict() for event in events],
    }
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


class FleetIndexer:
    """Runs ``LogIndexer`` for every bot in the registry."""

    def __init__(
        self,
        reader: ChainReader,
        *,
        out_dir: Path,
        start_block: int = 0,
        max_bots: int | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._reader = reader
        self._out_dir = out_dir
        self._start_block = start_block
        self._max_bots = max_bots
        self._retry_policy = retry_policy or RetryPolicy()
        self._indexer = LogIndexer(reader, retry_policy=self._retry_policy)
        self._metrics = MetricsCollector(reader, retry_policy=self._retry_policy)

    @classmethod
    def from_settings(cls, settings: Settings, reader: ChainReader) -> FleetIndexer:
        return cls(
            reader,
            out_dir=settings.out_dir,
            start_block=settings.chain.start_block,
            max_bots=settings.chain.max_bots,
            retry_policy=RetryPolicy.from_settings(settings.retry),
        )

    async def index_bot(self, bot_id: int, latest_block: int) -> BotIndexResult | None:
        """Index one bot and write its metrics.

        Returns:
            The files written, or None when the bot has no account.
        """
        account = await retry_call(
            lambda: self._reader.get_account_of(bot_id),
            self._retry_policy,
            label=f"botAccountOf({bot_id})",
        )
        if is_zero_address(account):
            logger.info("Bot %d has no account, skipping", bot_id)
            return None

        events = await self._indexer.fetch_events(account, self._start_block, latest_block)
        path = write_bot_index(
            self._out_dir,
            bot_id=bot_id,
            account=account,
            start_block=self._start_block,
            end_block=latest_block,
            events=events,
        )
        logger.info("Indexed %d event(s) for bot %d -> %s", len(events), bot_id, path)

        try:
            metrics = await self._metrics.collect(bot_id=bot_id, account=account, events=events)
        except Exception:
            logger.exception("Failed to generate metrics for bot %d", bot_id)
            return BotIndexResult(event_count=len(events), index_path=path)
        metrics_path = write_bot_metrics(self._out_dir, metrics)
        logger.info("Metrics for bot %d -> %s", bot_id, metrics_path)
        return BotIndexResult(event_count=len(events), index_path=path, metrics_path=metrics_path)

    async def run(self) -> IndexRunStats:
        """Index every bot, isolating per-bot failures."""
        stats = IndexRunStats()
        roster = await retry_call(self._reader.get_roster_size, self._retry_policy, label="botCount")
        latest_block = await retry_call(
            self._reader.get_latest_block_height, self._retry_policy, label="blockNumber"
        )
        stats.bots_total = min(roster, self._max_bots) if self._max_bots else roster
        logger.info(
            "Indexing %d bot(s) from block %d to %d", stats.bots_total, self._start_block, latest_block
        )

        for bot_id in range(stats.bots_total):
            try:
                result = await self.index_bot(bot_id, latest_block)
            except Exception:
                logger.exception("Failed to index bot %d", bot_id)
                stats.bots_failed += 1
                stats.failed_bot_ids.append(bot_id)
                continue
            if result is None:
                stats.bots_skipped += 1
                continue
            stats.bots_indexed += 1
            stats.events_total += result.event_count
            if result.metrics_path is None:
                stats.metrics_failed += 1
            else:
                stats.metrics_written += 1

        logger.info(
            "Indexing complete: %d indexed, %d skipped, %d failed, %d event(s), %d metrics file(s)",
            stats.bots_indexed,
            stats.bots_skipped,
            stats.bots_failed,
            stats.events_total,
            stats.metrics_written,
        )
        return stats
