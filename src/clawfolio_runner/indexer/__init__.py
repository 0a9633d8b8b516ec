"""Log indexer - chunked event pagination and fleet indexing runs with per-bot metrics."""

from clawfolio_runner.indexer.events import (
    Deposited,
    IndexedEvent,
    LifecycleChanged,
    OperatorUpdated,
    PausedUpdated,
    TradeExecuted,
    Withdrawn,
    parse_event,
)
from clawfolio_runner.indexer.fetcher import CHUNK_SIZE, LogIndexer, block_windows, dedupe_and_sort
from clawfolio_runner.indexer.metrics import EventSummary, MetricsCollector, format_amount, write_bot_metrics
from clawfolio_runner.indexer.run import BotIndexResult, FleetIndexer, IndexRunStats, write_bot_index

__all__ = [
    "CHUNK_SIZE",
    "BotIndexResult",
    "Deposited",
    "EventSummary",
    "FleetIndexer",
    "IndexRunStats",
    "IndexedEvent",
    "LifecycleChanged",
    "LogIndexer",
    "MetricsCollector",
    "OperatorUpdated",
    "PausedUpdated",
    "TradeExecuted",
    "Withdrawn",
    "block_windows",
    "dedupe_and_sort",
    "format_amount",
    "parse_event",
    "write_bot_index",
    "write_bot_metrics",
]
