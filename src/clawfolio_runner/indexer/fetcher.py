"""Backward, chunked event log pagination for one bot account."""

from __future__ import annotations

import asyncio
import logging

from clawfolio_runner.chain.abi import EventKind
from clawfolio_runner.chain.reader import ChainReader
from clawfolio_runner.chain.retry import RetryPolicy, retry_call
from clawfolio_runner.indexer.events import IndexedEvent, parse_event

logger = logging.getLogger(__name__)

CHUNK_SIZE = 100

EVENT_KINDS: tuple[EventKind, ...] = (
    EventKind.TRADE_EXECUTED,
    EventKind.DEPOSITED,
    EventKind.WITHDRAWN,
    EventKind.LIFECYCLE_CHANGED,
    EventKind.PAUSED_UPDATED,
    EventKind.OPERATOR_UPDATED,
)


def block_windows(from_block: int, to_block: int, chunk_size: int = CHUNK_SIZE) -> list[tuple[int, int]]:
    """Inclusive ``(start, end)`` windows walking backward from ``to_block``.

    Example:
        ``block_windows(100, 250)`` is ``[(151, 250), (100, 150)]``.
    """
    windows: list[tuple[int, int]] = []
    if from_block > to_block:
        return windows

    current_end = to_block
    while True:
        window_start = max(current_end - chunk_size + 1, from_block)
        windows.append((window_start, current_end))
        if window_start <= from_block:
            break
        current_end = window_start - 1
    return windows


def dedupe_and_sort(events: list[IndexedEvent]) -> list[IndexedEvent]:
    """Drop repeated identities (first occurrence wins), newest block first.

    The sort is stable, so events within one block keep their fetch order.
    """
    seen: set[tuple[str, int]] = set()
    unique: list[IndexedEvent] = []
    for event in events:
        if event.identity in seen:
            continue
        seen.add(event.identity)
        unique.append(event)
    unique.sort(key=lambda e: e.block_number, reverse=True)
    return unique


class LogIndexer:
    """Fetches every bot account event kind over a block range.

    Example:
        ```python
        indexer = LogIndexer(reader)
        events = await indexer.fetch_events(account, 0, latest_block)
        ```
    """

    def __init__(
        self,
        reader: ChainReader,
        *,
        retry_policy: RetryPolicy | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._reader = reader
        self._retry_policy = retry_policy or RetryPolicy()
        self._chunk_size = chunk_size

    async def _fetch_kind(
        self, account: str, kind: EventKind, start: int, end: int
    ) -> list[IndexedEvent]:
        logs = await retry_call(
            lambda: self._reader.get_logs(account, kind, start, end),
            self._retry_policy,
            label=f"get_logs {kind.value} [{start},{end}]",
        )
        return [parse_event(kind, log) for log in logs]

    async def fetch_events(self, account: str, from_block: int, to_block: int) -> list[IndexedEvent]:
        """Fetch, deduplicate and order events for ``account``.

        Each window issues one retried read per event kind concurrently.
        A read that exhausts its retries aborts the whole fetch.

        Args:
            account: Bot account address.
            from_block: First block, inclusive.
            to_block: Last block, inclusive.

        Returns:
            Events with unique identities, sorted by block number descending.
        """
        collected: list[IndexedEvent] = []
        for start, end in block_windows(from_block, to_block, self._chunk_size):
            per_kind = await asyncio.gather(
                *(self._fetch_kind(account, kind, start, end) for kind in EVENT_KINDS)
            )
            for events in per_kind:
                collected.extend(events)
            logger.debug("Fetched window [%d,%d] for %s", start, end, account)

        return dedupe_and_sort(collected)
