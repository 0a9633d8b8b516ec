"""Per-bot metrics derived from indexed events and current chain state.

The metrics file complements the raw index: it records the bot's current
flags and roles, its native and token balances, and the net deposit flow
per token, each formatted with the token's decimals.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from clawfolio_runner.chain.reader import ChainReader, ChainReaderError, is_zero_address
from clawfolio_runner.chain.retry import RetryPolicy, retry_call
from clawfolio_runner.indexer.events import Deposited, IndexedEvent, TradeExecuted, Withdrawn

logger = logging.getLogger(__name__)

NATIVE_SYMBOL = "MON"
NATIVE_DECIMALS = 18
DEFAULT_TOKEN_DECIMALS = 18
DEFAULT_DISPLAY_DECIMALS = 4


def format_amount(amount: int, decimals: int, max_decimals: int = DEFAULT_DISPLAY_DECIMALS) -> str:
    """Render a base-unit amount as a decimal string.

    The fraction is truncated to ``max_decimals`` digits and trailing
    zeros are dropped, so ``1_500_000`` with 6 decimals is ``"1.5"``.
    """
    sign = "-" if amount < 0 else ""
    whole, fraction = divmod(abs(amount), 10**decimals)
    digits = f"{fraction:0{decimals}d}"[:max_decimals].rstrip("0") if decimals else ""
    return f"{sign}{whole}.{digits}" if digits else f"{sign}{whole}"


def shorten_address(address: str, chars: int = 4) -> str:
    return f"{address[: 2 + chars]}...{address[-chars:]}"


def tokens_touched(events: list[IndexedEvent]) -> list[str]:
    """Lowercased token addresses seen in flows and trade paths, first seen first."""
    seen: dict[str, None] = {}
    for event in events:
        if isinstance(event, (Deposited, Withdrawn)):
            seen.setdefault(event.token.lower(), None)
        elif isinstance(event, TradeExecuted):
            for token in event.path:
                seen.setdefault(token.lower(), None)
    return [token for token in seen if not is_zero_address(token)]


@dataclass(frozen=True)
class EventSummary:
    """Aggregates computed from one bot's indexed events."""

    trade_count: int
    last_activity: dict[str, Any] | None
    net_flows: dict[str, int]

    @classmethod
    def from_events(cls, events: list[IndexedEvent]) -> EventSummary:
        """Summarize events sorted newest first.

        Net flows are per token: deposits add, withdrawals subtract.
        """
        net_flows: dict[str, int] = {}
        trade_count = 0
        for event in events:
            if isinstance(event, TradeExecuted):
                trade_count += 1
            elif isinstance(event, Deposited):
                token = event.token.lower()
                net_flows[token] = net_flows.get(token, 0) + event.amount
            elif isinstance(event, Withdrawn):
                token = event.token.lower()
                net_flows[token] = net_flows.get(token, 0) - event.amount

        last_activity = None
        if events:
            newest = events[0]
            last_activity = {
                "blockNumber": newest.block_number,
                "tx": newest.tx_hash,
                "type": newest.kind.value,
            }
        return cls(trade_count=trade_count, last_activity=last_activity, net_flows=net_flows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tradeCount": self.trade_count,
            "lastActivity": self.last_activity,
            "netFlows": {token: str(amount) for token, amount in self.net_flows.items()},
        }


@dataclass(frozen=True)
class TokenInfo:
    """Display data of one token held by a bot."""

    token: str
    symbol: str
    decimals: int
    balance: int

    def balance_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "raw": str(self.balance),
            "formatted": format_amount(self.balance, self.decimals),
        }

    def flow_dict(self, net: int) -> dict[str, Any]:
        return {
            "token": self.token,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "netRaw": str(net),
            "netFormatted": format_amount(net, self.decimals),
        }


class MetricsCollector:
    """Reads the chain state behind a bot's metrics file."""

    def __init__(self, reader: ChainReader, *, retry_policy: RetryPolicy | None = None) -> None:
        self._reader = reader
        self._retry_policy = retry_policy or RetryPolicy()

    async def _token_info(self, token: str, account: str) -> TokenInfo:
        balance = await retry_call(
            lambda: self._reader.get_token_balance(token, account),
            self._retry_policy,
            label=f"balanceOf({token})",
        )
        try:
            symbol = await self._reader.get_token_symbol(token)
        except ChainReaderError:
            symbol = shorten_address(token)
        try:
            decimals = await self._reader.get_token_decimals(token)
        except ChainReaderError:
            decimals = DEFAULT_TOKEN_DECIMALS
        return TokenInfo(token=token, symbol=symbol, decimals=decimals, balance=balance)

    async def collect(self, *, bot_id: int, account: str, events: list[IndexedEvent]) -> dict[str, Any]:
        """Build the metrics payload for one bot.

        A token whose balance cannot be read is left out of both the
        balances and the flows; any other read failure propagates.

        Args:
            bot_id: Registry id of the bot.
            account: The bot's account address.
            events: The bot's indexed events, newest first.

        Returns:
            JSON-ready metrics dict.
        """
        attrs = await retry_call(
            lambda: self._reader.get_attributes(account),
            self._retry_policy,
            label=f"attributes({account})",
        )
        roles = await retry_call(
            lambda: self._reader.get_roles(account),
            self._retry_policy,
            label=f"roles({account})",
        )
        native = await retry_call(
            lambda: self._reader.get_native_balance(account),
            self._retry_policy,
            label=f"getBalance({account})",
        )

        summary = EventSummary.from_events(events)
        balances = [
            TokenInfo(token=NATIVE_SYMBOL, symbol=NATIVE_SYMBOL, decimals=NATIVE_DECIMALS, balance=native).balance_dict()
        ]
        flows: list[dict[str, Any]] = []
        for token in tokens_touched(events):
            try:
                info = await self._token_info(token, account)
            except Exception as e:
                logger.warning("Failed to fetch token data for %s: %s", token, e)
                continue
            balances.append(info.balance_dict())
            if token in summary.net_flows:
                flows.append(info.flow_dict(summary.net_flows[token]))

        return {
            "botId": bot_id,
            "botAccount": account,
            "updatedAt": datetime.now(UTC).isoformat(),
            "paused": attrs.paused,
            "lifecycleState": attrs.lifecycle_state,
            "operator": roles.operator,
            "creator": roles.creator,
            "tradeCount": summary.trade_count,
            "lastActivity": summary.last_activity,
            "balances": balances,
            "flows": flows,
        }


def write_bot_metrics(out_dir: Path, metrics: dict[str, Any]) -> Path:
    """Write one bot's metrics file and return its path."""
    metrics_dir = out_dir / "metrics"
    metrics_dir.mkdir(parents=True, exist_ok=True)
    path = metrics_dir / f"{metrics['botId']}.json"
    path.write_text(json.dumps(metrics, indent=2), encoding="utf-8")
    return path
