"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from clawfolio_runner.chain.abi import EventKind
from clawfolio_runner.chain.reader import BotAttributes, BotRoles, ChainReaderError, RiskParams
from clawfolio_runner.config import (
    ZERO_ADDRESS,
    ChainSettings,
    DatabaseSettings,
    RedisSettings,
    RetrySettings,
    ServerSettings,
    Settings,
    SimulationSettings,
)
from clawfolio_runner.storage.database import DatabaseManager

REGISTRY_ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"
MEMORY_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeChainReader:
    """In-memory ChainReader used across tests.

    Bots are registered with ``add_bot``; raw logs with ``add_log``. Every
    ``get_logs`` call is recorded in ``log_calls``.
    """

    def __init__(self, latest_block: int = 1_000) -> None:
        self.latest_block = latest_block
        self.accounts: dict[int, str] = {}
        self.metadata: dict[int, str] = {}
        self.tokens: dict[int, str] = {}
        self.symbols: dict[str, str] = {}
        self.decimals: dict[str, int] = {}
        self.token_balances: dict[tuple[str, str], int] = {}
        self.native_balances: dict[str, int] = {}
        self.roles: dict[str, BotRoles] = {}
        self.attributes: dict[str, BotAttributes] = {}
        self.logs: dict[EventKind, list[dict[str, Any]]] = {kind: [] for kind in EventKind}
        self.failing_accounts: set[str] = set()
        self.failing_log_kinds: set[EventKind] = set()
        self.log_calls: list[tuple[str, EventKind, int, int]] = []
        self.closed = False

    @property
    def windows(self) -> list[tuple[int, int]]:
        """Distinct (from, to) ranges requested, in call order."""
        seen: list[tuple[int, int]] = []
        for _, _, start, end in self.log_calls:
            if (start, end) not in seen:
                seen.append((start, end))
        return seen

    def add_bot(
        self,
        bot_id: int,
        *,
        account: str | None = None,
        paused: bool = False,
        lifecycle_state: int = 1,
        nonce: int = 0,
        risk_params: RiskParams | None = None,
        metadata_uri: str = "",
        token: str = ZERO_ADDRESS,
        operator: str = "0x" + "0b" * 20,
        creator: str = "0x" + "0c" * 20,
    ) -> str:
        account = account or "0x" + f"{bot_id + 1:040x}"
        self.roles[account] = BotRoles(operator=operator, creator=creator)
        self.accounts[bot_id] = account
        self.metadata[bot_id] = metadata_uri
        self.tokens[bot_id] = token
        self.set_attributes(
            account,
            paused=paused,
            lifecycle_state=lifecycle_state,
            nonce=nonce,
            risk_params=risk_params,
        )
        return account

    def set_attributes(self, account: str, **changes: Any) -> None:
        current = self.attributes.get(account)
        values: dict[str, Any] = {
            "paused": False,
            "lifecycle_state": 1,
            "nonce": 0,
            "risk_params": None,
        }
        if current is not None:
            values.update(
                paused=current.paused,
                lifecycle_state=current.lifecycle_state,
                nonce=current.nonce,
                risk_params=current.risk_params,
            )
        values.update(changes)
        self.attributes[account] = BotAttributes(**values)

    def add_log(
        self,
        kind: EventKind,
        *,
        block_number: int,
        log_index: int,
        tx_hash: str,
        args: dict[str, Any],
    ) -> None:
        self.logs[kind].append(
            {
                "event": kind.value,
                "args": args,
                "transactionHash": tx_hash,
                "blockNumber": block_number,
                "logIndex": log_index,
            }
        )

    async def get_roster_size(self) -> int:
        return max(self.accounts) + 1 if self.accounts else 0

    async def get_account_of(self, bot_id: int) -> str:
        return self.accounts.get(bot_id, ZERO_ADDRESS)

    async def get_metadata_uri(self, bot_id: int) -> str:
        return self.metadata.get(bot_id, "")

    async def get_attributes(self, account: str) -> BotAttributes:
        if account in self.failing_accounts:
            raise ChainReaderError(f"attributes unavailable for {account}")
        return self.attributes[account]

    async def get_token_of(self, bot_id: int) -> str:
        return self.tokens.get(bot_id, ZERO_ADDRESS)

    async def get_token_symbol(self, token_address: str) -> str:
        if token_address not in self.symbols:
            raise ChainReaderError("symbol() reverted")
        return self.symbols[token_address]

    async def get_token_decimals(self, token_address: str) -> int:
        if token_address not in self.decimals:
            raise ChainReaderError("decimals() reverted")
        return self.decimals[token_address]

    async def get_token_balance(self, token_address: str, holder: str) -> int:
        if token_address not in self.decimals and token_address not in self.symbols:
            raise ChainReaderError(f"{token_address} is not a token")
        return self.token_balances.get((token_address, holder), 0)

    async def get_native_balance(self, account: str) -> int:
        return self.native_balances.get(account, 0)

    async def get_roles(self, account: str) -> BotRoles:
        if account in self.failing_accounts:
            raise ChainReaderError(f"roles unavailable for {account}")
        return self.roles[account]

    async def get_latest_block_height(self) -> int:
        return self.latest_block

    async def get_logs(
        self, account: str, kind: EventKind, from_block: int, to_block: int
    ) -> list[dict[str, Any]]:
        self.log_calls.append((account, kind, from_block, to_block))
        if kind in self.failing_log_kinds:
            raise ChainReaderError(f"get_logs {kind.value} timed out")
        return [log for log in self.logs[kind] if from_block <= log["blockNumber"] <= to_block]

    async def aclose(self) -> None:
        self.closed = True


class ScriptedRng:
    """Random source returning a fixed sequence of draws."""

    def __init__(self, draws: list[float]) -> None:
        self._draws = list(draws)
        self.consumed = 0

    def next_float(self) -> float:
        value = self._draws[self.consumed % len(self._draws)]
        self.consumed += 1
        return value


@pytest.fixture
def fake_reader() -> FakeChainReader:
    """Fresh in-memory chain reader."""
    return FakeChainReader()


@pytest.fixture
def scripted_rng() -> Callable[[list[float]], ScriptedRng]:
    """Factory for scripted random sources."""
    return ScriptedRng


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory building Settings without reading .env files."""

    def _make(
        *,
        database_url: str = MEMORY_DB_URL,
        max_bots: int | None = None,
        trade_probability: float = 0.35,
        min_cooldown_seconds: int = 300,
        tick_interval_seconds: int = 30,
        disable_loop: bool = True,
        admin_token: str | None = None,
        out_dir: str = "out",
        start_block: int = 0,
    ) -> Settings:
        return Settings(
            _env_file=None,
            RUNNER_OUT_DIR=out_dir,
            database=DatabaseSettings(_env_file=None, DATABASE_URL=database_url),
            redis=RedisSettings(_env_file=None, REDIS_URL=""),
            chain=ChainSettings(
                _env_file=None,
                RUNNER_BOT_REGISTRY=REGISTRY_ADDRESS,
                RUNNER_MAX_BOTS=max_bots,
                RUNNER_START_BLOCK=start_block,
            ),
            retry=RetrySettings(
                _env_file=None,
                RUNNER_RETRY_MAX_ATTEMPTS=3,
                RUNNER_RETRY_BASE_DELAY_SECONDS=0.0,
            ),
            simulation=SimulationSettings(
                _env_file=None,
                RUNNER_TRADE_PROB=trade_probability,
                RUNNER_TRADE_MIN_COOLDOWN_SECONDS=min_cooldown_seconds,
                RUNNER_TICK_INTERVAL_SECONDS=tick_interval_seconds,
            ),
            server=ServerSettings(
                _env_file=None,
                RUNNER_DISABLE_LOOP=disable_loop,
                RUNNER_ADMIN_TOKEN=admin_token or "",
            ),
        )

    return _make


@pytest.fixture
async def db():
    """In-memory database with the schema created."""
    manager = DatabaseManager(MEMORY_DB_URL)
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()
