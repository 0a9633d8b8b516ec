"""Read-only access to the bot registry and bot accounts.

The runner never submits transactions. Everything it needs from the chain
goes through the ``ChainReader`` protocol so the simulation and indexer can
be exercised against fakes; ``Web3ChainReader`` is the production
implementation over an HTTP JSON-RPC endpoint with:
- Client-side rate limiting
- Optional Redis caching of immutable values (token symbols and decimals)
- Web3 errors normalized to ``ChainReaderError``

Retries are not done here; callers wrap each read in ``retry_call``.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.providers import AsyncHTTPProvider

from clawfolio_runner.chain.abi import (
    BOT_ACCOUNT_ABI,
    BOT_REGISTRY_ABI,
    ERC20_ABI,
    EVENT_TOPICS,
    EventKind,
)
from clawfolio_runner.config import ZERO_ADDRESS

if TYPE_CHECKING:
    from clawfolio_runner.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS_PER_SECOND = 25.0
DEFAULT_SYMBOL_CACHE_TTL_SECONDS = 24 * 3600

METADATA_URI_PREFIX = "data:application/json;base64,"


class ChainReaderError(Exception):
    """Raised when a chain read fails."""


@dataclass(frozen=True)
class RiskParams:
    """Per-bot trading limits as stored on the bot account."""

    max_amount_in_per_trade: int  # wei
    min_seconds_between_trades: int


@dataclass(frozen=True)
class BotAttributes:
    """Mutable on-chain state of one bot account."""

    paused: bool
    lifecycle_state: int
    nonce: int
    risk_params: RiskParams | None = None


@dataclass(frozen=True)
class BotRoles:
    """Addresses allowed to act on a bot account."""

    operator: str
    creator: str


@dataclass(frozen=True)
class BotMetadata:
    """Display fields decoded from the registry metadata URI."""

    name: str | None = None
    handle: str | None = None


def is_zero_address(address: str | None) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def decode_metadata_uri(uri: str | None) -> BotMetadata:
    """Decode a ``data:application/json;base64,`` metadata URI.

    Anything that is not an inline base64 JSON object yields empty metadata.
    """
    if not uri or not uri.startswith(METADATA_URI_PREFIX):
        return BotMetadata()
    try:
        payload = json.loads(base64.b64decode(uri[len(METADATA_URI_PREFIX) :]).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.warning("Failed to decode metadata URI: %s", e)
        return BotMetadata()
    if not isinstance(payload, dict):
        return BotMetadata()

    name = payload.get("name")
    handle = payload.get("handle")
    return BotMetadata(
        name=str(name) if name is not None else None,
        handle=str(handle) if handle is not None else None,
    )


class ChainReader(Protocol):
    """Read-only chain accessor consumed by the simulation and indexer."""

    async def get_roster_size(self) -> int: ...

    async def get_account_of(self, bot_id: int) -> str: ...

    async def get_metadata_uri(self, bot_id: int) -> str: ...

    async def get_attributes(self, account: str) -> BotAttributes: ...

    async def get_token_of(self, bot_id: int) -> str: ...

    async def get_token_symbol(self, token_address: str) -> str: ...

    async def get_token_decimals(self, token_address: str) -> int: ...

    async def get_token_balance(self, token_address: str, holder: str) -> int: ...

    async def get_native_balance(self, account: str) -> int: ...

    async def get_roles(self, account: str) -> BotRoles: ...

    async def get_latest_block_height(self) -> int: ...

    async def get_logs(
        self,
        account: str,
        kind: EventKind,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


class RateLimiter:
    """Token bucket shared by all RPC calls of one reader."""

    def __init__(self, max_requests_per_second: float) -> None:
        self._capacity = max_requests_per_second
        self._tokens = max_requests_per_second
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                self._tokens = min(
                    self._capacity, self._tokens + (now - self._last_refill) * self._capacity
                )
                self._last_refill = now
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                await asyncio.sleep((1.0 - self._tokens) / self._capacity)


class Web3ChainReader:
    """``ChainReader`` backed by ``AsyncWeb3`` over HTTP.

    Example:
        ```python
        reader = Web3ChainReader(
            rpc_url="https://testnet-rpc.monad.xyz",
            registry_address="0x...",
        )
        count = await reader.get_roster_size()
        await reader.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        registry_address: str,
        *,
        redis: Redis | None = None,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        symbol_cache_ttl_seconds: int = DEFAULT_SYMBOL_CACHE_TTL_SECONDS,
    ) -> None:
        """Initialize the reader.

        Args:
            rpc_url: HTTP JSON-RPC endpoint.
            registry_address: Bot registry contract address.
            redis: Optional Redis client for caching immutable reads.
            max_requests_per_second: Client-side rate limit.
            symbol_cache_ttl_seconds: TTL for cached token symbols and decimals.
        """
        self._rpc_url = rpc_url
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._registry = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(registry_address),
            abi=BOT_REGISTRY_ABI,
        )
        self._redis = redis
        self._symbol_ttl = symbol_cache_ttl_seconds
        self._rate_limiter = RateLimiter(max_requests_per_second)
        self._cache_prefix = "clawfolio:"

    def _account_contract(self, account: str) -> Any:
        return self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(account),
            abi=BOT_ACCOUNT_ABI,
        )

    def _erc20_contract(self, token_address: str) -> Any:
        return self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address),
            abi=ERC20_ABI,
        )

    async def _call(self, description: str, fn: Any) -> Any:
        await self._rate_limiter.acquire()
        try:
            return await fn.call()
        except Web3Exception as e:
            raise ChainReaderError(f"{description} failed: {e}") from e

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def get_roster_size(self) -> int:
        return int(await self._call("botCount", self._registry.functions.botCount()))

    async def get_account_of(self, bot_id: int) -> str:
        return str(await self._call("botAccountOf", self._registry.functions.botAccountOf(bot_id)))

    async def get_metadata_uri(self, bot_id: int) -> str:
        return str(await self._call("metadataURI", self._registry.functions.metadataURI(bot_id)))

    async def get_token_of(self, bot_id: int) -> str:
        return str(await self._call("botTokenOf", self._registry.functions.botTokenOf(bot_id)))

    async def get_attributes(self, account: str) -> BotAttributes:
        """Read paused, lifecycle state, nonce and risk params concurrently.

        Risk params are optional: deployments that do not expose them (or
        fail to answer) yield ``risk_params=None`` instead of an error.
        """
        contract = self._account_contract(account)
        paused, lifecycle_state, nonce, raw_risk = await asyncio.gather(
            self._call("paused", contract.functions.paused()),
            self._call("lifecycleState", contract.functions.lifecycleState()),
            self._call("nonce", contract.functions.nonce()),
            self._call("riskParams", contract.functions.riskParams()),
            return_exceptions=True,
        )
        for value in (paused, lifecycle_state, nonce):
            if isinstance(value, BaseException):
                raise value

        risk_params: RiskParams | None = None
        if isinstance(raw_risk, BaseException):
            logger.debug("riskParams unavailable for %s: %s", account, raw_risk)
        else:
            max_amount, min_seconds = raw_risk
            risk_params = RiskParams(
                max_amount_in_per_trade=int(max_amount),
                min_seconds_between_trades=int(min_seconds),
            )

        return BotAttributes(
            paused=bool(paused),
            lifecycle_state=int(lifecycle_state),
            nonce=int(nonce),
            risk_params=risk_params,
        )

    async def get_token_symbol(self, token_address: str) -> str:
        cache_key = f"{self._cache_prefix}symbol:{token_address.lower()}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        contract = self._erc20_contract(token_address)
        symbol = str(await self._call("symbol", contract.functions.symbol()))
        await self._set_cached(cache_key, symbol, self._symbol_ttl)
        return symbol

    async def get_token_decimals(self, token_address: str) -> int:
        cache_key = f"{self._cache_prefix}decimals:{token_address.lower()}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return int(cached)

        contract = self._erc20_contract(token_address)
        decimals = int(await self._call("decimals", contract.functions.decimals()))
        await self._set_cached(cache_key, str(decimals), self._symbol_ttl)
        return decimals

    async def get_token_balance(self, token_address: str, holder: str) -> int:
        contract = self._erc20_contract(token_address)
        return int(
            await self._call(
                "balanceOf",
                contract.functions.balanceOf(AsyncWeb3.to_checksum_address(holder)),
            )
        )

    async def get_native_balance(self, account: str) -> int:
        await self._rate_limiter.acquire()
        try:
            return int(await self._w3.eth.get_balance(AsyncWeb3.to_checksum_address(account)))
        except Web3Exception as e:
            raise ChainReaderError(f"get_balance failed: {e}") from e

    async def get_roles(self, account: str) -> BotRoles:
        contract = self._account_contract(account)
        operator, creator = await asyncio.gather(
            self._call("operator", contract.functions.operator()),
            self._call("creator", contract.functions.creator()),
        )
        return BotRoles(operator=str(operator), creator=str(creator))

    async def get_latest_block_height(self) -> int:
        await self._rate_limiter.acquire()
        try:
            return int(await self._w3.eth.block_number)
        except Web3Exception as e:
            raise ChainReaderError(f"block_number failed: {e}") from e

    async def get_logs(
        self,
        account: str,
        kind: EventKind,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        """Fetch and decode one event kind emitted by ``account``.

        Returns:
            Decoded logs as plain dicts with ``args``, ``transactionHash``,
            ``blockNumber`` and ``logIndex`` keys.
        """
        contract = self._account_contract(account)
        await self._rate_limiter.acquire()
        try:
            raw_logs = await self._w3.eth.get_logs(
                {
                    "address": contract.address,
                    "topics": [EVENT_TOPICS[kind]],
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            )
        except Web3Exception as e:
            raise ChainReaderError(f"get_logs {kind.value} [{from_block},{to_block}] failed: {e}") from e

        event = getattr(contract.events, kind.value)()
        decoded: list[dict[str, Any]] = []
        for log in raw_logs:
            data = event.process_log(log)
            tx_hash = data["transactionHash"]
            decoded.append(
                {
                    "event": kind.value,
                    "args": dict(data["args"]),
                    "transactionHash": AsyncWeb3.to_hex(tx_hash) if not isinstance(tx_hash, str) else tx_hash,
                    "blockNumber": int(data["blockNumber"]),
                    "logIndex": int(data["logIndex"]),
                }
            )
        return decoded

    async def aclose(self) -> None:
        """Close the HTTP provider session."""
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if callable(disconnect):
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
        if self._redis is not None:
            await self._redis.aclose()


def create_chain_reader(settings: Settings) -> Web3ChainReader:
    """Build the production reader, with a Redis cache when REDIS_URL is set."""
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    return Web3ChainReader(
        settings.chain.rpc_url,
        settings.chain.bot_registry,
        redis=redis,
        max_requests_per_second=settings.chain.max_requests_per_second,
    )
