"""Per-bot simulation step.

Turns a bot's current on-chain state into a synthetic performance
sample, a decision and, when the cooldown and probability gates allow
it, a simulated trade. The arithmetic lives in the pure
``simulate_step`` function; ``SimulationEngine.process_bot`` gathers its
inputs from the chain and the store and persists its outputs.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Protocol

from clawfolio_runner.chain.reader import (
    BotAttributes,
    ChainReader,
    RiskParams,
    decode_metadata_uri,
    is_zero_address,
)
from clawfolio_runner.chain.retry import RetryPolicy, retry_call
from clawfolio_runner.simulation.prng import Mulberry32, hash_seed, seed_text, tick_bucket
from clawfolio_runner.storage.repos import (
    ActivityDTO,
    ActivityRepository,
    BotStateDTO,
    BotStateRepository,
    DecisionDTO,
    DecisionRepository,
    PerfRepository,
    PerfSampleDTO,
    RunnerStateRepository,
    TradeDTO,
    TradeRepository,
    nonce_key,
)

if TYPE_CHECKING:
    from clawfolio_runner.config import Settings
    from clawfolio_runner.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

BASELINE_EQUITY = 100.0
MIN_EQUITY = 1.0
MAX_EQUITY = 500.0
MAX_DELTA_PCT = 0.005
SIGNAL_THRESHOLD = 0.35
WEI_PER_NATIVE = 10**18
REFERENCE_COOLDOWN_SECONDS = 300
SIMULATION_MODE = "simulation"

REASON_BUY = "Positive simulated momentum within risk bounds."
REASON_SELL = "Negative simulated momentum to reduce exposure."
REASON_HOLD = "No strong signal, hold position."
REASON_PAUSED = "Agent paused onchain."
REASON_DRAFT = "Agent not active yet."


class LifecycleState(IntEnum):
    """Bot account lifecycle as stored on chain."""

    DRAFT = 0
    STEALTH = 1
    PUBLIC = 2
    GRADUATED = 3
    RETIRED = 4


class Decision(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class ActivityKind(str, Enum):
    """Tag stored on the per-bot latest activity marker."""

    HEARTBEAT = "Heartbeat"
    LIFECYCLE_CHANGED = "LifecycleChanged"
    PAUSED_UPDATED = "PausedUpdated"
    TRADE_EXECUTED = "TradeExecuted"


class BotOutcome(str, Enum):
    """Result of processing one bot in one tick. Errors are raised."""

    SUCCESS = "success"
    SKIPPED = "skipped"


class RandomSource(Protocol):
    def next_float(self) -> float: ...


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def derive_cooldown(risk_params: RiskParams | None, default_seconds: int) -> int:
    """Cooldown from risk params, or ``default_seconds`` when unusable."""
    if risk_params is None:
        return default_seconds
    seconds = risk_params.min_seconds_between_trades
    if seconds > 0 and math.isfinite(seconds):
        return int(math.floor(seconds))
    return default_seconds


def max_amount_native(risk_params: RiskParams | None) -> float:
    """Per-trade cap in native units; 1.0 when the bot exposes none."""
    if risk_params is None:
        return 1.0
    return risk_params.max_amount_in_per_trade / WEI_PER_NATIVE


def classify_activity(
    previous: BotStateDTO | None,
    *,
    lifecycle_state: int,
    paused: bool,
    nonce: int,
    nonce_watermark: int | None,
) -> ActivityKind:
    """Classify what changed since the previous snapshot.

    Precedence: first sighting, lifecycle change, pause toggle, nonce
    increase past the stored watermark, then heartbeat.
    """
    if previous is None:
        return ActivityKind.HEARTBEAT
    if previous.lifecycle_state != lifecycle_state:
        return ActivityKind.LIFECYCLE_CHANGED
    if previous.paused != paused:
        return ActivityKind.PAUSED_UPDATED
    if nonce_watermark is not None and nonce_watermark < nonce:
        return ActivityKind.TRADE_EXECUTED
    return ActivityKind.HEARTBEAT


def decision_from_signal(signal: float) -> Decision:
    if signal > SIGNAL_THRESHOLD:
        return Decision.BUY
    if signal < -SIGNAL_THRESHOLD:
        return Decision.SELL
    return Decision.HOLD


@dataclass(frozen=True)
class StepInput:
    """Everything the pure step needs about one bot at one tick."""

    now: int
    previous_equity: float
    previous_trades: int
    paused: bool
    lifecycle_state: int
    cooldown_seconds: int
    max_amount_native: float
    last_trade_ts: int | None
    trade_probability: float


@dataclass(frozen=True)
class StepResult:
    """Outputs of one simulation step."""

    base_signal: float
    risk_scale: float
    delta_pct: float
    next_equity: float
    decision: Decision
    reason: str
    cooldown_seconds: int
    cooldown_elapsed: bool
    trade_probability: float
    trade_chance: float
    should_trade: bool
    trades: int
    qty: int | None = None
    price: float | None = None

    @property
    def pnl(self) -> float:
        return self.next_equity - BASELINE_EQUITY

    def decision_meta(self) -> dict[str, Any]:
        return {
            "signal": round(self.base_signal, 4),
            "deltaPct": round(self.delta_pct * 100, 4),
            "cooldownSeconds": self.cooldown_seconds,
            "riskScale": round(self.risk_scale, 4),
            "cooldownElapsed": self.cooldown_elapsed,
            "tradeProbability": self.trade_probability,
            "tradeChance": round(self.trade_chance, 4),
            "tradeExecuted": self.should_trade,
        }

    def trade_meta(self, bucket: int) -> dict[str, Any]:
        return {
            "signal": round(self.base_signal, 4),
            "cooldownSeconds": self.cooldown_seconds,
            "tickBucket": bucket,
        }


def simulate_step(inp: StepInput, rng: RandomSource) -> StepResult:
    """Compute one bot's next equity, decision and optional trade.

    Draws are consumed from ``rng`` in a fixed order: signal, trade
    chance, then quantity and price only when a trade executes.

    Args:
        inp: Bot state and configuration for this tick.
        rng: Generator seeded for this bot and tick bucket.

    Returns:
        The step result; nothing is persisted here.
    """
    base_signal = rng.next_float() * 2 - 1

    risk_from_amount = clamp(inp.max_amount_native / 2, 0.25, 1.0)
    risk_from_cooldown = clamp(REFERENCE_COOLDOWN_SECONDS / max(inp.cooldown_seconds, 1), 0.25, 1.0)
    risk_scale = clamp((risk_from_amount + risk_from_cooldown) / 2, 0.25, 1.0)

    delta_pct = clamp(base_signal * MAX_DELTA_PCT * risk_scale, -MAX_DELTA_PCT, MAX_DELTA_PCT)
    next_equity = clamp(inp.previous_equity * (1 + delta_pct), MIN_EQUITY, MAX_EQUITY)

    decision = decision_from_signal(base_signal)
    reason = {Decision.BUY: REASON_BUY, Decision.SELL: REASON_SELL}.get(decision, REASON_HOLD)
    inactive = inp.lifecycle_state == LifecycleState.DRAFT
    if inp.paused or inactive:
        decision = Decision.HOLD
        reason = REASON_PAUSED if inp.paused else REASON_DRAFT

    elapsed = None if inp.last_trade_ts is None else inp.now - inp.last_trade_ts
    cooldown_elapsed = elapsed is None or elapsed >= inp.cooldown_seconds

    trade_chance = rng.next_float()
    can_execute = not inp.paused and not inactive and decision != Decision.HOLD and cooldown_elapsed
    should_trade = can_execute and trade_chance < inp.trade_probability

    if decision != Decision.HOLD and not cooldown_elapsed:
        remaining = inp.cooldown_seconds - (elapsed or 0)
        reason = (
            f"Cooldown active ({remaining}s remaining of {inp.cooldown_seconds}s), "
            "waiting for next window."
        )
    elif decision != Decision.HOLD and not should_trade:
        reason = f"Signal observed but skipped by deterministic gate (p={inp.trade_probability:.2f})."

    qty: int | None = None
    price: float | None = None
    if should_trade:
        qty = 1 + math.floor(rng.next_float() * 10)
        price = round(clamp(1 + (rng.next_float() - 0.5) * 0.08, 0.8, 1.2), 4)

    return StepResult(
        base_signal=base_signal,
        risk_scale=risk_scale,
        delta_pct=delta_pct,
        next_equity=next_equity,
        decision=decision,
        reason=reason,
        cooldown_seconds=inp.cooldown_seconds,
        cooldown_elapsed=cooldown_elapsed,
        trade_probability=inp.trade_probability,
        trade_chance=trade_chance,
        should_trade=should_trade,
        trades=inp.previous_trades + (1 if should_trade else 0),
        qty=qty,
        price=price,
    )


@dataclass(frozen=True)
class BotChainView:
    """Chain-side inputs for one bot gathered at the start of a step."""

    account: str
    attributes: BotAttributes
    name: str | None = None
    handle: str | None = None
    token_address: str | None = None
    token_symbol: str | None = None

    @property
    def has_token(self) -> bool:
        return not is_zero_address(self.token_address)


class SimulationEngine:
    """Reads one bot from the chain, simulates a step and persists it.

    Example:
        ```python
        engine = SimulationEngine.from_settings(settings, reader, db)
        outcome = await engine.process_bot(0, now=1_700_000_000, latest_block=123)
        ```
    """

    def __init__(
        self,
        reader: ChainReader,
        db: DatabaseManager,
        *,
        chain_id: int,
        tick_interval_seconds: int = 30,
        trade_probability: float = 0.35,
        min_cooldown_seconds: int = 300,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._reader = reader
        self._db = db
        self.chain_id = chain_id
        self.tick_interval_seconds = tick_interval_seconds
        self.trade_probability = trade_probability
        self.min_cooldown_seconds = min_cooldown_seconds
        self._retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: Settings, reader: ChainReader, db: DatabaseManager) -> SimulationEngine:
        return cls(
            reader,
            db,
            chain_id=settings.chain.chain_id,
            tick_interval_seconds=settings.simulation.tick_interval_seconds,
            trade_probability=settings.simulation.trade_probability,
            min_cooldown_seconds=settings.simulation.min_cooldown_seconds,
            retry_policy=RetryPolicy.from_settings(settings.retry),
        )

    def rng_for(self, bot_id: int, now: int) -> Mulberry32:
        """Generator seeded by chain id, bot id and tick bucket."""
        return Mulberry32(hash_seed(seed_text(self.chain_id, bot_id, now, self.tick_interval_seconds)))

    async def _retry(self, fn: Any, label: str) -> Any:
        return await retry_call(fn, self._retry_policy, label=label)

    async def read_bot(self, bot_id: int) -> BotChainView | None:
        """Read everything the step needs from the chain.

        Returns:
            None when the bot id resolves to the zero address.
        """
        account, metadata_uri = await asyncio.gather(
            self._retry(lambda: self._reader.get_account_of(bot_id), f"botAccountOf({bot_id})"),
            self._retry(lambda: self._reader.get_metadata_uri(bot_id), f"metadataURI({bot_id})"),
        )
        if is_zero_address(account):
            return None

        token_address: str | None = None
        try:
            token_address = await self._retry(
                lambda: self._reader.get_token_of(bot_id), f"botTokenOf({bot_id})"
            )
        except Exception as e:
            logger.debug("No token for bot %d: %s", bot_id, e)

        token_symbol: str | None = None
        if not is_zero_address(token_address):
            try:
                token_symbol = await self._retry(
                    lambda: self._reader.get_token_symbol(str(token_address)), f"symbol({token_address})"
                )
            except Exception as e:
                logger.debug("Token symbol unavailable for bot %d: %s", bot_id, e)
        else:
            token_address = None

        attributes = await self._retry(
            lambda: self._reader.get_attributes(account), f"attributes({account})"
        )
        metadata = decode_metadata_uri(metadata_uri)
        return BotChainView(
            account=account,
            attributes=attributes,
            name=metadata.name,
            handle=metadata.handle,
            token_address=token_address,
            token_symbol=token_symbol,
        )

    async def process_bot(self, bot_id: int, now: int, latest_block: int) -> BotOutcome:
        """Run one simulation step for ``bot_id`` and persist every row.

        All writes for the bot happen in one transaction. Any exception
        propagates to the caller after the transaction is rolled back.

        Args:
            bot_id: Registry ordinal of the bot.
            now: Tick timestamp in UNIX seconds.
            latest_block: Chain height observed at the start of the tick.

        Returns:
            ``BotOutcome.SKIPPED`` for unregistered ids, else ``SUCCESS``.
        """
        view = await self.read_bot(bot_id)
        if view is None:
            logger.debug("Bot %d has no account yet, skipping", bot_id)
            return BotOutcome.SKIPPED

        attrs = view.attributes
        cooldown_seconds = derive_cooldown(attrs.risk_params, self.min_cooldown_seconds)

        async with self._db.get_async_session() as session:
            state_repo = BotStateRepository(session)
            runner_state = RunnerStateRepository(session)
            perf_repo = PerfRepository(session)
            trade_repo = TradeRepository(session)

            previous = await state_repo.get(bot_id)
            activity = classify_activity(
                previous,
                lifecycle_state=attrs.lifecycle_state,
                paused=attrs.paused,
                nonce=attrs.nonce,
                nonce_watermark=await runner_state.get_int(nonce_key(bot_id)),
            )

            await state_repo.upsert(
                BotStateDTO(
                    bot_id=bot_id,
                    bot_account=view.account,
                    lifecycle_state=attrs.lifecycle_state,
                    paused=attrs.paused,
                    cooldown_seconds=cooldown_seconds,
                    updated_ts=now,
                    name=view.name,
                    handle=view.handle,
                    has_token=view.has_token,
                    token_address=view.token_address,
                    token_symbol=view.token_symbol,
                )
            )
            await ActivityRepository(session).upsert(
                ActivityDTO(
                    bot_id=bot_id,
                    ts=now,
                    event_name=activity.value,
                    block_number=latest_block,
                    tx_hash=f"sim-{bot_id}-{now}",
                )
            )
            await runner_state.set(nonce_key(bot_id), attrs.nonce)

            latest = await perf_repo.get_latest(bot_id)
            step = simulate_step(
                StepInput(
                    now=now,
                    previous_equity=latest.equity if latest else BASELINE_EQUITY,
                    previous_trades=latest.trades if latest else 0,
                    paused=attrs.paused,
                    lifecycle_state=attrs.lifecycle_state,
                    cooldown_seconds=cooldown_seconds,
                    max_amount_native=max_amount_native(attrs.risk_params),
                    last_trade_ts=await trade_repo.get_last_trade_ts(bot_id),
                    trade_probability=self.trade_probability,
                ),
                self.rng_for(bot_id, now),
            )

            await perf_repo.upsert(
                PerfSampleDTO(
                    bot_id=bot_id,
                    ts=now,
                    equity=step.next_equity,
                    pnl=step.pnl,
                    pnl_pct=step.pnl,
                    trades=step.trades,
                    mode=SIMULATION_MODE,
                )
            )
            await DecisionRepository(session).insert(
                DecisionDTO(
                    bot_id=bot_id,
                    ts=now,
                    decision=step.decision.value,
                    reason=step.reason,
                    meta=step.decision_meta(),
                )
            )
            if step.should_trade and step.qty is not None and step.price is not None:
                await trade_repo.insert(
                    TradeDTO(
                        bot_id=bot_id,
                        ts=now,
                        side=step.decision.value,
                        qty=step.qty,
                        price=step.price,
                        reason=step.reason,
                        meta=step.trade_meta(tick_bucket(now, self.tick_interval_seconds)),
                    )
                )

        logger.debug(
            "Bot %d: %s %s equity=%.4f activity=%s",
            bot_id,
            step.decision.value,
            "traded" if step.should_trade else "no trade",
            step.next_equity,
            activity.value,
        )
        return BotOutcome.SUCCESS
