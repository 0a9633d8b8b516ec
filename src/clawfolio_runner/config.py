"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Clawfolio runner, loading and validating environment variables at
startup. Variable names follow the ``RUNNER_*`` convention used by the
deployed runner so existing ``.env`` files keep working.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ConfigurationError(ValueError):
    """Raised when settings are valid individually but unusable for a command."""


def default_database_url(out_dir: Path) -> str:
    """SQLite file used when DATABASE_URL is unset."""
    return f"sqlite+aiosqlite:///{out_dir.as_posix()}/runner.db"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="SQLite (aiosqlite) or PostgreSQL (asyncpg) connection string; "
        "defaults to runner.db under RUNNER_OUT_DIR",
    )

    @field_validator("url", mode="before")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate database URL format."""
        if v is None or v == "":
            return None
        if not str(v).startswith(("sqlite://", "sqlite+aiosqlite://", "postgresql://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a SQLite or PostgreSQL connection string")
        return str(v)


class RedisSettings(BaseSettings):
    """Optional Redis cache for immutable chain reads."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (caching disabled when unset)",
    )

    @field_validator("url", mode="before")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None or v == "":
            return None
        if not str(v).startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return str(v)


class ChainSettings(BaseSettings):
    """Chain RPC and registry settings."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_", extra="ignore")

    chain_id: int = Field(
        default=10143,
        alias="RUNNER_CHAIN_ID",
        ge=1,
        description="Chain identifier, also part of the simulation seed",
    )
    rpc_url: str = Field(
        default="https://testnet-rpc.monad.xyz",
        alias="RUNNER_RPC_HTTP_URL",
        description="HTTP JSON-RPC endpoint",
    )
    bot_registry: str = Field(
        alias="RUNNER_BOT_REGISTRY",
        description="Address of the bot registry contract",
    )
    start_block: int = Field(
        default=0,
        alias="RUNNER_START_BLOCK",
        ge=0,
        description="First block scanned by the log indexer",
    )
    max_bots: int | None = Field(
        default=None,
        alias="RUNNER_MAX_BOTS",
        ge=1,
        description="Optional cap on the number of bots processed per pass",
    )
    max_requests_per_second: float = Field(
        default=25.0,
        alias="RUNNER_RPC_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=10_000.0,
        description="Client-side RPC rate limit",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RUNNER_RPC_HTTP_URL must be an HTTP(S) endpoint")
        return v

    @field_validator("bot_registry")
    @classmethod
    def validate_registry(cls, v: str) -> str:
        if not v or not Web3.is_address(v):
            raise ValueError(f"Invalid RUNNER_BOT_REGISTRY: {v}. Must be a valid 0x address.")
        return v

    @field_validator("max_bots", mode="before")
    @classmethod
    def _empty_max_bots(cls, v: object) -> object:
        if v == "":
            return None
        return v


class RetrySettings(BaseSettings):
    """Bounded exponential backoff applied to every remote read."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_RETRY_", extra="ignore")

    max_attempts: int = Field(
        default=3,
        alias="RUNNER_RETRY_MAX_ATTEMPTS",
        ge=1,
        le=20,
        description="Total attempts per remote call (first try included)",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        alias="RUNNER_RETRY_BASE_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Delay before the second attempt; doubles each attempt",
    )


class SimulationSettings(BaseSettings):
    """Tick cadence and simulated trading parameters."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_", extra="ignore")

    tick_interval_seconds: int = Field(
        default=30,
        alias="RUNNER_TICK_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Seconds between scheduler ticks; also the seed bucket width",
    )
    trade_probability: float = Field(
        default=0.35,
        alias="RUNNER_TRADE_PROB",
        description="Probability that an eligible decision is executed",
    )
    min_cooldown_seconds: int = Field(
        default=300,
        alias="RUNNER_TRADE_MIN_COOLDOWN_SECONDS",
        description="Cooldown used when a bot exposes no usable risk params",
    )

    @field_validator("trade_probability", mode="before")
    @classmethod
    def _clamp_trade_probability(cls, v: object) -> float:
        try:
            value = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.35
        if value != value:
            return 0.35
        return max(0.0, min(1.0, value))

    @field_validator("min_cooldown_seconds", mode="before")
    @classmethod
    def _floor_cooldown(cls, v: object) -> int:
        try:
            value = int(v)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return 300
        return max(1, value)


class ServerSettings(BaseSettings):
    """HTTP read surface and scheduler loop settings."""

    model_config = SettingsConfigDict(env_prefix="RUNNER_", extra="ignore")

    host: str = Field(
        default="0.0.0.0",
        alias="RUNNER_HOST",
        description="Bind address for the HTTP API",
    )
    port: int = Field(
        default=8787,
        alias="RUNNER_PORT",
        ge=1,
        le=65535,
        description="HTTP port for the read API",
    )
    disable_loop: bool = Field(
        default=False,
        alias="RUNNER_DISABLE_LOOP",
        description="Serve the API without the boot tick and repeating timer",
    )
    admin_token: SecretStr | None = Field(
        default=None,
        alias="RUNNER_ADMIN_TOKEN",
        description="Pre-shared token required by POST /admin/tick",
    )

    @field_validator("admin_token", mode="before")
    @classmethod
    def _empty_admin_token(cls, v: object) -> object:
        if v == "":
            return None
        return v


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from clawfolio_runner.config import get_settings

        settings = get_settings()
        print(settings.chain.bot_registry)
        print(settings.simulation.tick_interval_seconds)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    retry: RetrySettings = Field(
        default_factory=lambda: RetrySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    simulation: SimulationSettings = Field(
        default_factory=lambda: SimulationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    server: ServerSettings = Field(
        default_factory=lambda: ServerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    out_dir: Path = Field(
        default=Path("out"),
        alias="RUNNER_OUT_DIR",
        description="Directory for indexer output files",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    @model_validator(mode="after")
    def _default_database_url(self) -> Settings:
        if self.database.url is None:
            self.database = self.database.model_copy(update={"url": default_database_url(self.out_dir)})
        return self

    @property
    def database_url(self) -> str:
        """Effective database URL, never unset once settings are validated."""
        return self.database.url or default_database_url(self.out_dir)

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database_url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "chain": {
                "chain_id": str(self.chain.chain_id),
                "rpc_url": self.chain.rpc_url,
                "bot_registry": self.chain.bot_registry,
                "start_block": str(self.chain.start_block),
                "max_bots": str(self.chain.max_bots) if self.chain.max_bots else "(all)",
            },
            "retry": {
                "max_attempts": str(self.retry.max_attempts),
                "base_delay_seconds": str(self.retry.base_delay_seconds),
            },
            "simulation": {
                "tick_interval_seconds": str(self.simulation.tick_interval_seconds),
                "trade_probability": str(self.simulation.trade_probability),
                "min_cooldown_seconds": str(self.simulation.min_cooldown_seconds),
            },
            "server": {
                "port": str(self.server.port),
                "disable_loop": str(self.server.disable_loop),
                "admin_token": "(set)" if self.server.admin_token else "(not set)",
            },
            "out_dir": str(self.out_dir),
            "log_level": self.log_level,
        }

    def validate_requirements(self, *, command: Literal["serve", "tick", "index"]) -> None:
        """Validate command-specific requirements.

        Every command reads the registry, so a zero registry address is
        refused up front instead of failing on the first tick.
        """
        if self.chain.bot_registry.lower() == ZERO_ADDRESS:
            raise ConfigurationError("RUNNER_BOT_REGISTRY must not be the zero address")

        if command == "serve" and self.server.disable_loop and self.server.admin_token is None:
            logging.getLogger(__name__).warning(
                "Loop disabled and RUNNER_ADMIN_TOKEN unset: no ticks will ever run"
            )

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
