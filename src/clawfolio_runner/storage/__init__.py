"""Storage layer - Database schemas and repositories."""

from clawfolio_runner.storage.database import (
    DatabaseManager,
    backend_for_url,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from clawfolio_runner.storage.models import (
    Base,
    BotDecisionModel,
    BotLastActivityModel,
    BotPerfModel,
    BotStateModel,
    BotTradeModel,
    RunnerStateModel,
)
from clawfolio_runner.storage.repos import (
    LAST_TICK_TS_KEY,
    LATEST_BLOCK_KEY,
    ActivityDTO,
    ActivityRepository,
    BotStateDTO,
    BotStateRepository,
    DecisionDTO,
    DecisionRepository,
    LeaderboardEntryDTO,
    LeaderboardRepository,
    PerfRepository,
    PerfSampleDTO,
    RunnerStateRepository,
    TradeDTO,
    TradeRepository,
    nonce_key,
)

__all__ = [
    "LAST_TICK_TS_KEY",
    "LATEST_BLOCK_KEY",
    "ActivityDTO",
    "ActivityRepository",
    "Base",
    "BotDecisionModel",
    "BotLastActivityModel",
    "BotPerfModel",
    "BotStateDTO",
    "BotStateModel",
    "BotStateRepository",
    "BotTradeModel",
    "DatabaseManager",
    "DecisionDTO",
    "DecisionRepository",
    "LeaderboardEntryDTO",
    "LeaderboardRepository",
    "PerfRepository",
    "PerfSampleDTO",
    "RunnerStateModel",
    "RunnerStateRepository",
    "TradeDTO",
    "TradeRepository",
    "backend_for_url",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
    "nonce_key",
]
