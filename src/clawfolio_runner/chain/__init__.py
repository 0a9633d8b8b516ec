"""Chain access - ABIs, read-only chain reader and retry wrapper."""

from clawfolio_runner.chain.abi import EVENT_TOPICS, EventKind
from clawfolio_runner.chain.reader import (
    BotAttributes,
    BotMetadata,
    ChainReader,
    ChainReaderError,
    RiskParams,
    Web3ChainReader,
    create_chain_reader,
    decode_metadata_uri,
    is_zero_address,
)
from clawfolio_runner.chain.retry import RetryPolicy, retry_call

__all__ = [
    "EVENT_TOPICS",
    "BotAttributes",
    "BotMetadata",
    "ChainReader",
    "ChainReaderError",
    "EventKind",
    "RetryPolicy",
    "RiskParams",
    "Web3ChainReader",
    "create_chain_reader",
    "decode_metadata_uri",
    "is_zero_address",
    "retry_call",
]
