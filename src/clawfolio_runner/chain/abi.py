"""Contract ABIs for the bot registry, bot accounts and ERC20 tokens.

Only the read-only functions and events consumed by the runner are listed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from web3 import Web3


class EventKind(str, Enum):
    """Event kinds emitted by a bot account."""

    TRADE_EXECUTED = "TradeExecuted"
    DEPOSITED = "Deposited"
    WITHDRAWN = "Withdrawn"
    LIFECYCLE_CHANGED = "LifecycleChanged"
    PAUSED_UPDATED = "PausedUpdated"
    OPERATOR_UPDATED = "OperatorUpdated"


BOT_REGISTRY_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "botCount",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "botAccountOf",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "metadataURI",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "type": "function",
        "name": "botTokenOf",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
]

BOT_ACCOUNT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "creator",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "operator",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "lifecycleState",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "paused",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "nonce",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "riskParams",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "maxAmountInPerTrade", "type": "uint256"},
                    {"name": "minSecondsBetweenTrades", "type": "uint256"},
                ],
            }
        ],
    },
    {
        "type": "event",
        "name": "TradeExecuted",
        "anonymous": False,
        "inputs": [
            {"name": "botId", "type": "uint256", "indexed": True},
            {"name": "nonce", "type": "uint256", "indexed": True},
            {"name": "operator", "type": "address", "indexed": True},
            {"name": "router", "type": "address", "indexed": False},
            {"name": "path", "type": "address[]", "indexed": False},
            {"name": "amountIn", "type": "uint256", "indexed": False},
            {"name": "amountOut", "type": "uint256", "indexed": False},
            {"name": "timestamp", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "Deposited",
        "anonymous": False,
        "inputs": [
            {"name": "botId", "type": "uint256", "indexed": True},
            {"name": "token", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "depositor", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "Withdrawn",
        "anonymous": False,
        "inputs": [
            {"name": "botId", "type": "uint256", "indexed": True},
            {"name": "token", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "to", "type": "address", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "LifecycleChanged",
        "anonymous": False,
        "inputs": [
            {"name": "botId", "type": "uint256", "indexed": True},
            {"name": "fromState", "type": "uint8", "indexed": False},
            {"name": "toState", "type": "uint8", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "PausedUpdated",
        "anonymous": False,
        "inputs": [
            {"name": "botId", "type": "uint256", "indexed": True},
            {"name": "paused", "type": "bool", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "OperatorUpdated",
        "anonymous": False,
        "inputs": [
            {"name": "botId", "type": "uint256", "indexed": True},
            {"name": "oldOperator", "type": "address", "indexed": True},
            {"name": "newOperator", "type": "address", "indexed": True},
        ],
    },
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]


def _event_signature(name: str) -> str:
    for item in BOT_ACCOUNT_ABI:
        if item["type"] == "event" and item["name"] == name:
            types = ",".join(i["type"] for i in item["inputs"])
            return f"{name}({types})"
    raise KeyError(name)


# topic0 for each event kind, "0x"-prefixed.
EVENT_TOPICS: dict[EventKind, str] = {
    kind: Web3.to_hex(Web3.keccak(text=_event_signature(kind.value))) for kind in EventKind
}
