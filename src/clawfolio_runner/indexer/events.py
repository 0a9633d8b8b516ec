"""Typed bot account events returned by the log indexer.

``IndexedEvent`` is a closed union with one frozen dataclass per event
kind. Every case carries the shared identity fields; ``identity`` is
unique within one scan result.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, ClassVar

from clawfolio_runner.chain.abi import EventKind


@dataclass(frozen=True)
class _EventBase:
    kind: ClassVar[EventKind]

    bot_id: int
    tx_hash: str
    block_number: int
    log_index: int

    @property
    def identity(self) -> tuple[str, int]:
        return (self.tx_hash.lower(), self.log_index)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation, tagged with the event kind."""
        return {"type": self.kind.value, **asdict(self)}

    @staticmethod
    def _identity_fields(log: dict[str, Any]) -> dict[str, Any]:
        return {
            "bot_id": int(log["args"]["botId"]),
            "tx_hash": str(log["transactionHash"]),
            "block_number": int(log["blockNumber"]),
            "log_index": int(log["logIndex"]),
        }


@dataclass(frozen=True)
class TradeExecuted(_EventBase):
    kind: ClassVar[EventKind] = EventKind.TRADE_EXECUTED

    nonce: int
    operator: str
    router: str
    path: tuple[str, ...]
    amount_in: int
    amount_out: int
    timestamp: int

    @classmethod
    def from_log(cls, log: dict[str, Any]) -> TradeExecuted:
        args = log["args"]
        return cls(
            **cls._identity_fields(log),
            nonce=int(args["nonce"]),
            operator=str(args["operator"]),
            router=str(args["router"]),
            path=tuple(str(p) for p in args["path"]),
            amount_in=int(args["amountIn"]),
            amount_out=int(args["amountOut"]),
            timestamp=int(args["timestamp"]),
        )


@dataclass(frozen=True)
class Deposited(_EventBase):
    kind: ClassVar[EventKind] = EventKind.DEPOSITED

    token: str
    amount: int
    depositor: str

    @classmethod
    def from_log(cls, log: dict[str, Any]) -> Deposited:
        args = log["args"]
        return cls(
            **cls._identity_fields(log),
            token=str(args["token"]),
            amount=int(args["amount"]),
            depositor=str(args["depositor"]),
        )


@dataclass(frozen=True)
class Withdrawn(_EventBase):
    kind: ClassVar[EventKind] = EventKind.WITHDRAWN

    token: str
    amount: int
    to: str

    @classmethod
    def from_log(cls, log: dict[str, Any]) -> Withdrawn:
        args = log["args"]
        return cls(
            **cls._identity_fields(log),
            token=str(args["token"]),
            amount=int(args["amount"]),
            to=str(args["to"]),
        )


@dataclass(frozen=True)
class LifecycleChanged(_EventBase):
    kind: ClassVar[EventKind] = EventKind.LIFECYCLE_CHANGED

    from_state: int
    to_state: int

    @classmethod
    def from_log(cls, log: dict[str, Any]) -> LifecycleChanged:
        args = log["args"]
        return cls(
            **cls._identity_fields(log),
            from_state=int(args["fromState"]),
            to_state=int(args["toState"]),
        )


@dataclass(frozen=True)
class PausedUpdated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.PAUSED_UPDATED

    paused: bool

    @classmethod
    def from_log(cls, log: dict[str, Any]) -> PausedUpdated:
        return cls(**cls._identity_fields(log), paused=bool(log["args"]["paused"]))


@dataclass(frozen=True)
class OperatorUpdated(_EventBase):
    kind: ClassVar[EventKind] = EventKind.OPERATOR_UPDATED

    old_operator: str
    new_operator: str

    @classmethod
    def from_log(cls, log: dict[str, Any]) -> OperatorUpdated:
        args = log["args"]
        return cls(
            **cls._identity_fields(log),
            old_operator=str(args["oldOperator"]),
            new_operator=str(args["newOperator"]),
        )


IndexedEvent = TradeExecuted | Deposited | Withdrawn | LifecycleChanged | PausedUpdated | OperatorUpdated

_EVENT_TYPES: dict[EventKind, Any] = {
    EventKind.TRADE_EXECUTED: TradeExecuted,
    EventKind.DEPOSITED: Deposited,
    EventKind.WITHDRAWN: Withdrawn,
    EventKind.LIFECYCLE_CHANGED: LifecycleChanged,
    EventKind.PAUSED_UPDATED: PausedUpdated,
    EventKind.OPERATOR_UPDATED: OperatorUpdated,
}


def parse_event(kind: EventKind, log: dict[str, Any]) -> IndexedEvent:
    """Build the typed event for a decoded log of ``kind``.

    Raises:
        KeyError: If the log lacks a field the kind requires.
    """
    event: IndexedEvent = _EVENT_TYPES[kind].from_log(log)
    return event
