"""Trading context models: account, positions, market snapshots, safety caps."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class Position(BaseModel):
    """Open position on one symbol."""

    symbol: str
    side: Literal["long", "short"]
    size: float = Field(gt=0)
    entry_price: float | None = None
    leverage: float = 1.0


class AccountState(BaseModel):
    """Balance and open positions at decision time.

    ``balance`` is optional because the context source may fail to read it;
    the risk normalizer refuses to open new positions without one.
    """

    balance: float | None = None
    available_balance: float | None = None
    positions: list[Position] = []

    def position_for(self, symbol: str) -> Position | None:
        for position in self.positions:
            if position.symbol == symbol:
                return position
        return None


class MarketSnapshot(BaseModel):
    """Per-symbol market data used in prompts and for order pricing."""

    symbol: str
    price: float
    change_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    volume_24h: float | None = None
    funding_rate: float | None = None


class TradingContext(BaseModel):
    """Everything the analysts see in one decision cycle."""

    symbol: str = Field(description="Symbol under decision, e.g. 'BTC'.")
    timestamp: str  # ISO 8601
    account: AccountState = Field(default_factory=AccountState)
    market: dict[str, MarketSnapshot] = {}
    notes: str | None = None  # news / on-chain / free-form context
    cycle_id: str | None = None

    @property
    def snapshot(self) -> MarketSnapshot | None:
        return self.market.get(self.symbol)

    @property
    def reference_price(self) -> float | None:
        snapshot = self.snapshot
        return snapshot.price if snapshot is not None else None


class CircuitLevel(str, Enum):
    NONE = "NONE"
    YELLOW = "YELLOW"
    ORANGE = "ORANGE"
    RED = "RED"


class CircuitStatus(BaseModel):
    level: CircuitLevel = CircuitLevel.NONE
    reason: str = ""


class SafetyCaps(BaseModel):
    """External ceilings the risk normalizer must honour."""

    level: CircuitLevel = CircuitLevel.NONE
    max_leverage: float | None = None
    reason: str = ""

    model_config = {"frozen": True}

    @property
    def close_only(self) -> bool:
        return self.level == CircuitLevel.RED
