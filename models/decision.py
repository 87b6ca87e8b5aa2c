"""Arbitration output and order models: ArbitratedDecision, Order, OrderReceipt."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from models.opinion import AgentOpinion

NO_WINNER = "NONE"

# Warnings behave as a ring buffer: only the most recent entries are kept.
MAX_WARNINGS = 20


class FinalAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    CLOSE = "CLOSE"
    REDUCE = "REDUCE"

    @property
    def is_emergency(self) -> bool:
        return self in (FinalAction.CLOSE, FinalAction.REDUCE)


class Adjustments(BaseModel):
    """Judge overrides applied on top of the winning opinion before clamping."""

    leverage: float | None = None
    allocation_percent: float | None = None
    sl_price: float | None = None
    tp_price: float | None = None

    model_config = {"frozen": True}


class FinalRecommendation(BaseModel):
    symbol: str
    action: FinalAction
    rationale: str = ""
    confidence: float | None = None

    model_config = {"frozen": True}


def cap_warnings(warnings: list[str]) -> list[str]:
    """Keep the most recent ``MAX_WARNINGS`` non-empty warnings."""
    kept = [w for w in warnings if w]
    return kept[-MAX_WARNINGS:]


class ArbitratedDecision(BaseModel):
    """One final decision per cycle, consumed once by the risk normalizer."""

    winner_agent_id: str = NO_WINNER
    final_action: FinalAction = FinalAction.HOLD
    reasoning: str = ""
    adjustments: Adjustments | None = None
    warnings: list[str] = []
    final_recommendation: FinalRecommendation | None = None
    winning_opinion: AgentOpinion | None = None

    model_config = {"frozen": True}

    @field_validator("warnings")
    @classmethod
    def _bound_warnings(cls, value: list[str]) -> list[str]:
        return cap_warnings(value)

    @property
    def has_winner(self) -> bool:
        return self.winner_agent_id != NO_WINNER

    def with_warnings(self, *extra: str) -> "ArbitratedDecision":
        return self.model_copy(update={"warnings": cap_warnings(self.warnings + list(extra))})


class Order(BaseModel):
    """Exchange-ready order.  Prices and sizes are already rounded strings."""

    symbol: str
    side: Literal["buy", "sell"]
    size: str
    price: str
    take_profit: str | None = None
    stop_loss: str | None = None
    leverage: float = Field(ge=1)
    client_order_id: str
    reduce_only: bool = False
    agent_id: str | None = None
    rationale: str = ""

    model_config = {"frozen": True}


class OrderReceipt(BaseModel):
    """Exchange response to ``place_order``."""

    order_id: str
    client_order_id: str
    status: Literal["accepted", "rejected"]
    message: str = ""
