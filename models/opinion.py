"""Analyst opinion models.

An ``AgentOpinion`` is what one analyst produces for one cycle.  The raw
model output uses camelCase keys (``priceTarget``, ``bullCase`` ...), so the
fields carry aliases and ``populate_by_name`` lets Python code use snake_case.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class Methodology(str, Enum):
    """Analysis methodology an analyst persona follows."""

    VALUE = "value"
    GROWTH = "growth"
    TECHNICAL = "technical"
    MACRO = "macro"
    SENTIMENT = "sentiment"
    RISK = "risk"
    QUANT = "quant"
    CONTRARIAN = "contrarian"


class Recommendation(str, Enum):
    STRONG_BUY = "strong_buy"
    BUY = "buy"
    HOLD = "hold"
    SELL = "sell"
    STRONG_SELL = "strong_sell"

    @property
    def is_bullish(self) -> bool:
        return self in (Recommendation.STRONG_BUY, Recommendation.BUY)

    @property
    def is_bearish(self) -> bool:
        return self in (Recommendation.STRONG_SELL, Recommendation.SELL)

    @property
    def score(self) -> int:
        """Ordinal bullishness: strong_buy=5 ... strong_sell=1."""
        return RECOMMENDATION_SCORES[self]


RECOMMENDATION_SCORES: dict[Recommendation, int] = {
    Recommendation.STRONG_BUY: 5,
    Recommendation.BUY: 4,
    Recommendation.HOLD: 3,
    Recommendation.SELL: 2,
    Recommendation.STRONG_SELL: 1,
}


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


MAX_CASE_POINTS = 5
MAX_CATALYSTS = 3


class PriceTarget(BaseModel):
    """Bull / base / bear price scenarios.  Always ordered bear <= base <= bull."""

    bull: float = Field(gt=0)
    base: float = Field(gt=0)
    bear: float = Field(gt=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> "PriceTarget":
        if not (self.bear <= self.base <= self.bull):
            raise ValueError(
                f"price targets out of order: bear={self.bear} base={self.base} bull={self.bull}"
            )
        return self


class AgentOpinion(BaseModel):
    """One analyst's structured view for a single decision cycle."""

    agent_id: str = Field(alias="agentId")
    methodology: Methodology
    recommendation: Recommendation
    confidence: float = Field(ge=0, le=100)
    price_target: PriceTarget = Field(alias="priceTarget")
    position_size: float = Field(ge=1, le=10, alias="positionSize")
    bull_case: list[str] = Field(default_factory=list, max_length=MAX_CASE_POINTS, alias="bullCase")
    bear_case: list[str] = Field(default_factory=list, max_length=MAX_CASE_POINTS, alias="bearCase")
    catalysts: list[str] = Field(default_factory=list, max_length=MAX_CATALYSTS)
    risk_level: RiskLevel = Field(alias="riskLevel")
    summary: str
    model_id: str | None = Field(default=None, alias="modelId")

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def is_bullish(self) -> bool:
        return self.recommendation.is_bullish

    @property
    def is_bearish(self) -> bool:
        return self.recommendation.is_bearish
