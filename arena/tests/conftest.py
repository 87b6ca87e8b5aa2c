"""Shared fixtures for the arena tests.  No network, no real sleeps."""

import pytest

from models.backend import ModelBackend
from models.context import AccountState, MarketSnapshot, Position, TradingContext
from models.opinion import AgentOpinion, Methodology, Recommendation, RiskLevel


@pytest.fixture
def make_opinion():
    """Factory for valid ``AgentOpinion`` objects with sensible defaults."""

    def _make(
        agent_id: str = "warren",
        recommendation: Recommendation = Recommendation.BUY,
        confidence: float = 70,
        methodology: Methodology = Methodology.VALUE,
        position_size: float = 5,
        risk_level: RiskLevel = RiskLevel.MEDIUM,
        price_target: tuple[float, float, float] = (130.0, 110.0, 90.0),
        bull_case: list[str] | None = None,
        bear_case: list[str] | None = None,
        catalysts: list[str] | None = None,
    ) -> AgentOpinion:
        bull, base, bear = price_target
        return AgentOpinion(
            agent_id=agent_id,
            methodology=methodology,
            recommendation=recommendation,
            confidence=confidence,
            price_target={"bull": bull, "base": base, "bear": bear},
            position_size=position_size,
            bull_case=bull_case if bull_case is not None else ["Strong on-chain accumulation"],
            bear_case=bear_case if bear_case is not None else ["Macro headwinds"],
            catalysts=catalysts if catalysts is not None else ["ETF flows"],
            risk_level=risk_level,
            summary=f"{agent_id} says {recommendation.value}",
        )

    return _make


@pytest.fixture
def market() -> MarketSnapshot:
    return MarketSnapshot(symbol="BTC", price=100.0, change_24h=2.5, high_24h=103.0, low_24h=97.0)


@pytest.fixture
def context(market) -> TradingContext:
    return TradingContext(
        symbol="BTC",
        timestamp="2025-01-15T12:00:00Z",
        account=AccountState(balance=10_000.0, available_balance=10_000.0),
        market={"BTC": market},
        notes="CPI print due Thursday.",
    )


@pytest.fixture
def context_with_long(context) -> TradingContext:
    account = AccountState(
        balance=10_000.0,
        positions=[Position(symbol="BTC", side="long", size=0.5, entry_price=95.0, leverage=3)],
    )
    return context.model_copy(update={"account": account})


@pytest.fixture
def backends() -> list[ModelBackend]:
    """Four backends with priorities 0..3."""
    return [
        ModelBackend(id=f"model-{i}", name=f"Model {i}", priority=i, timeout_seconds=5)
        for i in range(4)
    ]


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Records requested delays instead of sleeping."""

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep
