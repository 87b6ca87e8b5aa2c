"""Cycle results and run-level logs.

- ``AnalysisResult``: what the parallel orchestrator returns.
- ``CycleResult``: user-visible outcome of one decision cycle.
- ``RunLog``: run-level log with embedded config for reproducibility.
"""

from __future__ import annotations

from pydantic import BaseModel

from models.config import ArenaConfig
from models.context import SafetyCaps
from models.debate import TournamentBracket
from models.decision import ArbitratedDecision, Order, OrderReceipt
from models.opinion import AgentOpinion, Recommendation


class AgentError(BaseModel):
    """Why one agent produced no opinion this cycle."""

    agent_id: str
    reason: str


class ConsensusSummary(BaseModel):
    bulls: int = 0
    bears: int = 0
    neutral: int = 0
    average_confidence: float = 0.0
    recommendation: Recommendation = Recommendation.HOLD


class AnalysisResult(BaseModel):
    """Every requested agent id appears in exactly one of ``opinions`` / ``errors``."""

    opinions: dict[str, AgentOpinion] = {}
    errors: list[AgentError] = []
    consensus: ConsensusSummary = ConsensusSummary()


class CycleResult(BaseModel):
    cycle_id: str
    symbol: str
    analysis: AnalysisResult
    bracket: TournamentBracket | None = None
    decision: ArbitratedDecision
    safety: SafetyCaps | None = None
    order: Order | None = None
    receipt: OrderReceipt | None = None
    warnings: list[str] = []
    rationale: str = ""
    elapsed_seconds: float = 0.0


class RunLog(BaseModel):
    """Run-level log.  ``run_name`` is derived from the config file path."""

    run_name: str
    config: ArenaConfig
    cycles: list[CycleResult] = []
    errors: list[str] = []
