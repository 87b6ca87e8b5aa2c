"""Data models for the analyst arena decision pipeline.

Every stage (model pool, agents, tournament, judge, risk, simulation) imports
from models.
"""

from models.backend import CycleAssignment, ModelBackend
from models.config import (
    ArenaConfig,
    ExchangeConfig,
    JudgeConfig,
    LLMConfig,
    ModelPoolConfig,
    OrchestratorConfig,
    RiskConfig,
    RunnerConfig,
    SafetyConfig,
    TournamentConfig,
)
from models.context import (
    AccountState,
    CircuitLevel,
    CircuitStatus,
    MarketSnapshot,
    Position,
    SafetyCaps,
    TradingContext,
)
from models.debate import (
    BracketStage,
    DebateTurn,
    Match,
    MatchRound,
    MatchScores,
    ScoreBreakdown,
    TournamentBracket,
)
from models.decision import (
    NO_WINNER,
    Adjustments,
    ArbitratedDecision,
    FinalAction,
    FinalRecommendation,
    Order,
    OrderReceipt,
)
from models.log import AgentError, AnalysisResult, ConsensusSummary, CycleResult, RunLog
from models.opinion import AgentOpinion, Methodology, PriceTarget, Recommendation, RiskLevel

__all__ = [
    # backend
    "CycleAssignment",
    "ModelBackend",
    # config
    "ArenaConfig",
    "ExchangeConfig",
    "JudgeConfig",
    "LLMConfig",
    "ModelPoolConfig",
    "OrchestratorConfig",
    "RiskConfig",
    "RunnerConfig",
    "SafetyConfig",
    "TournamentConfig",
    # context
    "AccountState",
    "CircuitLevel",
    "CircuitStatus",
    "MarketSnapshot",
    "Position",
    "SafetyCaps",
    "TradingContext",
    # debate
    "BracketStage",
    "DebateTurn",
    "Match",
    "MatchRound",
    "MatchScores",
    "ScoreBreakdown",
    "TournamentBracket",
    # decision
    "NO_WINNER",
    "Adjustments",
    "ArbitratedDecision",
    "FinalAction",
    "FinalRecommendation",
    "Order",
    "OrderReceipt",
    # log
    "AgentError",
    "AnalysisResult",
    "ConsensusSummary",
    "CycleResult",
    "RunLog",
    # opinion
    "AgentOpinion",
    "Methodology",
    "PriceTarget",
    "Recommendation",
    "RiskLevel",
]
