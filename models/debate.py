"""Debate tournament models: turns, matches and the bracket."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from models.opinion import AgentOpinion

Side = Literal["bull", "bear"]


class MatchRound(str, Enum):
    QUARTERFINAL = "quarterfinal"
    SEMIFINAL = "semifinal"
    FINAL = "final"


class BracketStage(str, Enum):
    """Lifecycle of a bracket.  Stages only move forward."""

    EMPTY = "empty"
    QUARTERFINALS = "quarterfinals"
    SEMIFINALS = "semifinals"
    FINAL = "final"
    RESOLVED = "resolved"


class DebateTurn(BaseModel):
    """One statement in a match."""

    speaker_agent_id: str
    side: Side
    text: str
    data_points_referenced: list[str] = []
    strength: float = Field(ge=0, le=100)

    model_config = {"frozen": True}


class ScoreBreakdown(BaseModel):
    data_quality: float = 0.0
    logic_coherence: float = 0.0
    risk_acknowledgment: float = 0.0
    catalyst_identification: float = 0.0

    model_config = {"frozen": True}


class MatchScores(BaseModel):
    bull_score: float
    bear_score: float
    bull_breakdown: ScoreBreakdown
    bear_breakdown: ScoreBreakdown

    model_config = {"frozen": True}


class Match(BaseModel):
    """A scored debate between one bull and one bear opinion.

    ``winner`` is always a side: ties are broken before the match is built.
    """

    match_id: str
    round: MatchRound
    bull_opinion: AgentOpinion
    bear_opinion: AgentOpinion
    turns: list[DebateTurn]
    scores: MatchScores
    winner: Side
    winning_arguments: list[str] = []

    model_config = {"frozen": True}

    @property
    def winning_opinion(self) -> AgentOpinion:
        return self.bull_opinion if self.winner == "bull" else self.bear_opinion

    @property
    def losing_opinion(self) -> AgentOpinion:
        return self.bear_opinion if self.winner == "bull" else self.bull_opinion

    @property
    def max_score(self) -> float:
        return max(self.scores.bull_score, self.scores.bear_score)


class TournamentBracket(BaseModel):
    stage: BracketStage = BracketStage.EMPTY
    quarterfinals: list[Match] = []
    semifinals: list[Match] = []
    final: Match | None = None
    champion: AgentOpinion | None = None
    winning_arguments: list[str] = []

    @property
    def matches(self) -> list[Match]:
        rounds = self.quarterfinals + self.semifinals
        return rounds + [self.final] if self.final is not None else rounds
