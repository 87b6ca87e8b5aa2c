"""
Content-signal scoring for debate turns and matches.

Everything here is a pure function of turn text and opinion fields, so a
bracket is fully reproducible given the same model output.
"""

from __future__ import annotations

import math
import re
from typing import Sequence

from models.debate import DebateTurn, MatchScores, ScoreBreakdown, Side
from models.opinion import AgentOpinion, Methodology

BASE_STRENGTH = 40
FALLBACK_STRENGTH = 45
NO_TURN_STRENGTH = 50
DATA_POINT_WEIGHT = 12
RISK_THESIS_WEIGHT = 15
RISK_DEBATE_BONUS = 15
CATALYST_THESIS_WEIGHT = 20
CATALYST_DEBATE_BONUS = 20
MAX_WINNING_ARGUMENTS = 3
ARGUMENT_MAX_CHARS = 250
ARGUMENT_MIN_SENTENCE_END = 150

_I = re.IGNORECASE


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# =============================================================================
# DATA POINT CATALOG
# =============================================================================

DATA_POINT_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # valuation
    ("P/E Ratio", re.compile(r"P/E|PE ratio|price.to.earnings", _I)),
    ("P/B Ratio", re.compile(r"P/B|price.to.book", _I)),
    ("EV/EBITDA", re.compile(r"EV/EBITDA|enterprise value", _I)),
    ("PEG Ratio", re.compile(r"PEG ratio", _I)),
    ("Free Cash Flow", re.compile(r"FCF|free cash flow", _I)),
    # growth
    ("Revenue Growth", re.compile(r"revenue growth|sales growth", _I)),
    ("Earnings Growth", re.compile(r"earnings growth|EPS growth", _I)),
    ("Margins", re.compile(r"margin|profitability", _I)),
    # technical
    ("RSI", re.compile(r"RSI|relative strength", _I)),
    ("MACD", re.compile(r"MACD", _I)),
    ("Moving Averages", re.compile(r"moving average|SMA|EMA|50.day|200.day", _I)),
    ("Support/Resistance", re.compile(r"support|resistance", _I)),
    ("Volume", re.compile(r"volume", _I)),
    ("Bollinger Bands", re.compile(r"bollinger", _I)),
    # sentiment
    ("Sentiment", re.compile(r"sentiment|news|headlines", _I)),
    ("Analyst Ratings", re.compile(r"analyst|rating|upgrade|downgrade", _I)),
    ("Short Interest", re.compile(r"short interest|shorts", _I)),
    # financial health
    ("Debt Levels", re.compile(r"debt|leverage|D/E", _I)),
    ("ROE", re.compile(r"ROE|return on equity", _I)),
    ("Cash Position", re.compile(r"cash|liquidity", _I)),
]


def extract_data_points(text: str) -> list[str]:
    """Distinct data-point categories referenced in *text*, in catalog order."""
    return [name for name, pattern in DATA_POINT_PATTERNS if pattern.search(text)]


# =============================================================================
# ARGUMENT STRENGTH
# =============================================================================

_PERCENT = re.compile(r"\d+\.?\d*%")
_DOLLAR = re.compile(r"\$\d+\.?\d*[BMK]?", _I)
_MULTIPLE = re.compile(r"\d+\.?\d*x", _I)
_RATIO_NAMES = re.compile(r"P/E|P/B|EV/|ROE|ROA", _I)
_NUMERIC = re.compile(r"\d+%|\$\d+", _I)

METHODOLOGY_KEYWORDS: dict[Methodology, re.Pattern[str]] = {
    Methodology.QUANT: re.compile(r"factor|statistically|probability|backtest|standard deviation", _I),
    Methodology.TECHNICAL: re.compile(r"trend|support|resistance|volume|breakout|(?-i:\bMA\b)|RSI", _I),
    Methodology.MACRO: re.compile(r"cycle|fed|interest rates|inflation|liquidity|policy", _I),
    Methodology.SENTIMENT: re.compile(r"narrative|fomo|crowd|social volume|fear|greed", _I),
    Methodology.VALUE: re.compile(r"intrinsic|moat|safety|undervalued|cash flow", _I),
    Methodology.GROWTH: re.compile(r"TAM|acceleration|scaling|innovation|recurring", _I),
    Methodology.RISK: re.compile(r"leverage|protection|drawdown|worst-case|limit", _I),
}

# (pattern, points): each matching pattern adds its points once.
_LOGIC_SIGNALS = [
    (re.compile(r"because|therefore|thus|consequently|as a result", _I), 5),
    (re.compile(r"however|although|while|despite|nevertheless|on the other hand", _I), 5),
    (re.compile(r"if.*then|assuming|given that|provided that", _I), 3),
    (re.compile(r"compared to|relative to|versus|vs\.|higher than|lower than", _I), 4),
    (re.compile(r"first|second|third|finally|moreover|additionally", _I), 3),
]
_RISK_SIGNALS = [
    (re.compile(r"risk|downside|concern|challenge|threat|weakness", _I), 5),
    (re.compile(r"could fail|might not|uncertain|volatile", _I), 3),
    (re.compile(r"worst case|bear case|if wrong", _I), 2),
]
_CATALYST_SIGNALS = [
    (re.compile(r"catalyst|trigger|upcoming|Q[1-4]|earnings|announcement", _I), 5),
    (re.compile(r"timeline|within \d+ months|by year end|near term", _I), 3),
    (re.compile(r"inflection point|turning point|breakout", _I), 2),
]

_VAGUE = re.compile(r"maybe|perhaps|possibly|might|could be", _I)
_FILLER = re.compile(r"obviously|clearly|everyone knows|it's clear that", _I)
_CAUSAL = re.compile(r"because|therefore|thus|as a result", _I)
_ACKNOWLEDGES_RISK = re.compile(r"risk|concern|however|although|downside|challenge", _I)
_MENTIONS_CATALYST = re.compile(r"catalyst|trigger|Q[1-4]|earnings|announcement|upcoming|near.term", _I)


def argument_strength(text: str, methodology: Methodology = Methodology.VALUE) -> int:
    """Score one turn's argument from content signals, 0-100."""
    if not text:
        return NO_TURN_STRENGTH

    score = BASE_STRENGTH

    # data quality
    score += min(10, len(_PERCENT.findall(text)) * 3)
    score += min(8, len(_DOLLAR.findall(text)) * 2)
    if _MULTIPLE.search(text):
        score += 3
    if _RATIO_NAMES.search(text):
        score += 4

    keywords = METHODOLOGY_KEYWORDS.get(methodology)
    if keywords is not None and keywords.search(text):
        score += 10

    for signals in (_LOGIC_SIGNALS, _RISK_SIGNALS, _CATALYST_SIGNALS):
        score += sum(points for pattern, points in signals if pattern.search(text))

    # penalties
    if len(text) < 50:
        score -= 10
    if _VAGUE.search(text) and not _NUMERIC.search(text):
        score -= 5
    if _FILLER.search(text):
        score -= 3

    # length bonus
    if len(text) > 100:
        score += 2
    if len(text) > 150:
        score += 2
    if len(text) > 200:
        score += 1

    return max(0, min(100, score))


# =============================================================================
# MATCH SCORING
# =============================================================================


def _side_breakdown(turns: Sequence[DebateTurn], opinion: AgentOpinion) -> tuple[ScoreBreakdown, float]:
    strengths = [t.strength for t in turns]
    avg = sum(strengths) / len(strengths) if strengths else NO_TURN_STRENGTH

    data_points = {p for t in turns for p in t.data_points_referenced}
    data_quality = min(100, len(data_points) * DATA_POINT_WEIGHT)

    std = 0.0
    if len(strengths) > 1:
        std = math.sqrt(sum((s - avg) ** 2 for s in strengths) / len(strengths))
    logic = min(100, round_half_up(avg + max(0.0, 10 - std / 2)))

    acknowledges = any(_ACKNOWLEDGES_RISK.search(t.text) for t in turns)
    risk = min(100, len(opinion.bear_case) * RISK_THESIS_WEIGHT + (RISK_DEBATE_BONUS if acknowledges else 0))

    mentions = any(_MENTIONS_CATALYST.search(t.text) for t in turns)
    catalyst = min(
        100,
        len(opinion.catalysts) * CATALYST_THESIS_WEIGHT + (CATALYST_DEBATE_BONUS if mentions else 0),
    )

    breakdown = ScoreBreakdown(
        data_quality=data_quality,
        logic_coherence=logic,
        risk_acknowledgment=risk,
        catalyst_identification=catalyst,
    )
    final = round_half_up(
        0.25 * (data_quality + logic + risk + catalyst) + opinion.confidence / 20
    )
    return breakdown, min(100, final)


def score_match(
    turns: Sequence[DebateTurn], bull: AgentOpinion, bear: AgentOpinion
) -> MatchScores:
    bull_turns = [t for t in turns if t.side == "bull"]
    bear_turns = [t for t in turns if t.side == "bear"]
    bull_breakdown, bull_score = _side_breakdown(bull_turns, bull)
    bear_breakdown, bear_score = _side_breakdown(bear_turns, bear)
    return MatchScores(
        bull_score=bull_score,
        bear_score=bear_score,
        bull_breakdown=bull_breakdown,
        bear_breakdown=bear_breakdown,
    )


def decide_winner(scores: MatchScores, bull: AgentOpinion, bear: AgentOpinion) -> Side:
    """Strictly higher score wins; ties go to confidence + data quality, then bull."""
    if scores.bull_score > scores.bear_score:
        return "bull"
    if scores.bear_score > scores.bull_score:
        return "bear"
    bull_tiebreak = bull.confidence + scores.bull_breakdown.data_quality
    bear_tiebreak = bear.confidence + scores.bear_breakdown.data_quality
    return "bull" if bull_tiebreak >= bear_tiebreak else "bear"


# =============================================================================
# WINNING ARGUMENTS
# =============================================================================


def truncate_argument(text: str) -> str:
    """Cut at a sentence boundary near 250 chars, else hard-cut with '...'."""
    text = text.strip()
    if len(text) <= ARGUMENT_MAX_CHARS:
        return text
    sentence_end = text[:ARGUMENT_MAX_CHARS].rfind(".")
    if sentence_end > ARGUMENT_MIN_SENTENCE_END:
        return text[: sentence_end + 1]
    return text[: ARGUMENT_MAX_CHARS - 3] + "..."


def extraction_score(turn: DebateTurn) -> float:
    score = turn.strength + len(turn.data_points_referenced) * 5
    score += len(re.findall(r"\d+\.?\d*%|\$\d+", turn.text)) * 3
    if _CAUSAL.search(turn.text):
        score += 5
    return score


def extract_winning_arguments(
    turns: Sequence[DebateTurn], winner: Side, winning_opinion: AgentOpinion
) -> list[str]:
    """Top winning-side turns by extraction score, truncated for display."""
    winner_turns = [t for t in turns if t.side == winner]
    if not winner_turns:
        return list(winning_opinion.bull_case[:MAX_WINNING_ARGUMENTS])
    ranked = sorted(winner_turns, key=extraction_score, reverse=True)
    return [truncate_argument(t.text) for t in ranked[:MAX_WINNING_ARGUMENTS]]
