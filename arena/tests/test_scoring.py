"""Tests for debate content scoring."""

from arena.scoring import (
    FALLBACK_STRENGTH,
    METHODOLOGY_KEYWORDS,
    NO_TURN_STRENGTH,
    argument_strength,
    decide_winner,
    extract_data_points,
    extract_winning_arguments,
    round_half_up,
    score_match,
    truncate_argument,
)
from models.debate import DebateTurn, MatchScores, ScoreBreakdown
from models.opinion import Methodology

STRONG_BULL = (
    "Because RSI is 42 and volume rose 35% week over week, the breakout above $98K "
    "has support. However, the risk is a failed retest; the upcoming ETF flow data is the catalyst."
)


def _turn(side, text, strength=60, data_points=None, speaker=None):
    return DebateTurn(
        speaker_agent_id=speaker or side,
        side=side,
        text=text,
        data_points_referenced=data_points or [],
        strength=strength,
    )


class TestRoundHalfUp:
    def test_halves_round_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4
        assert round_half_up(2.49) == 2


class TestDataPoints:
    def test_catalog_order(self):
        assert extract_data_points("RSI at 45 and P/E of 20") == ["P/E Ratio", "RSI"]

    def test_nothing_found(self):
        assert extract_data_points("Trust me.") == []


class TestArgumentStrength:
    def test_empty_text(self):
        assert argument_strength("") == NO_TURN_STRENGTH

    def test_short_vague_text_is_penalized(self):
        assert argument_strength("maybe up") == 25

    def test_data_rich_argument_scores_higher(self):
        weak = argument_strength("I think it goes up eventually, it could be good.", Methodology.TECHNICAL)
        strong = argument_strength(STRONG_BULL, Methodology.TECHNICAL)
        assert strong > weak
        assert 0 <= weak <= 100 and 0 <= strong <= 100

    def test_methodology_keywords_add_points(self):
        text = "The intrinsic value gap is wide and the moat is intact across the cycle."
        assert argument_strength(text, Methodology.VALUE) > argument_strength(text, Methodology.GROWTH)

    def test_ma_keyword_is_case_sensitive_word(self):
        pattern = METHODOLOGY_KEYWORDS[Methodology.TECHNICAL]
        assert pattern.search("price reclaimed the 200-day MA")
        assert not pattern.search("email the team")

    def test_never_exceeds_bounds(self):
        text = STRONG_BULL * 5
        assert argument_strength(text, Methodology.TECHNICAL) <= 100


class TestScoreMatch:
    def test_breakdown_components(self, make_opinion):
        bull = make_opinion(agent_id="cathie", bear_case=["a", "b"], catalysts=["x"], confidence=80)
        bear = make_opinion(agent_id="karen", bear_case=[], catalysts=[], confidence=60)
        turns = [
            _turn("bull", STRONG_BULL, 70, ["RSI", "Volume"]),
            _turn("bear", "Nope.", 30),
        ]
        scores = score_match(turns, bull, bear)
        bull_bd = scores.bull_breakdown
        assert bull_bd.data_quality == 24
        assert bull_bd.risk_acknowledgment == 45
        assert bull_bd.catalyst_identification == 40
        # single turn: no deviation -> avg + 10
        assert bull_bd.logic_coherence == 80
        assert scores.bear_breakdown.risk_acknowledgment == 0
        assert scores.bull_score > scores.bear_score

    def test_side_without_turns_uses_neutral_strength(self, make_opinion):
        bull = make_opinion(agent_id="a")
        bear = make_opinion(agent_id="b")
        scores = score_match([_turn("bull", "Because data.", 60)], bull, bear)
        assert scores.bear_breakdown.logic_coherence == NO_TURN_STRENGTH + 10


class TestDecideWinner:
    def _scores(self, bull, bear, bull_dq=0, bear_dq=0):
        return MatchScores(
            bull_score=bull,
            bear_score=bear,
            bull_breakdown=ScoreBreakdown(data_quality=bull_dq),
            bear_breakdown=ScoreBreakdown(data_quality=bear_dq),
        )

    def test_higher_score_wins(self, make_opinion):
        bull, bear = make_opinion(agent_id="a"), make_opinion(agent_id="b")
        assert decide_winner(self._scores(60, 55), bull, bear) == "bull"
        assert decide_winner(self._scores(50, 55), bull, bear) == "bear"

    def test_tie_uses_confidence_plus_data_quality(self, make_opinion):
        bull = make_opinion(agent_id="a", confidence=60)
        bear = make_opinion(agent_id="b", confidence=70)
        assert decide_winner(self._scores(50, 50, bull_dq=24, bear_dq=0), bull, bear) == "bull"
        assert decide_winner(self._scores(50, 50, bull_dq=0, bear_dq=0), bull, bear) == "bear"

    def test_full_tie_goes_to_bull(self, make_opinion):
        bull = make_opinion(agent_id="a", confidence=70)
        bear = make_opinion(agent_id="b", confidence=70)
        assert decide_winner(self._scores(50, 50), bull, bear) == "bull"


class TestWinningArguments:
    def test_truncate_short_text_untouched(self):
        assert truncate_argument("  Short point.  ") == "Short point."

    def test_truncate_at_sentence_boundary(self):
        text = "A" * 199 + ". " + "B" * 150
        assert truncate_argument(text) == "A" * 199 + "."

    def test_hard_cut_with_ellipsis(self):
        text = "C" * 300
        result = truncate_argument(text)
        assert len(result) == 250
        assert result.endswith("...")

    def test_top_three_winner_turns(self, make_opinion):
        opinion = make_opinion(agent_id="a")
        turns = [_turn("bull", f"Point {i}", strength=40 + i) for i in range(5)]
        turns.append(_turn("bear", "Bear point", strength=99))
        assert extract_winning_arguments(turns, "bull", opinion) == ["Point 4", "Point 3", "Point 2"]

    def test_no_winner_turns_falls_back_to_thesis(self, make_opinion):
        opinion = make_opinion(agent_id="a", bull_case=["x", "y"])
        assert extract_winning_arguments([], "bull", opinion) == ["x", "y"]

    def test_fallback_strength_constant(self):
        assert FALLBACK_STRENGTH == 45
