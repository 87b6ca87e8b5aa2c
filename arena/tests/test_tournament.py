"""Tests for the debate tournament: side building, pairing and the engine."""

import asyncio

import pytest

from api_client.llm.mock import MockLLMClient
from api_client.llm.models import LLMResponse
from arena.model_pool import ModelPool
from arena.tournament import (
    TournamentEngine,
    build_sides,
    pair_final,
    pair_quarterfinals,
    pair_semifinals,
)
from models.config import TournamentConfig
from models.debate import BracketStage, MatchRound
from models.errors import TransportFailure
from models.opinion import Recommendation

BUY, SELL, HOLD = Recommendation.BUY, Recommendation.SELL, Recommendation.HOLD

STRONG = (
    "Because RSI is 42 and volume rose 35% week over week, the breakout above $98K has support. "
    "However, the risk is a failed retest; the upcoming ETF flow data is the catalyst."
)


def _run_async(coro):
    return asyncio.run(coro)


class SideClient:
    """Bull side argues with data, bear side does not."""

    def __init__(self):
        self.turns = []

    async def generate(self, request):
        meta = request.metadata
        self.turns.append((meta["agent_id"], meta["side"], meta["turn"]))
        text = STRONG if meta["side"] == "bull" else "I disagree."
        return LLMResponse(text=text, model=request.model)


class ScriptedClient:
    """Strong argument on the listed per-agent call numbers, filler otherwise."""

    def __init__(self, strong_calls):
        self.strong_calls = strong_calls
        self.calls = {}

    async def generate(self, request):
        agent_id = request.metadata["agent_id"]
        self.calls[agent_id] = self.calls.get(agent_id, 0) + 1
        strong = self.calls[agent_id] in self.strong_calls.get(agent_id, set())
        return LLMResponse(text=STRONG if strong else "I disagree.", model=request.model)


class FailingClient:
    async def generate(self, request):
        raise TransportFailure("upstream 502")


@pytest.fixture
def pool(backends):
    return ModelPool(backends)


def _engine(client, pool, fake_sleep, **config):
    config.setdefault("turn_delay_seconds", 0)
    return TournamentEngine(client, pool, TournamentConfig(**config), sleep=fake_sleep)


# =============================================================================
# PAIRING
# =============================================================================


class TestBuildSides:
    def test_holds_balance_the_smaller_side(self, make_opinion):
        opinions = [
            make_opinion(agent_id="b1", recommendation=BUY),
            make_opinion(agent_id="b2", recommendation=BUY),
            make_opinion(agent_id="b3", recommendation=Recommendation.STRONG_BUY),
            make_opinion(agent_id="s1", recommendation=SELL),
            make_opinion(agent_id="h1", recommendation=HOLD, confidence=90),
            make_opinion(agent_id="h2", recommendation=HOLD, confidence=50),
        ]
        bulls, bears = build_sides(opinions)
        assert len(bulls) == 3 and len(bears) == 3
        assert {o.agent_id for o in bears} == {"s1", "h1", "h2"}

    def test_sizes_differ_by_at_most_one_when_holds_suffice(self, make_opinion):
        opinions = [make_opinion(agent_id="b1", recommendation=BUY)] + [
            make_opinion(agent_id=f"h{i}", recommendation=HOLD) for i in range(4)
        ]
        bulls, bears = build_sides(opinions)
        assert abs(len(bulls) - len(bears)) <= 1

    def test_sides_sorted_by_confidence(self, make_opinion):
        opinions = [
            make_opinion(agent_id="low", recommendation=BUY, confidence=55),
            make_opinion(agent_id="high", recommendation=BUY, confidence=88),
        ]
        bulls, _ = build_sides(opinions)
        assert [o.agent_id for o in bulls] == ["high", "low"]


class TestPairing:
    def test_quarterfinals_pair_by_rank(self, make_opinion):
        opinions = [
            make_opinion(agent_id="b1", recommendation=BUY, confidence=90),
            make_opinion(agent_id="b2", recommendation=BUY, confidence=60),
            make_opinion(agent_id="s1", recommendation=SELL, confidence=70),
            make_opinion(agent_id="s2", recommendation=SELL, confidence=80),
        ]
        pairs = pair_quarterfinals(opinions)
        assert [(b.agent_id, s.agent_id) for b, s in pairs] == [("b1", "s2"), ("b2", "s1")]

    def test_quarterfinals_capped(self, make_opinion):
        opinions = [make_opinion(agent_id=f"b{i}", recommendation=BUY) for i in range(5)] + [
            make_opinion(agent_id=f"s{i}", recommendation=SELL) for i in range(5)
        ]
        assert len(pair_quarterfinals(opinions, max_matches=4)) == 4

    def test_one_sided_opinions_yield_no_pairs(self, make_opinion):
        opinions = [make_opinion(agent_id=f"b{i}", recommendation=BUY) for i in range(3)]
        assert pair_quarterfinals(opinions) == []

    def test_semifinals_fall_back_to_one_vs_n(self, make_opinion):
        winners = [
            make_opinion(agent_id=f"b{i}", recommendation=BUY, confidence=90 - i * 10) for i in range(4)
        ]
        pairs = pair_semifinals(winners)
        assert [(b.agent_id, s.agent_id) for b, s in pairs] == [("b0", "b3"), ("b1", "b2")]

    def test_semifinal_orientation_puts_bullish_first(self, make_opinion):
        winners = [
            make_opinion(agent_id="s", recommendation=SELL, confidence=90),
            make_opinion(agent_id="h", recommendation=HOLD, confidence=80),
        ]
        (bull, bear), = pair_semifinals(winners)
        # HOLD joins the (empty) bull side; SELL stays bear
        assert (bull.agent_id, bear.agent_id) == ("h", "s")

    def test_single_winner_has_no_semifinal(self, make_opinion):
        assert pair_semifinals([make_opinion()]) == []

    def test_final_needs_two_semifinals(self):
        assert pair_final([]) is None


# =============================================================================
# ENGINE
# =============================================================================


def _eight(make_opinion):
    bulls = [make_opinion(agent_id=f"bull{i}", recommendation=BUY, confidence=90 - i * 10) for i in range(4)]
    bears = [make_opinion(agent_id=f"bear{i}", recommendation=SELL, confidence=85 - i * 10) for i in range(4)]
    return bulls + bears


class TestTournamentEngine:
    def test_full_bracket(self, make_opinion, pool, context, fake_sleep):
        client = SideClient()
        bracket = _run_async(_engine(client, pool, fake_sleep).run(_eight(make_opinion), context))

        assert bracket.stage == BracketStage.RESOLVED
        assert len(bracket.quarterfinals) == 4
        assert len(bracket.semifinals) == 2
        assert bracket.final is not None
        assert bracket.final.round == MatchRound.FINAL
        assert [m.match_id for m in bracket.quarterfinals] == [f"quarterfinal-{i}" for i in range(1, 5)]
        # every quarterfinal is won by the data-backed bull side
        assert all(m.winner == "bull" for m in bracket.quarterfinals)
        assert bracket.champion.agent_id == "bull0"
        assert bracket.winning_arguments

    def test_turn_counts(self, make_opinion, pool, context, fake_sleep):
        bracket = _run_async(_engine(SideClient(), pool, fake_sleep).run(_eight(make_opinion), context))
        assert all(len(m.turns) == 4 for m in bracket.quarterfinals)
        assert len(bracket.final.turns) == 6
        assert [t.side for t in bracket.final.turns[:2]] == ["bull", "bear"]

    def test_turns_are_sequential_within_a_match(self, make_opinion, pool, context, fake_sleep):
        client = SideClient()
        opinions = [
            make_opinion(agent_id="b", recommendation=BUY),
            make_opinion(agent_id="s", recommendation=SELL),
        ]
        _run_async(_engine(client, pool, fake_sleep).run(opinions, context))
        assert client.turns == [("b", "bull", 1), ("s", "bear", 1), ("b", "bull", 2), ("s", "bear", 2)]

    def test_turn_delay_uses_injected_sleep(self, make_opinion, pool, context, fake_sleep, sleeps):
        opinions = [
            make_opinion(agent_id="b", recommendation=BUY),
            make_opinion(agent_id="s", recommendation=SELL),
        ]
        _run_async(_engine(SideClient(), pool, fake_sleep, turn_delay_seconds=0.3).run(opinions, context))
        assert sleeps == [0.3, 0.3]

    def test_failed_turns_fall_back_to_thesis(self, make_opinion, pool, context, fake_sleep):
        opinions = [
            make_opinion(agent_id="b", recommendation=BUY, bull_case=["On-chain demand rising"]),
            make_opinion(agent_id="s", recommendation=SELL, bear_case=["Funding overheated"]),
        ]
        bracket = _run_async(_engine(FailingClient(), pool, fake_sleep).run(opinions, context))
        (match,) = bracket.quarterfinals
        assert all(t.strength == 45 for t in match.turns)
        assert "On-chain demand rising" in match.turns[0].text
        assert "Funding overheated" in match.turns[1].text
        assert bracket.champion is not None

    def test_one_sided_opinions_skip_debate(self, make_opinion, pool, context, fake_sleep):
        client = SideClient()
        opinions = [
            make_opinion(agent_id="a", recommendation=BUY, confidence=60),
            make_opinion(agent_id="b", recommendation=BUY, confidence=85),
        ]
        bracket = _run_async(_engine(client, pool, fake_sleep).run(opinions, context))
        assert bracket.stage == BracketStage.RESOLVED
        assert bracket.matches == []
        assert bracket.champion.agent_id == "b"
        assert client.turns == []

    def test_fewer_than_two_opinions(self, make_opinion, pool, fake_sleep):
        engine = _engine(SideClient(), pool, fake_sleep)
        empty = _run_async(engine.run([]))
        assert empty.stage == BracketStage.RESOLVED and empty.champion is None
        single = _run_async(engine.run([make_opinion(agent_id="solo")]))
        assert single.champion.agent_id == "solo"

    def test_without_final_best_quarterfinal_winner_is_champion(self, make_opinion, pool, context, fake_sleep):
        # b1 argues well only in the quarterfinal, b2 only in the semifinal
        client = ScriptedClient(strong_calls={"b1": {1, 2}, "b2": {3, 4}})
        opinions = [
            make_opinion(agent_id="b1", recommendation=BUY, confidence=90),
            make_opinion(agent_id="b2", recommendation=BUY, confidence=80),
            make_opinion(agent_id="s1", recommendation=SELL, confidence=70),
            make_opinion(agent_id="s2", recommendation=SELL, confidence=60),
        ]
        bracket = _run_async(_engine(client, pool, fake_sleep).run(opinions, context))

        assert len(bracket.quarterfinals) == 2
        assert len(bracket.semifinals) == 1
        assert bracket.final is None
        qf_b1, qf_b2 = bracket.quarterfinals
        assert qf_b1.winning_opinion.agent_id == "b1"
        assert qf_b2.winning_opinion.agent_id == "b2"
        assert qf_b1.max_score > qf_b2.max_score
        assert bracket.semifinals[0].winning_opinion.agent_id == "b2"
        assert bracket.champion.agent_id == "b1"
        assert bracket.winning_arguments == qf_b1.winning_arguments

    def test_mock_client_runs_a_bracket(self, make_opinion, pool, context, fake_sleep):
        bracket = _run_async(_engine(MockLLMClient(), pool, fake_sleep).run(_eight(make_opinion), context))
        assert bracket.stage == BracketStage.RESOLVED
        assert bracket.champion is not None
        assert all(0 <= t.strength <= 100 for m in bracket.matches for t in m.turns)
