"""Tests for the arbitrator: decoding, NONE handling and HOLD degradation."""

import asyncio
import json

import pytest

from api_client.llm.mock import MockLLMClient
from api_client.llm.models import LLMResponse
from arena.judge import Arbitrator, normalize_decision, safe_hold
from arena.model_pool import ModelPool
from arena.tournament import TournamentEngine
from models.config import JudgeConfig, TournamentConfig
from models.decision import NO_WINNER, FinalAction
from models.errors import ConfigurationFailure, TransportFailure
from models.opinion import Recommendation


def _run_async(coro):
    return asyncio.run(coro)


class ScriptedJudge:
    """Returns (or raises) scripted outcomes in order; the last one repeats."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        text = outcome if isinstance(outcome, str) else json.dumps(outcome)
        return LLMResponse(text=text, model=request.model)


@pytest.fixture
def pool(backends):
    return ModelPool(backends)


@pytest.fixture
def opinions(make_opinion):
    return {
        "jim": make_opinion(agent_id="jim", confidence=80),
        "karen": make_opinion(agent_id="karen", recommendation=Recommendation.SELL, confidence=65),
    }


def _judge(client, pool, fake_sleep, **config):
    return Arbitrator(client, pool, JudgeConfig(**config), sleep=fake_sleep)


def _decision(**overrides):
    data = {
        "winner": "jim",
        "reasoning": "Jim's breakout thesis had the best data.",
        "final_action": "BUY",
        "adjustments": {"leverage": 3, "allocation_percent": None, "sl_price": None, "tp_price": None},
        "warnings": ["Funding is elevated"],
        "final_recommendation": {"symbol": "BTC", "action": "BUY", "rationale": "Follow jim", "confidence": 75},
    }
    data.update(overrides)
    return data


class TestArbitrate:
    def test_valid_decision(self, pool, opinions, fake_sleep):
        client = ScriptedJudge(_decision())
        decision = _run_async(_judge(client, pool, fake_sleep).arbitrate(opinions, symbol="BTC"))
        assert decision.winner_agent_id == "jim"
        assert decision.final_action == FinalAction.BUY
        assert decision.winning_opinion == opinions["jim"]
        assert decision.adjustments.leverage == 3
        assert decision.final_recommendation.symbol == "BTC"
        assert decision.warnings == ["Funding is elevated"]

    def test_lowercase_actions_accepted(self, pool, opinions, fake_sleep):
        data = _decision(final_action="buy")
        data["final_recommendation"]["action"] = "buy"
        decision = _run_async(_judge(ScriptedJudge(data), pool, fake_sleep).arbitrate(opinions))
        assert decision.final_action == FinalAction.BUY

    def test_always_malformed_degrades_to_hold(self, pool, opinions, fake_sleep, sleeps):
        client = ScriptedJudge("I think jim is right, buy!")
        decision = _run_async(_judge(client, pool, fake_sleep, max_retries=3).arbitrate(opinions))
        assert decision.winner_agent_id == NO_WINNER
        assert decision.final_action == FinalAction.HOLD
        assert any(w.startswith("Judge analysis failed") for w in decision.warnings)
        assert len(client.requests) == 3
        assert sleeps == [1.0, 2.0]

    def test_transport_failure_then_success(self, pool, opinions, fake_sleep):
        client = ScriptedJudge(TransportFailure("502"), _decision())
        decision = _run_async(_judge(client, pool, fake_sleep).arbitrate(opinions))
        assert decision.winner_agent_id == "jim"
        assert len(client.requests) == 2

    def test_unknown_winner_is_retried(self, pool, opinions, fake_sleep):
        client = ScriptedJudge(_decision(winner="cathie"), _decision())
        decision = _run_async(_judge(client, pool, fake_sleep).arbitrate(opinions))
        assert decision.winner_agent_id == "jim"
        assert len(client.requests) == 2

    def test_configuration_failure_is_not_retried(self, pool, opinions, fake_sleep, sleeps):
        client = ScriptedJudge(ConfigurationFailure("bad api key"))
        decision = _run_async(_judge(client, pool, fake_sleep).arbitrate(opinions))
        assert decision.final_action == FinalAction.HOLD
        assert len(client.requests) == 1
        assert sleeps == []

    def test_no_opinions(self, pool, fake_sleep):
        client = ScriptedJudge(_decision())
        decision = _run_async(_judge(client, pool, fake_sleep).arbitrate({}))
        assert decision.final_action == FinalAction.HOLD
        assert decision.warnings == ["No analyst opinions to arbitrate"]
        assert client.requests == []

    def test_no_backend_available(self, backends, opinions, fake_sleep):
        pool = ModelPool(backends, max_failures=1)
        for backend in backends:
            pool.record_failure(backend.id)
        decision = _run_async(_judge(ScriptedJudge(_decision()), pool, fake_sleep).arbitrate(opinions))
        assert decision.winner_agent_id == NO_WINNER
        assert decision.final_action == FinalAction.HOLD

    def test_configured_model_and_request_metadata(self, pool, opinions, fake_sleep):
        client = ScriptedJudge(_decision())
        _run_async(_judge(client, pool, fake_sleep, model="judge-model").arbitrate(opinions, symbol="BTC"))
        request = client.requests[0]
        assert request.model == "judge-model"
        assert request.metadata["purpose"] == "judge"
        assert {o["agent_id"] for o in request.metadata["opinions"]} == {"jim", "karen"}
        assert request.json_schema["properties"]["winner"]["enum"] == ["jim", "karen", NO_WINNER]

    def test_accepts_sequence_of_opinions(self, pool, opinions, fake_sleep):
        decision = _run_async(
            _judge(ScriptedJudge(_decision()), pool, fake_sleep).arbitrate(list(opinions.values()))
        )
        assert decision.winner_agent_id == "jim"

    def test_mock_judge_follows_tournament_champion(self, pool, opinions, context, fake_sleep):
        client = MockLLMClient()
        tournament = TournamentEngine(client, pool, TournamentConfig(turn_delay_seconds=0), sleep=fake_sleep)
        bracket = _run_async(tournament.run(list(opinions.values()), context))
        decision = _run_async(_judge(client, pool, fake_sleep).arbitrate(opinions, bracket, context=context))
        assert decision.winner_agent_id == bracket.champion.agent_id
        expected = FinalAction.BUY if bracket.champion.is_bullish else FinalAction.SELL
        assert decision.final_action == expected


class TestNormalizeDecision:
    def test_none_winner_forces_hold(self, opinions):
        decision = normalize_decision(_decision(winner=NO_WINNER), opinions, "BTC")
        assert decision.final_action == FinalAction.HOLD
        assert decision.final_recommendation is None
        assert decision.winning_opinion is None
        assert any("forced to HOLD" in w for w in decision.warnings)

    def test_none_with_hold_has_no_extra_warning(self, opinions):
        data = _decision(winner=NO_WINNER, final_action="HOLD", final_recommendation=None, warnings=[])
        decision = normalize_decision(data, opinions, "BTC")
        assert decision.final_action == FinalAction.HOLD
        assert decision.warnings == []

    def test_none_with_emergency_close_is_kept(self, opinions):
        data = _decision(
            winner=NO_WINNER,
            final_action="CLOSE",
            final_recommendation={"symbol": "BTC", "action": "CLOSE"},
        )
        decision = normalize_decision(data, opinions, "BTC")
        assert decision.final_action == FinalAction.CLOSE
        assert decision.final_recommendation.action == FinalAction.CLOSE

    def test_emergency_without_recommendation_holds(self, opinions):
        data = _decision(winner=NO_WINNER, final_action="REDUCE", final_recommendation=None, warnings=[])
        decision = normalize_decision(data, opinions, "BTC")
        assert decision.final_action == FinalAction.HOLD
        assert len(decision.warnings) == 1

    def test_recommendation_symbol_defaults(self, opinions):
        data = _decision(final_recommendation={"symbol": "", "action": "BUY"})
        assert normalize_decision(data, opinions, "ETH").final_recommendation.symbol == "ETH"


class TestSafeHold:
    def test_shape(self):
        decision = safe_hold("why", "warning one")
        assert decision.winner_agent_id == NO_WINNER
        assert decision.final_action == FinalAction.HOLD
        assert decision.reasoning == "why"
        assert decision.warnings == ["warning one"]
