"""Tests for the parallel orchestrator: membership, batching, consensus."""

import asyncio

import pytest

from arena.orchestrator import ParallelOrchestrator, calculate_consensus, categorize
from models.config import OrchestratorConfig
from models.errors import AgentFailure, InvalidInput
from models.opinion import Recommendation


def _run_async(coro):
    return asyncio.run(coro)


class FakeRunner:
    """Stands in for AgentRunner: fails for ids in ``failing``."""

    def __init__(self, make_opinion, failing=(), crashing=()):
        self._make = make_opinion
        self.failing = set(failing)
        self.crashing = set(crashing)
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(self, agent_id, context):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        if agent_id in self.failing:
            raise AgentFailure(agent_id, "model returned garbage")
        if agent_id in self.crashing:
            raise RuntimeError("unexpected")
        return self._make(agent_id=agent_id)


AGENTS = ["warren", "cathie", "jim", "ray", "elon", "karen", "quant", "devil"]


class TestRunAll:
    @pytest.mark.parametrize("failing", [(), ("jim",), ("jim", "karen", "devil"), tuple(AGENTS)])
    def test_membership_is_exact_and_disjoint(self, make_opinion, context, fake_sleep, failing):
        orchestrator = ParallelOrchestrator(FakeRunner(make_opinion, failing), sleep=fake_sleep)
        result = _run_async(orchestrator.run_all(context, AGENTS))

        error_ids = {e.agent_id for e in result.errors}
        assert len(result.opinions) + len(result.errors) == len(AGENTS)
        assert set(result.opinions).isdisjoint(error_ids)
        assert set(result.opinions) | error_ids == set(AGENTS)
        assert error_ids == set(failing)

    def test_unexpected_exception_becomes_error(self, make_opinion, context, fake_sleep):
        orchestrator = ParallelOrchestrator(FakeRunner(make_opinion, crashing=["ray"]), sleep=fake_sleep)
        result = _run_async(orchestrator.run_all(context, AGENTS))
        assert [e.agent_id for e in result.errors] == ["ray"]
        assert "RuntimeError" in result.errors[0].reason

    def test_batches_bound_concurrency(self, make_opinion, context, fake_sleep, sleeps):
        runner = FakeRunner(make_opinion)
        config = OrchestratorConfig(batch_size=3, batch_delay_seconds=0.5)
        _run_async(ParallelOrchestrator(runner, config, sleep=fake_sleep).run_all(context, AGENTS))
        assert runner.max_in_flight <= 3
        # 8 agents in batches of 3 -> 3 batches -> 2 inter-batch delays
        assert sleeps == [0.5, 0.5]

    def test_empty_agent_list_rejected(self, make_opinion, context):
        orchestrator = ParallelOrchestrator(FakeRunner(make_opinion))
        with pytest.raises(InvalidInput):
            _run_async(orchestrator.run_all(context, []))

    def test_duplicate_agents_rejected(self, make_opinion, context):
        orchestrator = ParallelOrchestrator(FakeRunner(make_opinion))
        with pytest.raises(InvalidInput):
            _run_async(orchestrator.run_all(context, ["jim", "jim"]))

    def test_malformed_context_rejected(self, make_opinion):
        orchestrator = ParallelOrchestrator(FakeRunner(make_opinion))
        with pytest.raises(InvalidInput):
            _run_async(orchestrator.run_all({"symbol": "BTC"}, ["jim"]))

    def test_accepts_context_dict(self, make_opinion, context, fake_sleep):
        orchestrator = ParallelOrchestrator(FakeRunner(make_opinion), sleep=fake_sleep)
        result = _run_async(orchestrator.run_all(context.model_dump(), ["jim"]))
        assert list(result.opinions) == ["jim"]


class TestConsensus:
    def test_empty(self):
        summary = calculate_consensus([])
        assert summary.recommendation == Recommendation.HOLD
        assert summary.bulls == summary.bears == summary.neutral == 0

    def test_strong_buy_needs_supermajority_and_confidence(self, make_opinion):
        opinions = [make_opinion(agent_id=f"a{i}", confidence=80) for i in range(4)]
        assert calculate_consensus(opinions).recommendation == Recommendation.STRONG_BUY

    def test_simple_majority_is_buy(self, make_opinion):
        opinions = [
            make_opinion(agent_id="a", confidence=60),
            make_opinion(agent_id="b", confidence=60),
            make_opinion(agent_id="c", recommendation=Recommendation.SELL),
        ]
        summary = calculate_consensus(opinions)
        assert summary.recommendation == Recommendation.BUY
        assert (summary.bulls, summary.bears, summary.neutral) == (2, 1, 0)

    def test_split_is_hold(self, make_opinion):
        opinions = [
            make_opinion(agent_id="a"),
            make_opinion(agent_id="b", recommendation=Recommendation.SELL),
        ]
        assert calculate_consensus(opinions).recommendation == Recommendation.HOLD

    def test_categorize(self, make_opinion):
        opinions = [
            make_opinion(agent_id="a", recommendation=Recommendation.STRONG_BUY),
            make_opinion(agent_id="b", recommendation=Recommendation.HOLD),
            make_opinion(agent_id="c", recommendation=Recommendation.STRONG_SELL),
        ]
        bulls, bears, neutral = categorize(opinions)
        assert [o.agent_id for o in bulls] == ["a"]
        assert [o.agent_id for o in bears] == ["c"]
        assert [o.agent_id for o in neutral] == ["b"]
