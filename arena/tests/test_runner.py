"""Tests for the agent runner: retry, backoff, fallback and error typing."""

import asyncio
import json

import pytest

from api_client.llm.models import LLMResponse
from arena.model_pool import ModelPool
from arena.retry import RetryState
from arena.runner import AgentRunner
from models.config import RunnerConfig
from models.errors import AgentFailure, ConfigurationFailure, TransportFailure
from models.opinion import AgentOpinion, Methodology, Recommendation

VALID = json.dumps(
    {
        "recommendation": "buy",
        "confidence": 80,
        "priceTarget": {"bull": 130, "base": 110, "bear": 90},
        "positionSize": 7,
        "bullCase": ["Strong accumulation"],
        "bearCase": ["Crowded longs"],
        "catalysts": ["ETF flows"],
        "riskLevel": "medium",
        "summary": "Buy the dip.",
    }
)


def _run_async(coro):
    return asyncio.run(coro)


class ScriptedClient:
    """Returns scripted outcomes per model id; exceptions are raised."""

    def __init__(self, script: dict[str, list]) -> None:
        self.script = {k: list(v) for k, v in script.items()}
        self.calls: list[str] = []

    async def generate(self, request):
        self.calls.append(request.model)
        outcomes = self.script.get(request.model) or [TransportFailure("no script")]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return LLMResponse(text=outcome, model=request.model)


class SlowClient:
    async def generate(self, request):
        await asyncio.sleep(10)


@pytest.fixture
def pool(backends) -> ModelPool:
    pool = ModelPool(backends)
    pool.assign_for_cycle("c1", [])
    return pool


def _runner(client, pool, fake_sleep, **config):
    return AgentRunner(client, pool, RunnerConfig(**config), sleep=fake_sleep)


# =============================================================================
# RETRY STATE
# =============================================================================


class TestRetryState:
    def test_linear_backoff(self, backends):
        state = RetryState(backend=backends[0])
        state = state.record_failure("boom", 1.5)
        assert (state.attempt, state.backoff) == (1, 1.5)
        state = state.record_failure("boom", 1.5)
        assert (state.attempt, state.backoff) == (2, 3.0)
        assert state.last_error == "boom"

    def test_switch_backend_resets_attempts(self, backends):
        state = RetryState(backend=backends[0]).record_failure("x", 1.0).record_failure("y", 1.0)
        switched = state.switch_backend(backends[1])
        assert switched.backend == backends[1]
        assert switched.attempt == 0
        assert switched.fallbacks_used == 1
        assert switched.total_attempts == 2

    def test_exhausted(self, backends):
        state = RetryState(backend=backends[0])
        assert not state.exhausted(1)
        assert state.record_failure("x", 1.0).exhausted(1)


# =============================================================================
# RUNNER
# =============================================================================


class TestAgentRunner:
    def test_success_first_try(self, pool, context, fake_sleep, sleeps):
        client = ScriptedClient({"model-0": [VALID]})
        opinion = _run_async(_runner(client, pool, fake_sleep).run("warren", context))
        assert isinstance(opinion, AgentOpinion)
        assert opinion.agent_id == "warren"
        assert opinion.methodology == Methodology.VALUE
        assert opinion.recommendation == Recommendation.BUY
        assert opinion.model_id == "model-0"
        assert sleeps == []

    def test_retries_with_linear_backoff(self, pool, context, fake_sleep, sleeps):
        client = ScriptedClient({"model-0": [TransportFailure("503"), "not json", VALID]})
        opinion = _run_async(_runner(client, pool, fake_sleep, backoff_seconds=1.0).run("warren", context))
        assert opinion.confidence == 80
        assert client.calls == ["model-0"] * 3
        assert sleeps == [1.0, 2.0]

    def test_falls_back_after_exhausting_backend(self, pool, context, fake_sleep):
        client = ScriptedClient({"model-0": [TransportFailure("down")], "model-1": [VALID]})
        opinion = _run_async(_runner(client, pool, fake_sleep, max_retries=2).run("warren", context))
        assert opinion.model_id == "model-1"
        assert client.calls == ["model-0", "model-0", "model-1"]
        assert pool.failure_count("model-0") == 1

    def test_agent_failure_after_all_fallbacks(self, pool, context, fake_sleep):
        client = ScriptedClient({})
        runner = _runner(client, pool, fake_sleep, max_retries=1, max_fallbacks=2)
        with pytest.raises(AgentFailure) as info:
            _run_async(runner.run("warren", context))
        assert info.value.agent_id == "warren"
        # one attempt on the assigned backend plus one per fallback
        assert len(client.calls) == 3
        assert client.calls[:2] == ["model-0", "model-1"]

    def test_configuration_failure_is_not_retried(self, pool, context, fake_sleep, sleeps):
        client = ScriptedClient({"model-0": [ConfigurationFailure("bad key")]})
        with pytest.raises(AgentFailure) as info:
            _run_async(_runner(client, pool, fake_sleep).run("warren", context))
        assert isinstance(info.value.cause, ConfigurationFailure)
        assert client.calls == ["model-0"]
        assert sleeps == []

    def test_unknown_agent(self, pool, context, fake_sleep):
        with pytest.raises(AgentFailure):
            _run_async(_runner(ScriptedClient({}), pool, fake_sleep).run("nobody", context))

    def test_timeout_is_transport_failure(self, backends, context, fake_sleep):
        fast = [b.model_copy(update={"timeout_seconds": 0.01}) for b in backends]
        pool = ModelPool(fast)
        runner = _runner(SlowClient(), pool, fake_sleep, max_retries=1, max_fallbacks=0)
        with pytest.raises(AgentFailure) as info:
            _run_async(runner.run("warren", context))
        assert "timed out" in info.value.reason

    def test_request_carries_schema_and_metadata(self, pool, context, fake_sleep):
        seen = []

        class Recorder:
            async def generate(self, request):
                seen.append(request)
                return LLMResponse(text=VALID, model=request.model)

        _run_async(_runner(Recorder(), pool, fake_sleep).run("jim", context))
        request = seen[0]
        assert request.json_schema is not None
        assert request.metadata["purpose"] == "analysis"
        assert request.metadata["methodology"] == "technical"
        assert request.metadata["reference_price"] == 100.0
        assert request.messages[0].role == "system"
