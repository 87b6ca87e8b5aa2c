"""
Decision pipeline: one call to ``run_cycle`` takes a trading context all the
way to an (optionally placed) order.

Usage:
    from arena import build_pipeline
    from models.config import ArenaConfig

    pipeline = build_pipeline(ArenaConfig.from_yaml("config/example.yaml"))
    result = asyncio.run(pipeline.run_cycle(context))

Stage failures never abort a cycle: they are logged, recorded as warnings and
degrade to "no bracket", a HOLD decision or "no order".
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Mapping, Sequence

from api_client.llm.client import LLMClient
from api_client.llm.factory import get_client
from models.config import ArenaConfig
from models.context import (
    CircuitLevel,
    CircuitStatus,
    SafetyCaps,
    TradingContext,
)
from models.decision import (
    ArbitratedDecision,
    FinalAction,
    FinalRecommendation,
    cap_warnings,
)
from models.errors import ConfigurationFailure, RiskError
from models.log import AnalysisResult, CycleResult

from .collaborators import AuditSink, ExchangeClient, SafetyCapSource
from .config import DEFAULT_ROSTER, AnalystProfile
from .graph import CycleState, compile_cycle_graph
from .judge import Arbitrator, safe_hold
from .model_pool import ModelPool
from .orchestrator import ParallelOrchestrator
from .risk import RiskNormalizer
from .runner import AgentRunner
from .tournament import TournamentEngine

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DecisionPipeline:
    """Wires analysts, tournament, judge, safety gate and risk into one cycle."""

    def __init__(
        self,
        config: ArenaConfig,
        *,
        pool: ModelPool,
        orchestrator: ParallelOrchestrator,
        tournament: TournamentEngine,
        judge: Arbitrator,
        risk: RiskNormalizer,
        exchange: ExchangeClient,
        safety: SafetyCapSource | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self.config = config
        self.pool = pool
        self._orchestrator = orchestrator
        self._tournament = tournament
        self._judge = judge
        self._risk = risk
        self._exchange = exchange
        self._safety = safety
        self._audit = audit
        self._in_flight = 0
        self._graph = compile_cycle_graph(self)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def operations_in_flight(self) -> int:
        return self._in_flight

    def reset(self, force: bool = False) -> bool:
        """Clear model failure counters.  Refused while a cycle is running."""
        if self._in_flight and not force:
            logger.warning("Reset refused: %d operation(s) in progress", self._in_flight)
            return False
        if self._in_flight:
            logger.warning("Forcing reset with %d operation(s) in progress", self._in_flight)
        self.pool.reset_failures()
        logger.info("Pipeline reset: model failure counters cleared")
        return True

    async def run_cycle(
        self,
        context: TradingContext | Mapping[str, Any],
        agent_ids: Sequence[str] | None = None,
        weights: Mapping[str, float] | None = None,
    ) -> CycleResult:
        """Run one full decision cycle.

        Raises ``InvalidInput`` for a malformed context or agent list; every
        other failure is folded into the result's warnings.
        """
        agent_ids = list(agent_ids if agent_ids is not None else self.config.agents)
        context = ParallelOrchestrator.validate_request(context, agent_ids)
        if context.cycle_id is None:
            context = context.model_copy(update={"cycle_id": uuid.uuid4().hex[:12]})
        weights = dict(weights if weights is not None else self.config.performance_weights)

        self._in_flight += 1
        started = time.monotonic()
        try:
            self.pool.assign_for_cycle(context.cycle_id, agent_ids)
            initial_state: CycleState = {
                "context": context,
                "agent_ids": agent_ids,
                "weights": weights,
                "analysis": AnalysisResult(),
                "bracket": None,
                "decision": safe_hold("Cycle did not reach arbitration."),
                "safety": SafetyCaps(),
                "order": None,
                "receipt": None,
                "rationale": "",
                "warnings": [],
            }
            state = await self._graph.ainvoke(initial_state)
        finally:
            self._in_flight -= 1

        decision: ArbitratedDecision = state["decision"]
        warnings = cap_warnings(_dedupe(list(decision.warnings) + list(state.get("warnings", []))))
        result = CycleResult(
            cycle_id=context.cycle_id,
            symbol=context.symbol,
            analysis=state["analysis"],
            bracket=state.get("bracket"),
            decision=decision,
            safety=state.get("safety"),
            order=state.get("order"),
            receipt=state.get("receipt"),
            warnings=warnings,
            rationale=state.get("rationale") or decision.reasoning,
            elapsed_seconds=round(time.monotonic() - started, 3),
        )
        logger.info(
            "Cycle %s: %s %s -> %s (%d warning(s))",
            result.cycle_id,
            decision.final_action.value,
            context.symbol,
            "order " + result.order.client_order_id if result.order else "no order",
            len(warnings),
        )
        return result

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    async def analyze_node(self, state: CycleState) -> dict:
        context: TradingContext = state["context"]
        try:
            analysis = await self._orchestrator.run_all(context, state["agent_ids"])
        except Exception as exc:
            logger.exception("Analysis stage failed")
            return {"analysis": AnalysisResult(), "warnings": [f"Analysis stage failed: {exc}"]}

        warnings = [f"Analyst {e.agent_id} failed: {e.reason}" for e in analysis.errors]
        self._log_audit(
            "analysis",
            "pool",
            {"symbol": context.symbol, "agents": state["agent_ids"]},
            analysis.model_dump(mode="json"),
            f"{len(analysis.opinions)} opinion(s), consensus {analysis.consensus.recommendation.value}",
        )
        return {"analysis": analysis, "warnings": warnings}

    async def tournament_node(self, state: CycleState) -> dict:
        analysis: AnalysisResult = state["analysis"]
        try:
            bracket = await self._tournament.run(list(analysis.opinions.values()), state["context"])
        except Exception as exc:
            logger.exception("Tournament stage failed")
            return {"bracket": None, "warnings": [f"Tournament stage failed: {exc}"]}

        champion = bracket.champion.agent_id if bracket.champion else None
        self._log_audit(
            "tournament",
            "pool",
            sorted(analysis.opinions),
            bracket.model_dump(mode="json"),
            f"champion {champion}",
        )
        return {"bracket": bracket}

    async def arbitrate_node(self, state: CycleState) -> dict:
        context: TradingContext = state["context"]
        analysis: AnalysisResult = state["analysis"]
        try:
            decision = await self._judge.arbitrate(
                analysis.opinions,
                state.get("bracket"),
                state.get("weights"),
                context.symbol,
                context,
            )
        except Exception as exc:
            logger.exception("Arbitration stage failed")
            decision = safe_hold(f"Arbitration stage failed: {exc}", f"Judge analysis failed: {exc}")

        self._log_audit(
            "judge",
            self.config.judge.model or "pool",
            {"opinions": sorted(analysis.opinions), "weights": state.get("weights")},
            decision.model_dump(mode="json", exclude={"winning_opinion"}),
            decision.reasoning,
        )
        return {"decision": decision}

    async def safety_node(self, state: CycleState) -> dict:
        context: TradingContext = state["context"]
        decision: ArbitratedDecision = state["decision"]
        status = self._read_circuit_breaker()
        caps = SafetyCaps(
            level=status.level,
            max_leverage=self._level_cap(status.level),
            reason=status.reason,
        )
        warnings: list[str] = []
        if caps.level != CircuitLevel.NONE:
            warnings.append(f"Circuit breaker {caps.level.value}: {caps.reason or 'no reason given'}")

        if caps.close_only and decision.final_action in (FinalAction.BUY, FinalAction.SELL):
            position = context.account.position_for(context.symbol)
            if position is not None:
                message = f"Circuit breaker RED: {decision.final_action.value} converted to CLOSE"
                decision = decision.model_copy(
                    update={
                        "final_action": FinalAction.CLOSE,
                        "final_recommendation": FinalRecommendation(
                            symbol=context.symbol,
                            action=FinalAction.CLOSE,
                            rationale=caps.reason,
                        ),
                    }
                )
            else:
                message = f"Circuit breaker RED: {decision.final_action.value} converted to HOLD"
                decision = decision.model_copy(
                    update={"final_action": FinalAction.HOLD, "final_recommendation": None}
                )
            logger.warning("%s", message)
            decision = decision.with_warnings(message)

        return {"decision": decision, "safety": caps, "warnings": warnings}

    async def synthesize_node(self, state: CycleState) -> dict:
        context: TradingContext = state["context"]
        decision: ArbitratedDecision = state["decision"]
        try:
            result = self._risk.build(
                decision,
                context.account,
                context.snapshot,
                state.get("safety"),
                symbol=context.symbol,
            )
        except (RiskError, ConfigurationFailure) as exc:
            logger.warning("Order rejected: %s", exc)
            return {"order": None, "rationale": f"Order rejected: {exc}", "warnings": [f"Order rejected: {exc}"]}
        except Exception as exc:
            logger.exception("Order synthesis failed")
            return {"order": None, "rationale": f"Order synthesis failed: {exc}", "warnings": [f"Order synthesis failed: {exc}"]}

        return {"order": result.order, "rationale": result.rationale, "warnings": result.warnings}

    async def execute_node(self, state: CycleState) -> dict:
        order = state.get("order")
        if order is None:
            return {}
        if self.config.dry_run:
            logger.info("Dry run: not placing %s", order.client_order_id)
            self._log_audit("order", "exchange", order.model_dump(mode="json"), None, "dry run")
            return {}

        try:
            receipt = await self._exchange.place_order(order)
        except Exception as exc:
            logger.error("Order %s failed: %s", order.client_order_id, exc)
            self._log_audit("order", "exchange", order.model_dump(mode="json"), None, f"failed: {exc}")
            return {"warnings": [f"Order placement failed: {exc}"]}

        warnings = []
        if receipt.status == "rejected":
            warnings.append(f"Order {order.client_order_id} rejected: {receipt.message}")
        self._log_audit(
            "order",
            "exchange",
            order.model_dump(mode="json"),
            receipt.model_dump(mode="json"),
            receipt.status,
        )
        return {"receipt": receipt, "warnings": warnings}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_circuit_breaker(self) -> CircuitStatus:
        if self._safety is None:
            return CircuitStatus()
        try:
            return self._safety.check_status()
        except Exception as exc:
            logger.warning("Circuit breaker unavailable, assuming YELLOW: %s", exc)
            return CircuitStatus(level=CircuitLevel.YELLOW, reason=f"circuit breaker unavailable: {exc}")

    def _level_cap(self, level: CircuitLevel) -> float | None:
        if self._safety is not None:
            try:
                return self._safety.max_leverage(level)
            except Exception as exc:
                logger.warning("Circuit breaker cap lookup failed: %s", exc)
        return self.config.safety.level_leverage_caps.get(level.value)

    def _log_audit(self, stage: str, model: str, input: Any, output: Any, explanation: str = "") -> None:
        if self._audit is None:
            return
        try:
            self._audit.log(stage, model, input, output, explanation)
        except Exception as exc:
            logger.warning("Audit sink failed for stage '%s': %s", stage, exc)


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


# =============================================================================
# FACTORY
# =============================================================================


def build_pipeline(
    config: ArenaConfig,
    *,
    client: LLMClient | None = None,
    exchange: ExchangeClient | None = None,
    safety: SafetyCapSource | None = None,
    audit: AuditSink | None = None,
    roster: Mapping[str, AnalystProfile] | None = None,
    pool: ModelPool | None = None,
    sleep: Sleep = asyncio.sleep,
) -> DecisionPipeline:
    """Assemble a ``DecisionPipeline`` from config plus optional collaborators.

    Without an explicit exchange a ``PaperExchange`` is used; without a client
    one is built from ``config.llm`` (API keys come from the environment).
    """
    if client is None:
        client = get_client(
            config.llm.provider,
            base_url=config.llm.base_url,
            api_key_env=config.llm.api_key_env,
        )
    if exchange is None:
        from simulation.exchange import PaperExchange

        exchange = PaperExchange(config.exchange)

    roster = dict(DEFAULT_ROSTER if roster is None else roster)
    unknown = [a for a in config.agents if a not in roster]
    if unknown:
        raise ConfigurationFailure(f"Unknown analyst id(s) in config: {unknown}")

    pool = pool or ModelPool.from_config(config.model_pool)
    runner = AgentRunner(client, pool, config.runner, roster, sleep=sleep)
    return DecisionPipeline(
        config,
        pool=pool,
        orchestrator=ParallelOrchestrator(runner, config.orchestrator, sleep=sleep),
        tournament=TournamentEngine(client, pool, config.tournament, roster, sleep=sleep),
        judge=Arbitrator(client, pool, config.judge, sleep=sleep),
        risk=RiskNormalizer(config.risk, exchange),
        exchange=exchange,
        safety=safety,
        audit=audit,
    )


