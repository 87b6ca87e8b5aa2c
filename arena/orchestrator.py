"""
Parallel analysis orchestrator.

Fans the agent runner out over every requested analyst in fixed-size batches.
A failing analyst becomes an ``AgentError`` entry; it never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

from pydantic import ValidationError

from models.config import OrchestratorConfig
from models.context import TradingContext
from models.errors import AgentFailure, InvalidInput
from models.log import AgentError, AnalysisResult, ConsensusSummary
from models.opinion import AgentOpinion, Recommendation

from .runner import AgentRunner

logger = logging.getLogger(__name__)


class ParallelOrchestrator:
    """Runs all analysts concurrently with bounded batches."""

    def __init__(
        self,
        runner: AgentRunner,
        config: OrchestratorConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._runner = runner
        self._config = config or OrchestratorConfig()
        self._sleep = sleep

    async def run_all(self, context: Any, agent_ids: Sequence[str]) -> AnalysisResult:
        """Run every agent; each id ends up in exactly one of opinions / errors.

        Raises ``InvalidInput`` for an empty or duplicated agent list or a
        context that is not a valid ``TradingContext``.
        """
        context = self.validate_request(context, agent_ids)
        batch_size = self._config.batch_size
        batches = [list(agent_ids[i : i + batch_size]) for i in range(0, len(agent_ids), batch_size)]

        opinions: dict[str, AgentOpinion] = {}
        errors: list[AgentError] = []

        for index, batch in enumerate(batches):
            logger.info("Analysis batch %d/%d: %s", index + 1, len(batches), ", ".join(batch))
            results = await asyncio.gather(
                *(self._runner.run(agent_id, context) for agent_id in batch),
                return_exceptions=True,
            )
            for agent_id, result in zip(batch, results):
                if isinstance(result, AgentOpinion):
                    opinions[agent_id] = result
                elif isinstance(result, AgentFailure):
                    errors.append(AgentError(agent_id=agent_id, reason=result.reason))
                elif isinstance(result, Exception):
                    logger.error(
                        "[%s] unexpected error: %s", agent_id, result, exc_info=result
                    )
                    errors.append(
                        AgentError(agent_id=agent_id, reason=f"{type(result).__name__}: {result}")
                    )
                else:
                    # CancelledError and other BaseExceptions must not be swallowed.
                    raise result

            if index < len(batches) - 1 and self._config.batch_delay_seconds > 0:
                await self._sleep(self._config.batch_delay_seconds)

        consensus = calculate_consensus(list(opinions.values()))
        logger.info(
            "Analysis complete: %d opinion(s), %d error(s), consensus %s",
            len(opinions),
            len(errors),
            consensus.recommendation.value,
        )
        return AnalysisResult(opinions=opinions, errors=errors, consensus=consensus)

    @staticmethod
    def validate_request(context: Any, agent_ids: Sequence[str]) -> TradingContext:
        if not agent_ids:
            raise InvalidInput("agent_ids must not be empty")
        if len(set(agent_ids)) != len(agent_ids):
            raise InvalidInput(f"duplicate agent ids: {list(agent_ids)}")
        if isinstance(context, TradingContext):
            return context
        try:
            return TradingContext.model_validate(context)
        except ValidationError as exc:
            raise InvalidInput(f"malformed trading context: {exc}") from exc


def categorize(opinions: Sequence[AgentOpinion]) -> tuple[list[AgentOpinion], list[AgentOpinion], list[AgentOpinion]]:
    """Split opinions into (bulls, bears, neutral) preserving input order."""
    bulls = [o for o in opinions if o.is_bullish]
    bears = [o for o in opinions if o.is_bearish]
    neutral = [o for o in opinions if o.recommendation == Recommendation.HOLD]
    return bulls, bears, neutral


def calculate_consensus(opinions: Sequence[AgentOpinion]) -> ConsensusSummary:
    """Head-count consensus across analysts."""
    if not opinions:
        return ConsensusSummary()

    bulls, bears, neutral = categorize(opinions)
    total = len(opinions)
    avg_confidence = sum(o.confidence for o in opinions) / total

    if len(bulls) / total >= 0.75 and avg_confidence >= 70:
        recommendation = Recommendation.STRONG_BUY
    elif len(bears) / total >= 0.75 and avg_confidence >= 70:
        recommendation = Recommendation.STRONG_SELL
    elif len(bulls) > total / 2:
        recommendation = Recommendation.BUY
    elif len(bears) > total / 2:
        recommendation = Recommendation.SELL
    else:
        recommendation = Recommendation.HOLD

    return ConsensusSummary(
        bulls=len(bulls),
        bears=len(bears),
        neutral=len(neutral),
        average_confidence=round(avg_confidence, 2),
        recommendation=recommendation,
    )
