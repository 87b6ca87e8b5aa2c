"""
Arbitration: every opinion plus the bracket outcome -> one ArbitratedDecision.

``Arbitrator.arbitrate`` never raises.  Exhausted retries, missing backends
and configuration errors all degrade to a HOLD with ``winner=NONE`` and a
warning explaining why.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from api_client.llm.client import LLMClient
from api_client.llm.models import ChatMessage, LLMRequest
from models.config import JudgeConfig
from models.context import TradingContext
from models.debate import TournamentBracket
from models.decision import (
    NO_WINNER,
    Adjustments,
    ArbitratedDecision,
    FinalAction,
    FinalRecommendation,
)
from models.errors import (
    ArenaError,
    ConfigurationFailure,
    TransportFailure,
    ValidationFailure,
)
from models.opinion import AgentOpinion

from .model_pool import ModelPool
from .parsing import extract_json
from .prompts import JUDGE_SYSTEM_PROMPT, build_judge_prompt
from .runner import generate_with_timeout
from .schemas import judge_schema, schema_errors

logger = logging.getLogger(__name__)

JUDGE_FAILED_WARNING = "Judge analysis failed"


def safe_hold(reason: str, *warnings: str) -> ArbitratedDecision:
    """Conservative no-trade decision."""
    return ArbitratedDecision(
        winner_agent_id=NO_WINNER,
        final_action=FinalAction.HOLD,
        reasoning=reason,
        warnings=list(warnings),
    )


class Arbitrator:
    """Schema-constrained judge with retries and HOLD degradation."""

    def __init__(
        self,
        client: LLMClient,
        pool: ModelPool,
        config: JudgeConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._pool = pool
        self._config = config or JudgeConfig()
        self._sleep = sleep

    async def arbitrate(
        self,
        opinions: Mapping[str, AgentOpinion] | Sequence[AgentOpinion],
        tournament: TournamentBracket | None = None,
        weights: Mapping[str, float] | None = None,
        symbol: str | None = None,
        context: TradingContext | None = None,
    ) -> ArbitratedDecision:
        by_id = dict(opinions) if isinstance(opinions, Mapping) else {o.agent_id: o for o in opinions}
        if not by_id:
            return safe_hold("No analyst opinions available.", "No analyst opinions to arbitrate")

        symbol = symbol or (context.symbol if context is not None else "")
        try:
            request = self._build_request(by_id, tournament, weights, symbol, context)
        except ArenaError as exc:
            logger.error("Judge unavailable: %s", exc)
            return safe_hold(str(exc), f"{JUDGE_FAILED_WARNING}: {exc}")

        last_error = "no attempts made"
        for attempt in range(1, self._config.max_retries + 1):
            try:
                response = await generate_with_timeout(self._client, request)
                if response.finish_reason != "stop":
                    logger.warning("Judge finished with reason '%s'", response.finish_reason)
                decision = self._decode(response.text, by_id, symbol)
                logger.info(
                    "Judge decision: winner=%s action=%s",
                    decision.winner_agent_id,
                    decision.final_action.value,
                )
                return decision
            except ConfigurationFailure as exc:
                last_error = str(exc)
                logger.error("Judge configuration error, not retrying: %s", exc)
                break
            except (TransportFailure, ValidationFailure) as exc:
                last_error = str(exc)
                logger.warning(
                    "Judge attempt %d/%d failed: %s", attempt, self._config.max_retries, exc
                )
                if attempt < self._config.max_retries:
                    await self._sleep(self._config.backoff_seconds * attempt)

        return safe_hold(
            f"Arbitration failed: {last_error}",
            f"{JUDGE_FAILED_WARNING}: {last_error}",
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_request(
        self,
        opinions: dict[str, AgentOpinion],
        tournament: TournamentBracket | None,
        weights: Mapping[str, float] | None,
        symbol: str,
        context: TradingContext | None,
    ) -> LLMRequest:
        model = self._config.model or self._pool.require_backend().id
        prompt = build_judge_prompt(list(opinions.values()), tournament, weights, symbol, context)
        champion = tournament.champion.agent_id if tournament is not None and tournament.champion else None
        return LLMRequest(
            messages=[
                ChatMessage(role="system", content=JUDGE_SYSTEM_PROMPT),
                ChatMessage(role="user", content=prompt),
            ],
            model=model,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            timeout_seconds=self._config.timeout_seconds,
            json_schema=judge_schema(list(opinions)),
            schema_name="arbitrated_decision",
            metadata={
                "purpose": "judge",
                "symbol": symbol,
                "champion": champion,
                "opinions": [
                    {
                        "agent_id": o.agent_id,
                        "recommendation": o.recommendation.value,
                        "confidence": o.confidence,
                    }
                    for o in opinions.values()
                ],
            },
        )

    def _decode(self, text: str, opinions: dict[str, AgentOpinion], symbol: str) -> ArbitratedDecision:
        try:
            data = extract_json(text)
        except ValueError as exc:
            raise ValidationFailure(f"judge returned unparseable output: {exc}") from exc
        if not isinstance(data, dict):
            raise ValidationFailure("judge output is not a JSON object")

        data = _uppercase_actions(data)
        problems = schema_errors(judge_schema(list(opinions)), data)
        if problems:
            raise ValidationFailure("; ".join(problems))

        return normalize_decision(data, opinions, symbol)


def _uppercase_actions(data: dict[str, Any]) -> dict[str, Any]:
    data = dict(data)
    if isinstance(data.get("final_action"), str):
        data["final_action"] = data["final_action"].strip().upper()
    if isinstance(data.get("winner"), str) and data["winner"].strip().upper() == NO_WINNER:
        data["winner"] = NO_WINNER
    rec = data.get("final_recommendation")
    if isinstance(rec, dict) and isinstance(rec.get("action"), str):
        data["final_recommendation"] = {**rec, "action": rec["action"].strip().upper()}
    return data


def normalize_decision(
    data: dict[str, Any], opinions: Mapping[str, AgentOpinion], symbol: str
) -> ArbitratedDecision:
    """Apply the no-winner rules to schema-valid judge output."""
    winner = data["winner"]
    action = FinalAction(data["final_action"])
    warnings = [w for w in data.get("warnings") or [] if isinstance(w, str)]

    raw_rec = data.get("final_recommendation")
    recommendation = None
    if raw_rec:
        recommendation = FinalRecommendation(
            symbol=raw_rec.get("symbol") or symbol,
            action=FinalAction(raw_rec["action"]),
            rationale=raw_rec.get("rationale") or "",
            confidence=raw_rec.get("confidence"),
        )

    raw_adj = data.get("adjustments")
    adjustments = Adjustments(**{k: v for k, v in raw_adj.items() if k in Adjustments.model_fields}) if raw_adj else None

    if winner == NO_WINNER:
        if not action.is_emergency:
            if action != FinalAction.HOLD or recommendation is not None:
                warnings.append(f"No winner selected; {action.value} forced to HOLD")
            action = FinalAction.HOLD
            recommendation = None
        elif recommendation is None:
            warnings.append(f"Emergency {action.value} without a recommendation; holding instead")
            action = FinalAction.HOLD

    return ArbitratedDecision(
        winner_agent_id=winner,
        final_action=action,
        reasoning=data.get("reasoning") or "",
        adjustments=adjustments,
        warnings=warnings,
        final_recommendation=recommendation,
        winning_opinion=opinions.get(winner),
    )
