"""
Agent runner: one analyst, one cycle, one ``AgentOpinion``.

Retry flow per agent:
  attempt on assigned backend
    -> transport / validation failure: linear backoff, retry (max_retries)
    -> backend exhausted: ask the pool for a fallback, keep retrying
    -> no fallback left: AgentFailure
  ConfigurationFailure is never retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Mapping

from api_client.llm.client import LLMClient
from api_client.llm.models import ChatMessage, LLMRequest
from models.backend import ModelBackend
from models.config import RunnerConfig
from models.context import TradingContext
from models.errors import (
    AgentFailure,
    ConfigurationFailure,
    TransportFailure,
    UpstreamUnavailable,
    ValidationFailure,
)
from models.opinion import AgentOpinion

from .config import DEFAULT_ROSTER, AnalystProfile, get_profile
from .model_pool import ModelPool
from .parsing import DecodeError, decode_opinion
from .prompts import build_analyst_prompts
from .retry import RetryState
from .schemas import OPINION_SCHEMA

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


async def generate_with_timeout(client: LLMClient, request: LLMRequest):
    """Call the client, turning a timeout into a retryable ``TransportFailure``."""
    try:
        if request.timeout_seconds is None:
            return await client.generate(request)
        return await asyncio.wait_for(client.generate(request), timeout=request.timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise TransportFailure(
            f"{request.model} timed out after {request.timeout_seconds:.0f}s"
        ) from exc


class AgentRunner:
    """Invokes one analyst against the current context with retry and fallback."""

    def __init__(
        self,
        client: LLMClient,
        pool: ModelPool,
        config: RunnerConfig | None = None,
        roster: Mapping[str, AnalystProfile] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._pool = pool
        self._config = config or RunnerConfig()
        self._roster = dict(DEFAULT_ROSTER if roster is None else roster)
        self._sleep = sleep

    @property
    def roster(self) -> dict[str, AnalystProfile]:
        return self._roster

    async def run(self, agent_id: str, context: TradingContext) -> AgentOpinion:
        """Return a validated opinion or raise ``AgentFailure``."""
        try:
            profile = get_profile(agent_id, self._roster)
        except ConfigurationFailure as exc:
            raise AgentFailure(agent_id, str(exc), exc) from exc

        system, user = build_analyst_prompts(profile, context)
        state = RetryState(backend=self._pool.backend_for(agent_id))

        while True:
            try:
                return await self._attempt(profile, context, state.backend, system, user)
            except ConfigurationFailure as exc:
                logger.error("[%s] configuration error, not retrying: %s", agent_id, exc)
                raise AgentFailure(agent_id, str(exc), exc) from exc
            except (TransportFailure, ValidationFailure) as exc:
                state = state.record_failure(exc, self._config.backoff_seconds)
                logger.warning(
                    "[%s] attempt %d/%d on %s failed: %s",
                    agent_id,
                    state.attempt,
                    self._config.max_retries,
                    state.backend.id,
                    exc,
                )

            if state.exhausted(self._config.max_retries):
                state = self._next_backend(agent_id, state)
                continue

            await self._sleep(state.backoff)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _next_backend(self, agent_id: str, state: RetryState) -> RetryState:
        if state.fallbacks_used >= self._config.max_fallbacks:
            raise AgentFailure(
                agent_id,
                f"exhausted {state.total_attempts} attempt(s) across "
                f"{state.fallbacks_used + 1} backend(s); last error: {state.last_error}",
            )
        fallback = self._pool.fallback_for(state.backend.id)
        if fallback is None:
            raise AgentFailure(
                agent_id,
                f"no fallback backend after {state.backend.id} failed; last error: {state.last_error}",
                UpstreamUnavailable(state.last_error or "no backend available"),
            )
        logger.info("[%s] switching backend %s -> %s", agent_id, state.backend.id, fallback.id)
        return state.switch_backend(fallback)

    async def _attempt(
        self,
        profile: AnalystProfile,
        context: TradingContext,
        backend: ModelBackend,
        system: str,
        user: str,
    ) -> AgentOpinion:
        snapshot = context.snapshot
        request = LLMRequest(
            messages=[
                ChatMessage(role="system", content=system),
                ChatMessage(role="user", content=user),
            ],
            model=backend.id,
            temperature=backend.temperature,
            max_tokens=backend.max_tokens,
            timeout_seconds=backend.timeout_seconds,
            json_schema=OPINION_SCHEMA,
            schema_name="agent_opinion",
            metadata={
                "purpose": "analysis",
                "agent_id": profile.id,
                "methodology": profile.methodology.value,
                "reference_price": context.reference_price,
                "change_24h": snapshot.change_24h if snapshot is not None else None,
            },
        )
        response = await generate_with_timeout(self._client, request)
        if response.finish_reason != "stop":
            logger.warning(
                "[%s] %s finished with reason '%s'", profile.id, backend.id, response.finish_reason
            )

        result = decode_opinion(
            response.text,
            agent_id=profile.id,
            methodology=profile.methodology,
            reference_price=context.reference_price,
            model_id=backend.id,
        )
        if isinstance(result, DecodeError):
            raise ValidationFailure(result.reason)

        logger.info(
            "[%s] %s %.0f%% via %s",
            profile.id,
            result.recommendation.value,
            result.confidence,
            backend.label,
        )
        return result
