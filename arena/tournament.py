"""
Single-elimination debate tournament.

Bracket lifecycle:
  EMPTY -> QUARTERFINALS -> SEMIFINALS -> FINAL -> RESOLVED
with early exit to RESOLVED whenever too few opinions remain to pair.

Turns inside a match are strictly sequential (each prompt quotes the previous
turn); matches inside a round run concurrently and the next round is only
paired once the whole round has finished.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Mapping, Sequence

from api_client.llm.client import LLMClient
from api_client.llm.models import ChatMessage, LLMRequest
from models.config import TournamentConfig
from models.context import TradingContext
from models.debate import (
    BracketStage,
    DebateTurn,
    Match,
    MatchRound,
    Side,
    TournamentBracket,
)
from models.errors import ArenaError
from models.opinion import AgentOpinion, Recommendation

from .config import DEFAULT_ROSTER, AnalystProfile
from .model_pool import ModelPool
from .prompts import build_debate_turn_prompts
from .runner import generate_with_timeout
from .scoring import (
    FALLBACK_STRENGTH,
    argument_strength,
    decide_winner,
    extract_data_points,
    extract_winning_arguments,
    score_match,
)

logger = logging.getLogger(__name__)

Pairing = tuple[AgentOpinion, AgentOpinion]  # (bull, bear)

MAX_SEMIFINALS = 2


# =============================================================================
# PAIRING (pure functions)
# =============================================================================


def _by_confidence(opinions: Sequence[AgentOpinion]) -> list[AgentOpinion]:
    return sorted(opinions, key=lambda o: (-o.confidence, o.agent_id))


def build_sides(opinions: Sequence[AgentOpinion]) -> tuple[list[AgentOpinion], list[AgentOpinion]]:
    """Split into bull / bear sides; holds go one at a time to the smaller side.

    Ties in side size send the hold to the bull side.  Both sides come back
    sorted by descending confidence.
    """
    bulls = [o for o in opinions if o.recommendation.is_bullish]
    bears = [o for o in opinions if o.recommendation.is_bearish]
    for hold in _by_confidence([o for o in opinions if o.recommendation == Recommendation.HOLD]):
        if len(bulls) <= len(bears):
            bulls.append(hold)
        else:
            bears.append(hold)
    return _by_confidence(bulls), _by_confidence(bears)


def pair_quarterfinals(opinions: Sequence[AgentOpinion], max_matches: int = 4) -> list[Pairing]:
    bulls, bears = build_sides(opinions)
    count = min(max_matches, len(bulls), len(bears))
    return [(bulls[i], bears[i]) for i in range(count)]


def _orient(first: AgentOpinion, second: AgentOpinion) -> Pairing:
    """Put the more bullish recommendation on the bull side (first wins ties)."""
    if first.recommendation.score >= second.recommendation.score:
        return first, second
    return second, first


def pair_semifinals(winners: Sequence[AgentOpinion]) -> list[Pairing]:
    """Re-categorize quarterfinal winners; fall back to 1-vs-N by confidence."""
    if len(winners) < 2:
        return []
    bulls, bears = build_sides(winners)
    if bulls and bears:
        count = min(MAX_SEMIFINALS, len(bulls), len(bears))
        return [(bulls[i], bears[i]) for i in range(count)]

    ranked = _by_confidence(winners)
    if len(ranked) >= 4:
        return [_orient(ranked[0], ranked[3]), _orient(ranked[1], ranked[2])]
    return [_orient(ranked[0], ranked[-1])]


def pair_final(semifinals: Sequence[Match]) -> Pairing | None:
    if len(semifinals) < 2:
        return None
    return _orient(semifinals[0].winning_opinion, semifinals[1].winning_opinion)


def select_champion(bracket: TournamentBracket, opinions: Sequence[AgentOpinion]) -> tuple[AgentOpinion | None, Match | None]:
    """Champion and the match that decided it (None when no match was played)."""
    if bracket.final is not None:
        return bracket.final.winning_opinion, bracket.final
    # No final: the quarterfinal with the highest max score (first on ties) decides.
    if bracket.quarterfinals:
        best = bracket.quarterfinals[0]
        for match in bracket.quarterfinals[1:]:
            if match.max_score > best.max_score:
                best = match
        return best.winning_opinion, best
    if not opinions:
        return None, None
    return _by_confidence(opinions)[0], None


# =============================================================================
# ENGINE
# =============================================================================


class TournamentEngine:
    """Runs the bracket; debate turns are generated through the model pool."""

    def __init__(
        self,
        client: LLMClient,
        pool: ModelPool,
        config: TournamentConfig | None = None,
        roster: Mapping[str, AnalystProfile] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._pool = pool
        self._config = config or TournamentConfig()
        self._roster = dict(DEFAULT_ROSTER if roster is None else roster)
        self._sleep = sleep

    async def run(
        self, opinions: Sequence[AgentOpinion], context: TradingContext | None = None
    ) -> TournamentBracket:
        bracket = TournamentBracket()
        opinions = list(opinions)

        if len(opinions) < 2:
            champion, _ = select_champion(bracket, opinions)
            return bracket.model_copy(update={"stage": BracketStage.RESOLVED, "champion": champion})

        pairings = pair_quarterfinals(opinions, self._config.max_quarterfinals)
        if not pairings:
            logger.info("All %d opinions on one side; no debate needed", len(opinions))
            champion, _ = select_champion(bracket, opinions)
            return bracket.model_copy(update={"stage": BracketStage.RESOLVED, "champion": champion})

        # ---- Quarterfinals -----------------------------------------------
        bracket = bracket.model_copy(update={"stage": BracketStage.QUARTERFINALS})
        quarterfinals = await self._run_round(pairings, MatchRound.QUARTERFINAL, context)
        bracket = bracket.model_copy(update={"quarterfinals": quarterfinals})

        # ---- Semifinals --------------------------------------------------
        if len(quarterfinals) >= 2:
            bracket = bracket.model_copy(update={"stage": BracketStage.SEMIFINALS})
            semi_pairings = pair_semifinals([m.winning_opinion for m in quarterfinals])
            semifinals = await self._run_round(semi_pairings, MatchRound.SEMIFINAL, context)
            bracket = bracket.model_copy(update={"semifinals": semifinals})

            # ---- Final ---------------------------------------------------
            final_pairing = pair_final(semifinals)
            if final_pairing is not None:
                bracket = bracket.model_copy(update={"stage": BracketStage.FINAL})
                final = await self._run_match(
                    final_pairing,
                    MatchRound.FINAL,
                    "final-1",
                    self._config.turns_per_debate + self._config.final_extra_turns,
                    context,
                )
                bracket = bracket.model_copy(update={"final": final})

        champion, deciding = select_champion(bracket, opinions)
        winning_arguments = deciding.winning_arguments if deciding is not None else []
        logger.info(
            "Tournament resolved: champion %s (%d match(es))",
            champion.agent_id if champion else None,
            len(bracket.matches),
        )
        return bracket.model_copy(
            update={
                "stage": BracketStage.RESOLVED,
                "champion": champion,
                "winning_arguments": winning_arguments,
            }
        )

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    async def _run_round(
        self, pairings: Sequence[Pairing], round_: MatchRound, context: TradingContext | None
    ) -> list[Match]:
        return list(
            await asyncio.gather(
                *(
                    self._run_match(
                        pairing,
                        round_,
                        f"{round_.value}-{index + 1}",
                        self._config.turns_per_debate,
                        context,
                    )
                    for index, pairing in enumerate(pairings)
                )
            )
        )

    async def _run_match(
        self,
        pairing: Pairing,
        round_: MatchRound,
        match_id: str,
        num_turns: int,
        context: TradingContext | None,
    ) -> Match:
        bull, bear = pairing
        turns: list[DebateTurn] = []
        last_bull, last_bear = bull.summary, bear.summary

        for turn in range(1, num_turns + 1):
            bull_turn = await self._generate_turn(bull, "bull", last_bear, turn, context)
            turns.append(bull_turn)
            last_bull = bull_turn.text

            bear_turn = await self._generate_turn(bear, "bear", last_bull, turn, context)
            turns.append(bear_turn)
            last_bear = bear_turn.text

            if self._config.turn_delay_seconds > 0:
                await self._sleep(self._config.turn_delay_seconds)

        scores = score_match(turns, bull, bear)
        winner = decide_winner(scores, bull, bear)
        winning_opinion = bull if winner == "bull" else bear
        logger.info(
            "%s: %s (bull %.0f) vs %s (bear %.0f) -> %s",
            match_id,
            bull.agent_id,
            scores.bull_score,
            bear.agent_id,
            scores.bear_score,
            winning_opinion.agent_id,
        )
        return Match(
            match_id=match_id,
            round=round_,
            bull_opinion=bull,
            bear_opinion=bear,
            turns=turns,
            scores=scores,
            winner=winner,
            winning_arguments=extract_winning_arguments(turns, winner, winning_opinion),
        )

    async def _generate_turn(
        self,
        opinion: AgentOpinion,
        side: Side,
        previous_statement: str,
        turn: int,
        context: TradingContext | None,
    ) -> DebateTurn:
        profile = self._roster.get(opinion.agent_id) or AnalystProfile(
            id=opinion.agent_id,
            name=opinion.agent_id,
            title=f"{opinion.methodology.value.title()} Analyst",
            methodology=opinion.methodology,
            description="",
        )
        backend = self._pool.backend_for(opinion.agent_id)
        system, user = build_debate_turn_prompts(profile, opinion, side, previous_statement, context, turn)
        snapshot = context.snapshot if context is not None else None
        request = LLMRequest(
            messages=[
                ChatMessage(role="system", content=system),
                ChatMessage(role="user", content=user),
            ],
            model=backend.id,
            temperature=self._config.turn_temperature,
            max_tokens=self._config.turn_max_tokens,
            timeout_seconds=backend.timeout_seconds,
            metadata={
                "purpose": "debate",
                "agent_id": opinion.agent_id,
                "methodology": opinion.methodology.value,
                "side": side,
                "turn": turn,
                "reference_price": context.reference_price if context is not None else None,
                "change_24h": snapshot.change_24h if snapshot is not None else None,
            },
        )

        try:
            response = await generate_with_timeout(self._client, request)
            text = response.text.strip()
        except ArenaError as exc:
            logger.warning("[%s] debate turn %d failed, using thesis: %s", opinion.agent_id, turn, exc)
            text = ""

        if not text:
            return DebateTurn(
                speaker_agent_id=opinion.agent_id,
                side=side,
                text=_fallback_text(opinion, side),
                data_points_referenced=[],
                strength=FALLBACK_STRENGTH,
            )
        return DebateTurn(
            speaker_agent_id=opinion.agent_id,
            side=side,
            text=text,
            data_points_referenced=extract_data_points(text),
            strength=argument_strength(text, opinion.methodology),
        )


def _fallback_text(opinion: AgentOpinion, side: Side) -> str:
    methodology = opinion.methodology.value
    if side == "bull":
        point = opinion.bull_case[0] if opinion.bull_case else "The fundamentals support upside potential."
        return f"Based on my {methodology} analysis, I maintain my bullish stance. {point}"
    point = opinion.bear_case[0] if opinion.bear_case else "Risk factors warrant caution."
    return f"My {methodology} framework highlights concerns. {point}"
