"""
Prompt builders for analysts, debate turns and the judge.

Prompts are loaded from .txt template files in this package directory and
rendered via Jinja2.  Rendering is deterministic: the same profile and
context always produce the same prompt text.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from models.context import TradingContext
from models.debate import Side, TournamentBracket
from models.opinion import AgentOpinion

from ..config import AnalystProfile

# ---------------------------------------------------------------------------
# Jinja2 environment: templates live next to this __init__.py
# ---------------------------------------------------------------------------

_TEMPLATE_DIR = Path(__file__).resolve().parent
_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)


def _load(name: str) -> str:
    """Return the raw text of a template file (no rendering)."""
    return (_TEMPLATE_DIR / name).read_text()


JSON_OUTPUT_INSTRUCTIONS: str = _load("json_output_instructions.txt")
JUDGE_SYSTEM_PROMPT: str = _load("judge_system.txt")


# =============================================================================
# CONTEXT BUILDER
# =============================================================================


def build_market_context(context: TradingContext) -> str:
    """Render the shared trading context as a markdown block."""
    lines = [
        "## Market Context",
        f"- Timestamp: {context.timestamp}",
        f"- Symbol under decision: {context.symbol}",
    ]
    for symbol in sorted(context.market):
        snap = context.market[symbol]
        parts = [f"price ${snap.price:,.4f}"]
        if snap.change_24h is not None:
            parts.append(f"24h change {snap.change_24h:+.2f}%")
        if snap.high_24h is not None and snap.low_24h is not None:
            parts.append(f"24h range ${snap.low_24h:,.4f}-${snap.high_24h:,.4f}")
        if snap.volume_24h is not None:
            parts.append(f"24h volume ${snap.volume_24h:,.0f}")
        if snap.funding_rate is not None:
            parts.append(f"funding {snap.funding_rate:+.4%}")
        lines.append(f"- {symbol}: " + ", ".join(parts))

    account = context.account
    balance = f"${account.balance:,.2f}" if account.balance is not None else "unknown"
    lines.append(f"- Account balance: {balance}")
    if account.positions:
        for pos in account.positions:
            lines.append(
                f"- Open position: {pos.symbol} {pos.side} size {pos.size} at {pos.leverage:g}x"
            )
    else:
        lines.append("- Open positions: none")

    if context.notes:
        lines.append(f"\n## Notes\n{context.notes}")
    return "\n".join(lines)


# =============================================================================
# ANALYST PROMPTS
# =============================================================================


def build_analyst_prompts(profile: AnalystProfile, context: TradingContext) -> tuple[str, str]:
    """System and user prompt for one analyst's opinion."""
    system = _env.get_template("analyst_system.txt").render(profile=profile.to_dict())
    user = _env.get_template("analyst_user.txt").render(
        symbol=context.symbol,
        market_context=build_market_context(context),
        json_output_instructions=JSON_OUTPUT_INSTRUCTIONS,
    )
    return system, user


# =============================================================================
# DEBATE PROMPTS
# =============================================================================


def build_debate_turn_prompts(
    profile: AnalystProfile,
    opinion: AgentOpinion,
    side: Side,
    previous_statement: str,
    context: TradingContext | None,
    turn: int,
) -> tuple[str, str]:
    """System and user prompt for one debate turn."""
    system = _env.get_template("debate_system.txt").render(
        profile=profile.to_dict(),
        side=side,
        opinion=opinion.model_dump(mode="json"),
        market_context=build_market_context(context) if context is not None else "",
    )
    user = _env.get_template("debate_turn.txt").render(
        side=side,
        opponent="bear" if side == "bull" else "bull",
        previous_statement=previous_statement,
        turn=turn,
    )
    return system, user


# =============================================================================
# JUDGE PROMPTS
# =============================================================================


def build_judge_prompt(
    opinions: Sequence[AgentOpinion],
    bracket: TournamentBracket | None,
    weights: Mapping[str, float] | None,
    symbol: str,
    context: TradingContext | None = None,
) -> str:
    """User prompt for arbitration over every opinion plus the bracket outcome."""
    matches = []
    if bracket is not None:
        for match in bracket.matches:
            matches.append(
                {
                    "round": match.round.value,
                    "bull": match.bull_opinion.agent_id,
                    "bear": match.bear_opinion.agent_id,
                    "bull_score": match.scores.bull_score,
                    "bear_score": match.scores.bear_score,
                    "winner": match.winning_opinion.agent_id,
                }
            )
    return _env.get_template("judge_user.txt").render(
        symbol=symbol,
        market_context=build_market_context(context) if context is not None else "",
        opinions=[o.model_dump(mode="json") for o in opinions],
        matches=matches,
        champion=bracket.champion.agent_id if bracket is not None and bracket.champion else None,
        winning_arguments=bracket.winning_arguments if bracket is not None else [],
        weights=dict(sorted((weights or {}).items())),
    )
