"""Deterministic mock inference client (no API keys, no network).

Responses are derived from ``LLMRequest.metadata`` only, so the same request
always yields the same text.  The pipeline tags every request with a
``purpose`` of ``analysis``, ``debate`` or ``judge``.
"""

from __future__ import annotations

import json
from typing import Any

from api_client.llm.models import LLMRequest, LLMResponse

# Positive = leans bullish in a rising market, negative = leans bearish.
_METHODOLOGY_BIAS: dict[str, int] = {
    "value": -1,
    "growth": 2,
    "technical": 1,
    "macro": -1,
    "sentiment": 2,
    "risk": -2,
    "quant": 0,
    "contrarian": -3,
}

_RISK_BY_METHODOLOGY: dict[str, str] = {
    "value": "low",
    "growth": "high",
    "technical": "medium",
    "macro": "medium",
    "sentiment": "very_high",
    "risk": "low",
    "quant": "medium",
    "contrarian": "high",
}


def _stable_hash(text: str) -> int:
    return sum((i + 1) * ord(c) for i, c in enumerate(text))


class MockLLMClient:
    """Async ``LLMClient`` returning canned, deterministic responses."""

    def __init__(self) -> None:
        self.requests: list[LLMRequest] = []

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        meta = request.metadata
        purpose = meta.get("purpose")
        if purpose == "analysis":
            text = json.dumps(_mock_opinion(meta))
        elif purpose == "debate":
            text = _mock_turn(meta)
        elif purpose == "judge":
            text = json.dumps(_mock_judge(meta))
        else:
            text = "{}"
        return LLMResponse(text=text, finish_reason="stop", model=request.model)


# =============================================================================
# MOCK RESPONSE GENERATORS
# =============================================================================


def _mock_opinion(meta: dict[str, Any]) -> dict[str, Any]:
    agent_id = str(meta.get("agent_id", "agent"))
    methodology = str(meta.get("methodology", "quant"))
    price = float(meta.get("reference_price") or 100.0)
    change = float(meta.get("change_24h") or 0.0)

    direction = 1 if change >= 0 else -1
    score = _METHODOLOGY_BIAS.get(methodology, 0) * direction + (1 if change > 2 else 0)
    if score >= 3:
        recommendation = "STRONG_BUY"
    elif score >= 1:
        recommendation = "BUY"
    elif score <= -3:
        recommendation = "STRONG_SELL"
    elif score <= -1:
        recommendation = "SELL"
    else:
        recommendation = "HOLD"

    confidence = 55 + _stable_hash(agent_id) % 36
    return {
        "recommendation": recommendation,
        "confidence": confidence,
        "priceTarget": {
            "bull": round(price * 1.25, 2),
            "base": round(price * (1.08 if score > 0 else 0.95), 2),
            "bear": round(price * 0.85, 2),
        },
        "positionSize": 3 + _stable_hash(agent_id) % 6,
        "bullCase": [
            f"{methodology.title()} signals improving with price {change:+.1f}% over 24h",
            "Funding remains neutral, leaving room for upside",
        ],
        "bearCase": [
            "Liquidity is thin above recent highs",
            "Macro headwinds could cap the move",
        ],
        "catalysts": ["ETF flow data this week", "FOMC minutes"],
        "riskLevel": _RISK_BY_METHODOLOGY.get(methodology, "medium"),
        "summary": (
            f"{agent_id} ({methodology}) rates the setup {recommendation.lower()} "
            f"with {confidence}% confidence."
        ),
    }


def _mock_turn(meta: dict[str, Any]) -> str:
    side = meta.get("side", "bull")
    methodology = str(meta.get("methodology", "quant"))
    turn = int(meta.get("turn", 1))
    price = float(meta.get("reference_price") or 100.0)
    change = float(meta.get("change_24h") or 0.0)
    rsi = 40 + _stable_hash(str(meta.get("agent_id", ""))) % 30
    if side == "bull":
        return (
            f"Round {turn}: my {methodology} read stays constructive because price is "
            f"{change:+.1f}% on the day and RSI sits at {rsi}, well below overbought. "
            f"Volume confirms the move and support at ${price * 0.95:,.0f} held twice. "
            f"However, the main risk is a failed breakout; the upcoming ETF flow data is the catalyst."
        )
    return (
        f"Round {turn}: from a {methodology} lens the upside is limited because funding "
        f"is elevated and resistance near ${price * 1.05:,.0f} has capped rallies. "
        f"Compared to last month, volume is 15% lower, therefore conviction is weak. "
        f"The downside risk is a flush toward ${price * 0.9:,.0f} if earnings-season risk appetite fades."
    )


def _mock_judge(meta: dict[str, Any]) -> dict[str, Any]:
    opinions: list[dict[str, Any]] = list(meta.get("opinions", []))
    symbol = meta.get("symbol", "")
    champion = meta.get("champion")

    chosen = next((o for o in opinions if o.get("agent_id") == champion), None)
    if chosen is None:
        directional = [o for o in opinions if o.get("recommendation") != "hold"]
        if directional:
            chosen = max(directional, key=lambda o: (o.get("confidence", 0), o.get("agent_id", "")))

    if chosen is None or chosen.get("recommendation") == "hold":
        return {
            "winner": "NONE",
            "reasoning": "No analyst presented a directional edge.",
            "final_action": "HOLD",
            "adjustments": None,
            "warnings": [],
            "final_recommendation": None,
        }

    action = "BUY" if chosen["recommendation"] in ("buy", "strong_buy") else "SELL"
    return {
        "winner": chosen["agent_id"],
        "reasoning": f"{chosen['agent_id']} made the strongest data-backed case.",
        "final_action": action,
        "adjustments": None,
        "warnings": [],
        "final_recommendation": {
            "symbol": symbol,
            "action": action,
            "rationale": f"Following {chosen['agent_id']}.",
            "confidence": chosen.get("confidence"),
        },
    }
