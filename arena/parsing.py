"""
Decode raw model text into a typed ``AgentOpinion``.

``decode_opinion`` never raises for bad model output: it returns either an
``AgentOpinion`` or a ``DecodeError`` describing what was wrong, so callers
branch on the type instead of poking at a half-parsed dict.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Union

from pydantic import ValidationError

from models.opinion import (
    MAX_CASE_POINTS,
    MAX_CATALYSTS,
    AgentOpinion,
    Methodology,
    Recommendation,
    RiskLevel,
)

from .schemas import OPINION_SCHEMA, schema_errors

DEFAULT_CONFIDENCE = 50.0
DEFAULT_POSITION_SIZE = 5.0

# Fallback multipliers applied to the reference price for invalid targets.
BULL_TARGET_FACTOR = 1.3
BASE_TARGET_FACTOR = 1.1
BEAR_TARGET_FACTOR = 0.8

_RECOMMENDATION_ALIASES: dict[str, Recommendation] = {
    "strong_buy": Recommendation.STRONG_BUY,
    "strongbuy": Recommendation.STRONG_BUY,
    "buy": Recommendation.BUY,
    "hold": Recommendation.HOLD,
    "neutral": Recommendation.HOLD,
    "sell": Recommendation.SELL,
    "strong_sell": Recommendation.STRONG_SELL,
    "strongsell": Recommendation.STRONG_SELL,
}

_RISK_ALIASES: dict[str, RiskLevel] = {
    "low": RiskLevel.LOW,
    "medium": RiskLevel.MEDIUM,
    "moderate": RiskLevel.MEDIUM,
    "high": RiskLevel.HIGH,
    "very_high": RiskLevel.VERY_HIGH,
    "veryhigh": RiskLevel.VERY_HIGH,
    "extreme": RiskLevel.VERY_HIGH,
}

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass(frozen=True)
class DecodeError:
    """Structured reason a response could not become an ``AgentOpinion``."""

    reason: str
    raw: str = ""

    def __str__(self) -> str:
        return self.reason


DecodeResult = Union[AgentOpinion, DecodeError]


# =============================================================================
# JSON EXTRACTION
# =============================================================================


def extract_json(text: str) -> Any:
    """Parse JSON from model text, handling markdown code blocks and prose.

    Raises ``ValueError`` when no JSON can be recovered.
    """
    match = _FENCE_RE.search(text)
    json_str = match.group(1) if match else text
    json_str = json_str.strip()
    try:
        return json.loads(json_str)
    except json.JSONDecodeError:
        pass

    start, end = json_str.find("{"), json_str.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object found in response")
    try:
        return json.loads(json_str[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc.msg}") from exc


# =============================================================================
# FIELD NORMALIZATION
# =============================================================================


def _enum_key(value: str) -> str:
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


def normalize_recommendation(value: Any) -> Recommendation | None:
    """Map 'STRONG BUY', 'Strong-Buy', 'strongbuy' ... to ``Recommendation``."""
    if not isinstance(value, str):
        return None
    return _RECOMMENDATION_ALIASES.get(_enum_key(value))


def normalize_risk_level(value: Any) -> RiskLevel | None:
    if not isinstance(value, str):
        return None
    return _RISK_ALIASES.get(_enum_key(value))


def _finite(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _clean_list(values: Any, limit: int) -> list[str]:
    if not isinstance(values, list):
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()][:limit]


def repair_price_target(raw: dict[str, Any], reference_price: float | None) -> dict[str, float] | str:
    """Return ordered ``{bull, base, bear}`` or a reason string on failure.

    Non-positive / non-finite targets are replaced from *reference_price*;
    the three values are then sorted so bear <= base <= bull.
    """
    factors = {"bull": BULL_TARGET_FACTOR, "base": BASE_TARGET_FACTOR, "bear": BEAR_TARGET_FACTOR}
    values: dict[str, float] = {}
    for key, factor in factors.items():
        value = _finite(raw.get(key))
        if value is None or value <= 0:
            if reference_price is None or not math.isfinite(reference_price) or reference_price <= 0:
                return f"priceTarget.{key} is invalid ({raw.get(key)!r}) and no reference price is known"
            value = reference_price * factor
        values[key] = value

    bear, base, bull = sorted(values.values())
    return {"bull": bull, "base": base, "bear": bear}


# =============================================================================
# DECODE
# =============================================================================


def decode_opinion(
    text: str,
    *,
    agent_id: str,
    methodology: Methodology,
    reference_price: float | None = None,
    model_id: str | None = None,
) -> DecodeResult:
    """Turn raw model text into an ``AgentOpinion`` or a ``DecodeError``."""
    try:
        data = extract_json(text)
    except ValueError as exc:
        return DecodeError(str(exc), raw=text)

    if not isinstance(data, dict):
        return DecodeError(f"expected a JSON object, got {type(data).__name__}", raw=text)

    problems = schema_errors(OPINION_SCHEMA, data)
    if problems:
        return DecodeError("; ".join(problems), raw=text)

    recommendation = normalize_recommendation(data["recommendation"])
    if recommendation is None:
        return DecodeError(f"unknown recommendation {data['recommendation']!r}", raw=text)

    risk_level = normalize_risk_level(data["riskLevel"])
    if risk_level is None:
        return DecodeError(f"unknown riskLevel {data['riskLevel']!r}", raw=text)

    price_target = repair_price_target(data["priceTarget"], reference_price)
    if isinstance(price_target, str):
        return DecodeError(price_target, raw=text)

    confidence = _finite(data.get("confidence"))
    position_size = _finite(data.get("positionSize"))
    summary = data["summary"].strip()
    if not summary:
        return DecodeError("summary is empty", raw=text)

    try:
        return AgentOpinion(
            agent_id=agent_id,
            methodology=methodology,
            recommendation=recommendation,
            confidence=clamp(DEFAULT_CONFIDENCE if confidence is None else confidence, 0, 100),
            price_target=price_target,
            position_size=clamp(DEFAULT_POSITION_SIZE if position_size is None else position_size, 1, 10),
            bull_case=_clean_list(data.get("bullCase"), MAX_CASE_POINTS),
            bear_case=_clean_list(data.get("bearCase"), MAX_CASE_POINTS),
            catalysts=_clean_list(data.get("catalysts"), MAX_CATALYSTS),
            risk_level=risk_level,
            summary=summary,
            model_id=model_id,
        )
    except ValidationError as exc:
        return DecodeError(f"opinion failed validation: {exc.error_count()} error(s): {exc}", raw=text)
