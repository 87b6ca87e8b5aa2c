"""
JSON schemas for structured model output.

The same schema is sent to the provider (schema-constrained generation) and
used to validate the response with jsonschema.  Schemas check presence and
types only; range clamping and enum normalization happen in ``parsing``.
"""

from __future__ import annotations

from typing import Any, Sequence

from jsonschema import Draft202012Validator

from models.decision import NO_WINNER, FinalAction

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_OPTIONAL_NUMBER = {"type": ["number", "null"]}

OPINION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["recommendation", "priceTarget", "riskLevel", "summary"],
    "properties": {
        "recommendation": {"type": "string"},
        "confidence": {"type": "number"},
        "priceTarget": {
            "type": "object",
            "required": ["bull", "base", "bear"],
            "properties": {
                "bull": {"type": "number"},
                "base": {"type": "number"},
                "bear": {"type": "number"},
            },
        },
        "positionSize": {"type": "number"},
        "bullCase": _STRING_LIST,
        "bearCase": _STRING_LIST,
        "catalysts": _STRING_LIST,
        "riskLevel": {"type": "string"},
        "summary": {"type": "string"},
    },
}


def judge_schema(agent_ids: Sequence[str]) -> dict[str, Any]:
    """Arbitration schema; ``winner`` is restricted to the given agents or NONE."""
    return {
        "type": "object",
        "required": ["winner", "final_action", "reasoning"],
        "properties": {
            "winner": {"type": "string", "enum": sorted(agent_ids) + [NO_WINNER]},
            "reasoning": {"type": "string"},
            "final_action": {"type": "string", "enum": [a.value for a in FinalAction]},
            "adjustments": {
                "type": ["object", "null"],
                "properties": {
                    "leverage": _OPTIONAL_NUMBER,
                    "allocation_percent": _OPTIONAL_NUMBER,
                    "sl_price": _OPTIONAL_NUMBER,
                    "tp_price": _OPTIONAL_NUMBER,
                },
            },
            "warnings": _STRING_LIST,
            "final_recommendation": {
                "type": ["object", "null"],
                "required": ["symbol", "action"],
                "properties": {
                    "symbol": {"type": "string"},
                    "action": {"type": "string", "enum": [a.value for a in FinalAction]},
                    "rationale": {"type": "string"},
                    "confidence": _OPTIONAL_NUMBER,
                },
            },
        },
    }


def schema_errors(schema: dict[str, Any], instance: Any) -> list[str]:
    """Return human-readable validation errors (empty list when valid)."""
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(instance), key=lambda e: [str(p) for p in e.path])
    messages: list[str] = []
    for err in errors:
        path_str = "/".join(map(str, err.path)) if err.path else "<root>"
        messages.append(f"Path {path_str}: {err.message}")
    return messages
