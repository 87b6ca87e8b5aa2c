"""Pipeline configuration models, loaded from YAML.

These live in ``models/`` because they are shared data contracts used by the
model pool, the decision pipeline, the simulation collaborators and the CLI.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from models.backend import ModelBackend
from models.opinion import Methodology, RiskLevel


def _default_backends() -> list[ModelBackend]:
    return [
        ModelBackend(id="deepseek/deepseek-chat", name="DeepSeek V3", priority=0, timeout_seconds=60),
        ModelBackend(id="x-ai/grok-4.1-fast", name="Grok 4.1 Fast", priority=1, timeout_seconds=45),
        ModelBackend(id="google/gemini-2.0-flash-001", name="Gemini 2.0 Flash", priority=2, timeout_seconds=45),
        ModelBackend(id="openai/gpt-4o-mini", name="GPT-4o mini", priority=3, timeout_seconds=45),
    ]


class LLMConfig(BaseModel):
    """Which inference provider the pipeline talks to."""

    provider: str = Field(
        default="openrouter",
        description="Provider identifier: 'openrouter', 'openai', 'anthropic' or 'mock'.",
    )
    base_url: str | None = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints. Defaults per provider.",
    )
    api_key_env: str | None = Field(
        default=None,
        description="Environment variable holding the API key. Defaults per provider.",
    )


class ModelPoolConfig(BaseModel):
    backends: list[ModelBackend] = Field(default_factory=_default_backends)
    max_failures: int = Field(
        default=3,
        ge=1,
        description="Failures before a backend is skipped for assignment and fallback.",
    )
    failure_reset_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Failure counters are cleared after this many seconds.",
    )
    max_tracked: int = Field(
        default=20,
        ge=1,
        description="Capacity of the failure map; the oldest entry is evicted first.",
    )
    min_eligible: int = Field(
        default=1,
        ge=1,
        description="Reset all failure counters when fewer backends than this are eligible.",
    )
    pinned_backend: str | None = Field(
        default=None,
        description="If set, every agent uses this backend id (single-model mode).",
    )
    seed: int | None = Field(default=None, description="Seed for the assignment shuffle.")


class RunnerConfig(BaseModel):
    max_retries: int = Field(default=3, ge=1, description="Attempts per backend.")
    backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Linear backoff unit: the n-th retry waits n * backoff_seconds.",
    )
    max_fallbacks: int = Field(default=2, ge=0, description="Fallback backends tried per agent.")


class OrchestratorConfig(BaseModel):
    batch_size: int = Field(default=4, ge=1)
    batch_delay_seconds: float = Field(default=0.5, ge=0)


class TournamentConfig(BaseModel):
    enabled: bool = True
    turns_per_debate: int = Field(default=2, ge=1)
    final_extra_turns: int = Field(default=1, ge=0)
    max_quarterfinals: int = Field(default=4, ge=1)
    turn_delay_seconds: float = Field(default=0.3, ge=0)
    turn_max_tokens: int = Field(default=400, gt=0)
    turn_temperature: float = Field(default=0.75, ge=0.0, le=2.0)


class JudgeConfig(BaseModel):
    model: str | None = Field(
        default=None,
        description="Backend id for arbitration. Defaults to the highest-priority pool backend.",
    )
    max_retries: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, gt=0)
    timeout_seconds: float = Field(default=90.0, gt=0)


def _default_leverage_by_risk() -> dict[RiskLevel, float]:
    return {
        RiskLevel.LOW: 5.0,
        RiskLevel.MEDIUM: 4.0,
        RiskLevel.HIGH: 3.0,
        RiskLevel.VERY_HIGH: 2.0,
    }


def _default_stop_loss_by_methodology() -> dict[Methodology, float]:
    return {
        Methodology.VALUE: 12.0,
        Methodology.GROWTH: 12.0,
        Methodology.TECHNICAL: 8.0,
        Methodology.MACRO: 12.0,
        Methodology.SENTIMENT: 10.0,
        Methodology.RISK: 8.0,
        Methodology.QUANT: 10.0,
        Methodology.CONTRARIAN: 8.0,
    }


class RiskConfig(BaseModel):
    """Hard bounds for position sizing, leverage and protective levels.

    All percentages are of price (distances) or of balance (allocation).
    """

    max_position_percent: float = Field(default=30.0, gt=0, le=100)
    min_position_percent: float = Field(default=1.0, gt=0, le=100)
    low_confidence_threshold: float = 60.0
    low_confidence_factor: float = 0.7
    high_confidence_threshold: float = 85.0
    high_confidence_factor: float = 1.2
    max_leverage: float = Field(default=5.0, ge=1)
    leverage_by_risk: dict[RiskLevel, float] = Field(default_factory=_default_leverage_by_risk)
    high_leverage_warning: float = Field(
        default=4.0,
        description="Warn with an estimated liquidation distance at or above this leverage.",
    )
    tp_fallback_percent: float = Field(default=10.0, gt=0)
    sl_fallback_percent: float = Field(default=5.0, gt=0)
    max_tp_distance_percent: float = Field(default=50.0, gt=0)
    max_sl_distance_percent: float = Field(default=20.0, gt=0)
    default_max_stop_percent: float = Field(default=15.0, gt=0)
    stop_loss_by_methodology: dict[Methodology, float] = Field(
        default_factory=_default_stop_loss_by_methodology
    )
    strict_stop_loss_requirements: bool = Field(
        default=False,
        description="Raise instead of falling back to the default when a methodology has no stop-loss limit.",
    )
    reduce_fraction: float = Field(default=0.5, gt=0, le=1)
    max_risk_per_trade_percent: float | None = Field(
        default=2.0,
        gt=0,
        description="Balance lost if the stop is hit; larger positions are cut to fit. None disables.",
    )
    max_concurrent_positions: int | None = Field(default=3, ge=1)
    max_same_direction_positions: int | None = Field(default=2, ge=1)
    max_funding_against_percent: float | None = Field(
        default=0.05,
        ge=0,
        description="Veto when funding paid by the new position exceeds this (percent per interval).",
    )
    max_net_long_percent: float | None = Field(default=60.0, gt=0)
    max_net_short_percent: float | None = Field(default=50.0, gt=0)
    min_order_size: float = Field(default=0.001, gt=0)
    client_order_prefix: str = "arena"


class ExchangeConfig(BaseModel):
    """Precision tables for the paper exchange."""

    tick_sizes: dict[str, float] = Field(default_factory=lambda: {"BTC": 0.1, "ETH": 0.01})
    step_sizes: dict[str, float] = Field(default_factory=lambda: {"BTC": 0.001, "ETH": 0.01})
    default_tick_size: float = 0.01
    default_step_size: float = 0.001
    min_sizes: dict[str, float] = Field(default_factory=lambda: {"BTC": 0.001, "ETH": 0.01})
    default_min_size: float = 0.001


class SafetyConfig(BaseModel):
    breaker: str = Field(
        default="static",
        description="Circuit breaker implementation: 'static' or 'threshold'.",
    )
    static_level: str = Field(default="NONE", description="Level reported by the static breaker.")
    level_leverage_caps: dict[str, float | None] = Field(
        default_factory=lambda: {"NONE": None, "YELLOW": 3.0, "ORANGE": 2.0, "RED": 1.0}
    )
    btc_drop_4h_thresholds: tuple[float, float, float] = Field(
        default=(10.0, 15.0, 20.0),
        description="BTC 4h drop (%) that trips YELLOW / ORANGE / RED.",
    )
    drawdown_24h_thresholds: tuple[float, float, float] = Field(
        default=(10.0, 15.0, 25.0),
        description="Portfolio 24h drawdown (%) that trips YELLOW / ORANGE / RED.",
    )

    @field_validator("level_leverage_caps")
    @classmethod
    def _caps_at_least_one(cls, value: dict[str, float | None]) -> dict[str, float | None]:
        for level, cap in value.items():
            if cap is not None and not cap >= 1:
                raise ValueError(f"Leverage cap for {level} must be at least 1, got {cap}")
        return value


class ArenaConfig(BaseModel):
    """Top-level configuration for the decision pipeline, loaded from YAML."""

    symbol: str = Field(default="BTC", description="Default symbol under decision.")
    agents: list[str] = Field(
        default_factory=lambda: ["warren", "cathie", "jim", "ray", "elon", "karen", "quant", "devil"],
        description="Analyst ids to run each cycle (see arena.config.DEFAULT_ROSTER).",
    )
    llm: LLMConfig = Field(default_factory=LLMConfig)
    model_pool: ModelPoolConfig = Field(default_factory=ModelPoolConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    tournament: TournamentConfig = Field(default_factory=TournamentConfig)
    judge: JudgeConfig = Field(default_factory=JudgeConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    performance_weights: dict[str, float] = Field(
        default_factory=dict,
        description="Optional per-analyst weights passed to the judge.",
    )
    dry_run: bool = Field(default=True, description="Build orders but do not place them.")

    @classmethod
    def from_yaml(cls, path: str | Path) -> ArenaConfig:
        """Load and validate an ``ArenaConfig`` from a YAML file.

        Raises ``FileNotFoundError`` if the file does not exist and
        ``ValueError`` if the content is not a valid YAML mapping.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError(
                f"Expected a YAML mapping in {path}, got {type(raw).__name__}."
            )

        return cls(**raw)
