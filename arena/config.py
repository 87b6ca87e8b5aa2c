"""
Analyst personas for the arena.
Each analyst is a fixed persona + methodology; the runner renders it into the
system prompt, the tournament uses the methodology for keyword scoring.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from models.errors import ConfigurationFailure
from models.opinion import Methodology


@dataclass(frozen=True)
class AnalystProfile:
    """
    One analyst persona.

      - id: stable agent id used everywhere in the pipeline
      - methodology: drives prompts, argument scoring and stop-loss limits
      - focus_areas: bullet points rendered into the system prompt
    """

    id: str
    name: str
    title: str
    methodology: Methodology
    description: str
    focus_areas: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        """Serialize profile for prompt rendering."""
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "methodology": self.methodology.value,
            "description": self.description,
            "focus_areas": list(self.focus_areas),
        }


DEFAULT_ROSTER: dict[str, AnalystProfile] = {
    p.id: p
    for p in (
        AnalystProfile(
            id="warren",
            name="Warren",
            title="Value Analyst",
            methodology=Methodology.VALUE,
            description="Seeks undervalued assets with strong fundamentals and a margin of safety.",
            focus_areas=("Market cap vs realized cap", "Network value to transactions", "Token supply dynamics"),
        ),
        AnalystProfile(
            id="cathie",
            name="Cathie",
            title="Growth Analyst",
            methodology=Methodology.GROWTH,
            description="Hunts for disruptive innovation and exponential adoption potential.",
            focus_areas=("Adoption curves", "Developer activity", "Addressable market expansion"),
        ),
        AnalystProfile(
            id="jim",
            name="Jim",
            title="Technical Analyst",
            methodology=Methodology.TECHNICAL,
            description="Reads price action, volume and chart patterns on perpetual futures.",
            focus_areas=("Trend and moving averages", "Support and resistance", "RSI and MACD", "Volume"),
        ),
        AnalystProfile(
            id="ray",
            name="Ray",
            title="Macro Strategist",
            methodology=Methodology.MACRO,
            description="Analyzes Fed policy, dollar strength, risk appetite and dominance cycles.",
            focus_areas=("Interest rates and liquidity", "DXY", "Risk-on / risk-off regime"),
        ),
        AnalystProfile(
            id="elon",
            name="Elon",
            title="Sentiment Analyst",
            methodology=Methodology.SENTIMENT,
            description="Tracks market psychology, social sentiment and crowd behaviour.",
            focus_areas=("Fear and greed", "Social volume", "Funding and positioning"),
        ),
        AnalystProfile(
            id="karen",
            name="Karen",
            title="Risk Manager",
            methodology=Methodology.RISK,
            description="Focuses on downside protection, liquidation risk and what could go wrong.",
            focus_areas=("Drawdown scenarios", "Leverage and liquidation levels", "Position limits"),
        ),
        AnalystProfile(
            id="quant",
            name="Quant",
            title="Quant Analyst",
            methodology=Methodology.QUANT,
            description="Uses statistical models, on-chain data and derivatives signals.",
            focus_areas=("Factor exposure", "Volatility regime", "Basis and open interest"),
        ),
        AnalystProfile(
            id="devil",
            name="Devil's Advocate",
            title="Contrarian",
            methodology=Methodology.CONTRARIAN,
            description="Challenges consensus, finds holes in popular narratives and fades crowded trades.",
            focus_areas=("Crowded positioning", "Narrative exhaustion", "Overlooked risks"),
        ),
    )
}


def get_profile(agent_id: str, roster: dict[str, AnalystProfile] | None = None) -> AnalystProfile:
    """Look up a profile by id; unknown ids are a configuration error."""
    roster = DEFAULT_ROSTER if roster is None else roster
    try:
        return roster[agent_id]
    except KeyError:
        raise ConfigurationFailure(
            f"Unknown analyst '{agent_id}'. Available: {sorted(roster)}"
        ) from None
