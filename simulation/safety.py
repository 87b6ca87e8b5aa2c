"""In-process circuit breakers.

``StaticCircuitBreaker`` reports a fixed level (useful for dry runs and
tests).  ``ThresholdCircuitBreaker`` derives the level from the latest BTC
4h move and portfolio 24h drawdown fed to it via ``update``; the worse of the
two signals wins.
"""

from __future__ import annotations

import logging
from typing import Mapping

from models.config import SafetyConfig
from models.context import CircuitLevel, CircuitStatus
from models.errors import ConfigurationFailure

logger = logging.getLogger(__name__)

_SEVERITY = [CircuitLevel.NONE, CircuitLevel.YELLOW, CircuitLevel.ORANGE, CircuitLevel.RED]


class _LevelCaps:
    """Leverage ceiling lookup shared by both breakers."""

    def __init__(self, level_caps: Mapping[str, float | None] | None = None) -> None:
        self._caps = dict(level_caps if level_caps is not None else SafetyConfig().level_leverage_caps)

    def max_leverage(self, level: CircuitLevel) -> float | None:
        return self._caps.get(level.value)


class StaticCircuitBreaker(_LevelCaps):
    def __init__(
        self,
        level: CircuitLevel = CircuitLevel.NONE,
        reason: str = "",
        level_caps: Mapping[str, float | None] | None = None,
    ) -> None:
        super().__init__(level_caps)
        self.level = level
        self.reason = reason

    def check_status(self) -> CircuitStatus:
        return CircuitStatus(level=self.level, reason=self.reason)


class ThresholdCircuitBreaker(_LevelCaps):
    """Level from market-drop and drawdown thresholds (percent, positive)."""

    def __init__(
        self,
        btc_drop_4h_thresholds: tuple[float, float, float] = (10.0, 15.0, 20.0),
        drawdown_24h_thresholds: tuple[float, float, float] = (10.0, 15.0, 25.0),
        level_caps: Mapping[str, float | None] | None = None,
    ) -> None:
        super().__init__(level_caps)
        for name, thresholds in (
            ("btc_drop_4h_thresholds", btc_drop_4h_thresholds),
            ("drawdown_24h_thresholds", drawdown_24h_thresholds),
        ):
            if list(thresholds) != sorted(thresholds):
                raise ConfigurationFailure(f"{name} must be ascending, got {thresholds}")
        self._drop_thresholds = tuple(btc_drop_4h_thresholds)
        self._drawdown_thresholds = tuple(drawdown_24h_thresholds)
        self.btc_change_4h: float | None = None
        self.drawdown_24h: float | None = None

    def update(self, btc_change_4h: float | None = None, drawdown_24h: float | None = None) -> None:
        """Feed the latest readings.  ``btc_change_4h`` is signed (-12 = 12% drop)."""
        if btc_change_4h is not None:
            self.btc_change_4h = btc_change_4h
        if drawdown_24h is not None:
            self.drawdown_24h = drawdown_24h

    def check_status(self) -> CircuitStatus:
        drop = -self.btc_change_4h if self.btc_change_4h is not None else 0.0
        drawdown = self.drawdown_24h or 0.0
        drop_level = _trip_level(drop, self._drop_thresholds)
        drawdown_level = _trip_level(drawdown, self._drawdown_thresholds)

        level = max(drop_level, drawdown_level, key=_SEVERITY.index)
        if level == CircuitLevel.NONE:
            return CircuitStatus()

        reasons = []
        if drop_level != CircuitLevel.NONE:
            reasons.append(f"BTC down {drop:.1f}% in 4h")
        if drawdown_level != CircuitLevel.NONE:
            reasons.append(f"portfolio drawdown {drawdown:.1f}% in 24h")
        status = CircuitStatus(level=level, reason="; ".join(reasons))
        logger.warning("Circuit breaker %s: %s", status.level.value, status.reason)
        return status


def _trip_level(value: float, thresholds: tuple[float, ...]) -> CircuitLevel:
    level = CircuitLevel.NONE
    for threshold, candidate in zip(thresholds, _SEVERITY[1:]):
        if value >= threshold:
            level = candidate
    return level


def build_circuit_breaker(config: SafetyConfig) -> StaticCircuitBreaker | ThresholdCircuitBreaker:
    if config.breaker == "static":
        try:
            level = CircuitLevel(config.static_level.upper())
        except ValueError as exc:
            raise ConfigurationFailure(f"Unknown circuit level '{config.static_level}'") from exc
        return StaticCircuitBreaker(level, "static configuration", config.level_leverage_caps)
    if config.breaker == "threshold":
        return ThresholdCircuitBreaker(
            config.btc_drop_4h_thresholds,
            config.drawdown_24h_thresholds,
            config.level_leverage_caps,
        )
    raise ConfigurationFailure(f"Unknown circuit breaker '{config.breaker}'")
