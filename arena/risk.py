"""
Risk normalizer / order synthesizer.

Turns an ``ArbitratedDecision`` into an exchange-ready ``Order`` that never
exceeds the configured bounds, whatever the analysts or the judge asked for.

Order of operations for a new position:
  1. price and balance sanity checks
  2. portfolio vetoes (open positions, same-direction count, funding)
  3. position sizing (size score x confidence factor, judge override, clamp)
  4. leverage (judge override or risk bucket, clamped to every ceiling)
  5. take-profit / stop-loss orientation, fallback and distance clamps
  6. risk-per-trade budget, exchange minimum size and rounding
  7. bounds re-checked on the rounded size, then net exposure
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field

from models.config import RiskConfig
from models.context import AccountState, MarketSnapshot, SafetyCaps
from models.decision import ArbitratedDecision, FinalAction, Order
from models.errors import ConfigurationFailure, RiskError
from models.opinion import AgentOpinion

from .collaborators import ExchangeClient

logger = logging.getLogger(__name__)

SYSTEM_AGENT = "system"

# Tolerance for float comparisons against percentage limits.
_EPSILON = 1e-9


def _finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


@dataclass
class SynthesisResult:
    """Order (or None) plus every warning raised while building it."""

    order: Order | None = None
    warnings: list[str] = field(default_factory=list)
    rationale: str = ""


class RiskNormalizer:
    """Bounds-enforcing order builder.

    Args:
        config: hard limits for sizing, leverage and protective levels.
        exchange: provides tick / step rounding for the symbol.
    """

    def __init__(self, config: RiskConfig, exchange: ExchangeClient) -> None:
        self.config = config
        self._exchange = exchange

    def synthesize(
        self,
        decision: ArbitratedDecision,
        account: AccountState,
        market: MarketSnapshot | None,
        caps: SafetyCaps | None = None,
        *,
        symbol: str | None = None,
    ) -> Order | None:
        """Order for *decision*, or None when no order should be placed.

        Raises ``RiskError`` for unusable prices, balances or leverage.
        """
        return self.build(decision, account, market, caps, symbol=symbol).order

    def build(
        self,
        decision: ArbitratedDecision,
        account: AccountState,
        market: MarketSnapshot | None,
        caps: SafetyCaps | None = None,
        *,
        symbol: str | None = None,
    ) -> SynthesisResult:
        caps = caps or SafetyCaps()
        action = decision.final_action

        if action == FinalAction.HOLD:
            return SynthesisResult(rationale="HOLD: no order")
        if not decision.has_winner and not action.is_emergency:
            return SynthesisResult(rationale=f"No winner; {action.value} not executed")

        rec = decision.final_recommendation
        symbol = (rec.symbol if rec is not None and rec.symbol else None) or symbol or (
            market.symbol if market is not None else None
        )
        if not symbol:
            raise RiskError("No symbol to trade")
        price = self._check_price(market)

        if action.is_emergency:
            return self._reduce_only(decision, account, symbol, price, caps)
        return self._open(decision, account, symbol, price, caps, market.funding_rate)

    # ------------------------------------------------------------------
    # Close / reduce
    # ------------------------------------------------------------------

    def _reduce_only(
        self,
        decision: ArbitratedDecision,
        account: AccountState,
        symbol: str,
        price: float,
        caps: SafetyCaps,
    ) -> SynthesisResult:
        action = decision.final_action
        position = account.position_for(symbol)
        if position is None:
            logger.info("%s requested but no open %s position", action.value, symbol)
            return SynthesisResult(rationale=f"{action.value}: no open {symbol} position")

        fraction = 1.0 if action == FinalAction.CLOSE else self.config.reduce_fraction
        floor = max(self.config.min_order_size, self._exchange.min_order_size(symbol))
        size = min(position.size, max(position.size * fraction, floor))
        size_str = self._rounded_size(size, symbol)
        side = "sell" if position.side == "long" else "buy"
        ceiling = caps.max_leverage if _finite(caps.max_leverage) else max(1.0, position.leverage)
        if ceiling < 1:
            raise RiskError(f"Leverage ceiling {ceiling:g}x is below 1x; refusing to build {action.value}")
        leverage = max(1.0, min(position.leverage, ceiling))
        agent = decision.winner_agent_id if decision.has_winner else SYSTEM_AGENT

        rationale = (
            f"{action.value} {fraction:.0%} of {position.side} {symbol} "
            f"({position.size} -> reduce-only {side})"
        )
        if decision.reasoning:
            rationale = f"{rationale}. {decision.reasoning}"
        order = Order(
            symbol=symbol,
            side=side,
            size=size_str,
            price=self._exchange.round_to_tick_size(price, symbol),
            leverage=leverage,
            client_order_id=self._client_order_id(agent),
            reduce_only=True,
            agent_id=agent,
            rationale=rationale,
        )
        return SynthesisResult(order=order, rationale=rationale)

    # ------------------------------------------------------------------
    # New positions
    # ------------------------------------------------------------------

    def _open(
        self,
        decision: ArbitratedDecision,
        account: AccountState,
        symbol: str,
        price: float,
        caps: SafetyCaps,
        funding_rate: float | None = None,
    ) -> SynthesisResult:
        if caps.close_only:
            raise RiskError(f"Circuit breaker {caps.level.value}: new positions are blocked")
        opinion = decision.winning_opinion
        if opinion is None:
            raise RiskError(f"No winning opinion for {decision.winner_agent_id}; cannot size order")

        balance = account.balance
        if not _finite(balance) or balance <= 0:
            raise RiskError(f"Invalid account balance: {balance}")

        warnings: list[str] = []
        is_long = decision.final_action == FinalAction.BUY
        adjustments = decision.adjustments
        self.check_portfolio_limits(account, symbol, is_long, funding_rate)

        pct = self.position_percent(opinion, adjustments.allocation_percent if adjustments else None)
        leverage = self.leverage(
            opinion, adjustments.leverage if adjustments else None, caps, warnings
        )
        tp, sl = self.protective_levels(
            opinion,
            price,
            is_long,
            tp_override=adjustments.tp_price if adjustments else None,
            sl_override=adjustments.sl_price if adjustments else None,
            warnings=warnings,
        )
        stop_percent = abs(price - sl) / price * 100
        pct = self.fit_risk_budget(pct, stop_percent, warnings)

        floor = max(self.config.min_order_size, self._exchange.min_order_size(symbol))
        size_str = self._rounded_size(max(balance * pct / 100 / price, floor), symbol)
        notional_percent = float(size_str) * price / balance * 100
        self.check_order_bounds(notional_percent, stop_percent)
        self.check_net_exposure(account, symbol, price, balance, is_long, notional_percent)

        rationale = (
            f"{decision.final_action.value} {symbol} per {opinion.agent_id} "
            f"({opinion.recommendation.value}, {opinion.confidence:.0f}% confidence): "
            f"{notional_percent:.1f}% of balance at {leverage:g}x, TP {tp:.2f} / SL {sl:.2f}"
        )
        order = Order(
            symbol=symbol,
            side="buy" if is_long else "sell",
            size=size_str,
            price=self._exchange.round_to_tick_size(price, symbol),
            take_profit=self._exchange.round_to_tick_size(tp, symbol),
            stop_loss=self._exchange.round_to_tick_size(sl, symbol),
            leverage=leverage,
            client_order_id=self._client_order_id(opinion.agent_id),
            reduce_only=False,
            agent_id=opinion.agent_id,
            rationale=rationale,
        )
        for warning in warnings:
            logger.warning("%s", warning)
        return SynthesisResult(order=order, warnings=warnings, rationale=rationale)

    # ------------------------------------------------------------------
    # Portfolio vetoes
    # ------------------------------------------------------------------

    def check_portfolio_limits(
        self,
        account: AccountState,
        symbol: str,
        is_long: bool,
        funding_rate: float | None = None,
    ) -> None:
        """Raise ``RiskError`` when a new position would break a portfolio rule.

        Positions already open on *symbol* do not count: the order nets
        against them instead of opening another position.
        """
        cfg = self.config
        others = [p for p in account.positions if p.symbol != symbol]
        if account.position_for(symbol) is None and cfg.max_concurrent_positions is not None:
            if len(others) >= cfg.max_concurrent_positions:
                raise RiskError(
                    f"{len(others)} positions already open (max {cfg.max_concurrent_positions})"
                )

        side = "long" if is_long else "short"
        if cfg.max_same_direction_positions is not None:
            same = sum(1 for p in others if p.side == side)
            if same >= cfg.max_same_direction_positions:
                raise RiskError(
                    f"{same} {side} positions already open (max {cfg.max_same_direction_positions})"
                )

        # Positive funding: longs pay shorts.
        if cfg.max_funding_against_percent is not None and _finite(funding_rate):
            against = funding_rate * 100 if is_long else -funding_rate * 100
            if against > cfg.max_funding_against_percent:
                raise RiskError(
                    f"Funding {funding_rate:+.4%} against the {side} "
                    f"(max {cfg.max_funding_against_percent:g}%)"
                )

    def fit_risk_budget(self, pct: float, stop_percent: float, warnings: list[str]) -> float:
        """Shrink *pct* so that hitting the stop loses at most ``max_risk_per_trade_percent``."""
        cfg = self.config
        if cfg.max_risk_per_trade_percent is None or stop_percent <= 0:
            return pct
        budget = cfg.max_risk_per_trade_percent / stop_percent * 100
        if pct <= budget:
            return pct
        if budget < cfg.min_position_percent:
            raise RiskError(
                f"Stop {stop_percent:.1f}% away leaves no room for a {cfg.min_position_percent:g}% "
                f"position within {cfg.max_risk_per_trade_percent:g}% risk per trade"
            )
        warnings.append(
            f"Position cut from {pct:.1f}% to {budget:.1f}% of balance "
            f"to keep risk per trade at {cfg.max_risk_per_trade_percent:g}%"
        )
        return budget

    def check_order_bounds(self, notional_percent: float, stop_percent: float) -> None:
        """Bounds re-checked on the rounded size, after the minimum-size floor."""
        cfg = self.config
        if notional_percent > cfg.max_position_percent + _EPSILON:
            raise RiskError(
                f"Minimum order size is {notional_percent:.1f}% of balance "
                f"(max {cfg.max_position_percent:g}%)"
            )
        if cfg.max_risk_per_trade_percent is not None:
            risk = notional_percent * stop_percent / 100
            if risk > cfg.max_risk_per_trade_percent + _EPSILON:
                raise RiskError(
                    f"Minimum order size risks {risk:.2f}% of balance "
                    f"(max {cfg.max_risk_per_trade_percent:g}% per trade)"
                )

    def check_net_exposure(
        self,
        account: AccountState,
        symbol: str,
        price: float,
        balance: float,
        is_long: bool,
        notional_percent: float,
    ) -> None:
        """Net long / short exposure after the order, as percent of balance."""
        cfg = self.config
        net = 0.0
        for position in account.positions:
            mark = position.entry_price if position.symbol != symbol else price
            if not _finite(mark):
                logger.warning("No price for open %s position; left out of net exposure", position.symbol)
                continue
            signed = position.size * mark / balance * 100
            net += signed if position.side == "long" else -signed
        net += notional_percent if is_long else -notional_percent

        if is_long and cfg.max_net_long_percent is not None and net > cfg.max_net_long_percent + _EPSILON:
            raise RiskError(f"Net long exposure {net:.1f}% (max {cfg.max_net_long_percent:g}%)")
        if not is_long and cfg.max_net_short_percent is not None and -net > cfg.max_net_short_percent + _EPSILON:
            raise RiskError(f"Net short exposure {-net:.1f}% (max {cfg.max_net_short_percent:g}%)")

    # ------------------------------------------------------------------
    # Sizing and leverage
    # ------------------------------------------------------------------

    def position_percent(self, opinion: AgentOpinion, allocation_override: float | None = None) -> float:
        """Percent of balance to commit, clamped to the configured band."""
        cfg = self.config
        if allocation_override is not None:
            if not math.isfinite(allocation_override):
                raise RiskError(f"Invalid allocation override: {allocation_override}")
            pct = allocation_override
        else:
            pct = opinion.position_size / 10 * cfg.max_position_percent
            if opinion.confidence < cfg.low_confidence_threshold:
                pct *= cfg.low_confidence_factor
            elif opinion.confidence >= cfg.high_confidence_threshold:
                pct *= cfg.high_confidence_factor
        return min(cfg.max_position_percent, max(cfg.min_position_percent, pct))

    def leverage(
        self,
        opinion: AgentOpinion,
        requested: float | None,
        caps: SafetyCaps,
        warnings: list[str],
    ) -> float:
        """Leverage never above the risk bucket, ``max_leverage`` or the breaker cap."""
        cfg = self.config
        bucket = cfg.leverage_by_risk.get(opinion.risk_level, 1.0)
        value = bucket if requested is None else requested
        if not math.isfinite(value) or value <= 0:
            raise RiskError(f"Invalid leverage: {value}")

        ceiling = min(bucket, cfg.max_leverage)
        if _finite(caps.max_leverage):
            ceiling = min(ceiling, caps.max_leverage)
        if ceiling < 1:
            raise RiskError(f"Leverage ceiling {ceiling:g}x is below 1x; refusing to open a position")
        leverage = max(1.0, min(value, ceiling))
        if leverage < value:
            logger.info("Leverage %.1fx clamped to %.1fx", value, leverage)

        if leverage >= cfg.high_leverage_warning:
            liquidation = 100 / leverage * 0.8
            warnings.append(
                f"High leverage {leverage:g}x: liquidation roughly {liquidation:.1f}% away"
            )
        return leverage

    def stop_loss_limit(self, opinion: AgentOpinion, warnings: list[str]) -> float:
        """Maximum stop distance (percent of price) for the opinion's methodology."""
        cfg = self.config
        limit = cfg.stop_loss_by_methodology.get(opinion.methodology)
        if limit is None:
            message = f"No stop-loss limit configured for methodology '{opinion.methodology.value}'"
            if cfg.strict_stop_loss_requirements:
                raise ConfigurationFailure(message)
            warnings.append(f"{message}; using {cfg.default_max_stop_percent:g}%")
            limit = cfg.default_max_stop_percent
        return min(cfg.default_max_stop_percent, limit)

    def protective_levels(
        self,
        opinion: AgentOpinion,
        price: float,
        is_long: bool,
        *,
        tp_override: float | None = None,
        sl_override: float | None = None,
        warnings: list[str] | None = None,
    ) -> tuple[float, float]:
        """(take_profit, stop_loss) on the correct sides of *price*, distance-clamped."""
        cfg = self.config
        warnings = warnings if warnings is not None else []
        target = opinion.price_target

        if is_long:
            tp, sl = target.base, target.bear
        else:
            tp, sl = target.bear, target.bull
        if _finite(tp_override):
            tp = tp_override
        if _finite(sl_override):
            sl = sl_override

        sign = 1 if is_long else -1
        if (tp - price) * sign <= 0:
            warnings.append(f"Take-profit {tp:g} on wrong side of {price:g}; using {cfg.tp_fallback_percent:g}%")
            tp = price * (1 + sign * cfg.tp_fallback_percent / 100)
        if (price - sl) * sign <= 0:
            warnings.append(f"Stop-loss {sl:g} on wrong side of {price:g}; using {cfg.sl_fallback_percent:g}%")
            sl = price * (1 - sign * cfg.sl_fallback_percent / 100)

        max_tp = price * (1 + sign * cfg.max_tp_distance_percent / 100)
        tp = min(tp, max_tp) if is_long else max(tp, max_tp)

        sl_distance = min(cfg.max_sl_distance_percent, self.stop_loss_limit(opinion, warnings))
        max_sl = price * (1 - sign * sl_distance / 100)
        sl = max(sl, max_sl) if is_long else min(sl, max_sl)
        return tp, sl

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_price(market: MarketSnapshot | None) -> float:
        price = market.price if market is not None else None
        if not _finite(price) or price <= 0:
            raise RiskError(f"Invalid market price: {price}")
        return price

    def _rounded_size(self, size: float, symbol: str) -> str:
        size_str = self._exchange.round_to_step_size(size, symbol)
        if not float(size_str) > 0:
            raise RiskError(f"Order size {size:g} rounds to {size_str} on {symbol}")
        return size_str

    def _client_order_id(self, agent_id: str) -> str:
        return f"{self.config.client_order_prefix}_{agent_id}_{uuid.uuid4().hex[:12]}"
