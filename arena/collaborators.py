"""Contracts for the collaborators the decision pipeline consumes."""

from __future__ import annotations

from typing import Any, Protocol

from models.context import CircuitLevel, CircuitStatus, TradingContext
from models.decision import Order, OrderReceipt


class ContextSource(Protocol):
    async def build_context(self, symbol: str) -> TradingContext: ...


class ExchangeClient(Protocol):
    def round_to_tick_size(self, price: float, symbol: str) -> str: ...

    def round_to_step_size(self, size: float, symbol: str) -> str: ...

    def min_order_size(self, symbol: str) -> float: ...

    async def place_order(self, order: Order) -> OrderReceipt: ...


class SafetyCapSource(Protocol):
    """Circuit breaker: current level plus the leverage ceiling per level."""

    def check_status(self) -> CircuitStatus: ...

    def max_leverage(self, level: CircuitLevel) -> float | None: ...


class AuditSink(Protocol):
    def log(
        self,
        stage: str,
        model: str,
        input: Any,
        output: Any,
        explanation: str = "",
    ) -> None: ...
