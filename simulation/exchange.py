"""In-process paper exchange: precision rounding, order validation and a
netted position book.

Orders are accepted or rejected as a whole.  Accepted orders update the
position for their symbol immediately at the order price (no slippage, no
fees); reduce-only orders may shrink or close a position but never flip it.
"""

from __future__ import annotations

import logging
import uuid
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from models.config import ExchangeConfig
from models.context import AccountState, Position
from models.decision import Order, OrderReceipt

logger = logging.getLogger(__name__)


def _quantize(value: float, increment: float, rounding: str) -> str:
    step = Decimal(str(increment))
    quantized = (Decimal(str(value)) / step).to_integral_value(rounding=rounding) * step
    return format(quantized.quantize(step), "f")


class PaperExchange:
    """Stateful paper exchange.

    Instantiate one per run; the position book persists across cycles so that
    CLOSE / REDUCE decisions have something to act on.
    """

    def __init__(self, config: ExchangeConfig | None = None, balance: float | None = None) -> None:
        self._config = config or ExchangeConfig()
        self.balance = balance
        self._positions: dict[str, Position] = {}
        self._orders: list[Order] = []
        self._receipts: list[OrderReceipt] = []

    # ------------------------------------------------------------------
    # Precision
    # ------------------------------------------------------------------

    def tick_size(self, symbol: str) -> float:
        return self._config.tick_sizes.get(symbol, self._config.default_tick_size)

    def step_size(self, symbol: str) -> float:
        return self._config.step_sizes.get(symbol, self._config.default_step_size)

    def min_order_size(self, symbol: str) -> float:
        """Smallest tradable size; never below one step."""
        return max(self._config.min_sizes.get(symbol, self._config.default_min_size), self.step_size(symbol))

    def round_to_tick_size(self, price: float, symbol: str) -> str:
        """Nearest tick, half up."""
        return _quantize(price, self.tick_size(symbol), ROUND_HALF_UP)

    def round_to_step_size(self, size: float, symbol: str) -> str:
        """Truncate to the step so an order never exceeds the requested size."""
        return _quantize(size, self.step_size(symbol), ROUND_DOWN)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def place_order(self, order: Order) -> OrderReceipt:
        rejection = self._validate(order)
        if rejection is not None:
            receipt = OrderReceipt(
                order_id="",
                client_order_id=order.client_order_id,
                status="rejected",
                message=rejection,
            )
            logger.warning("Paper order %s rejected: %s", order.client_order_id, rejection)
        else:
            self._apply(order)
            receipt = OrderReceipt(
                order_id=uuid.uuid4().hex[:16],
                client_order_id=order.client_order_id,
                status="accepted",
                message=f"{order.side} {order.size} {order.symbol} @ {order.price}",
            )
            logger.info("Paper order %s accepted: %s", order.client_order_id, receipt.message)

        self._orders.append(order)
        self._receipts.append(receipt)
        return receipt

    @property
    def orders(self) -> list[Order]:
        return list(self._orders)

    @property
    def receipts(self) -> list[OrderReceipt]:
        return list(self._receipts)

    @property
    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def account_state(self) -> AccountState:
        return AccountState(
            balance=self.balance,
            available_balance=self.balance,
            positions=self.positions,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate(self, order: Order) -> str | None:
        try:
            size = Decimal(order.size)
            price = Decimal(order.price)
        except InvalidOperation:
            return f"Unparseable size/price: {order.size!r} / {order.price!r}"
        if size <= 0:
            return f"Order size must be positive, got {order.size}"
        if price <= 0:
            return f"Order price must be positive, got {order.price}"
        if not order.reduce_only and size < Decimal(str(self.min_order_size(order.symbol))):
            return f"Order size {order.size} below the {order.symbol} minimum {self.min_order_size(order.symbol):g}"

        if order.reduce_only:
            position = self._positions.get(order.symbol)
            if position is None:
                return f"Reduce-only order but no open {order.symbol} position"
            closing_side = "sell" if position.side == "long" else "buy"
            if order.side != closing_side:
                return f"Reduce-only {order.side} would increase the {position.side} position"
        return None

    def _apply(self, order: Order) -> None:
        size = float(order.size)
        price = float(order.price)
        side = "long" if order.side == "buy" else "short"
        position = self._positions.get(order.symbol)

        if position is None:
            self._positions[order.symbol] = Position(
                symbol=order.symbol,
                side=side,
                size=size,
                entry_price=price,
                leverage=order.leverage,
            )
            return

        if position.side == side:
            total = position.size + size
            entry = ((position.entry_price or price) * position.size + price * size) / total
            self._positions[order.symbol] = position.model_copy(
                update={"size": total, "entry_price": entry, "leverage": order.leverage}
            )
            return

        remaining = position.size - size
        if remaining > 1e-12:
            self._positions[order.symbol] = position.model_copy(update={"size": remaining})
        elif remaining < -1e-12 and not order.reduce_only:
            self._positions[order.symbol] = Position(
                symbol=order.symbol,
                side=side,
                size=-remaining,
                entry_price=price,
                leverage=order.leverage,
            )
        else:
            del self._positions[order.symbol]
