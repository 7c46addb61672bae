"""
Position Manager.

Exit rules for open positions, evaluated once per monitor tick:

1. Peak ratchet: a new unrealized-profit high moves the peak price.
2. Take-profit (checked first, so a tick that also breaches the stop is a win).
3. Stop-loss or trailing drawdown from the peak price.
"""
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from hedgebot.domain.models import Direction, ExitReason, Position
from hedgebot.monitoring.logger import get_logger
from hedgebot.utils.decimal_math import pct_of

logger = get_logger(__name__)


class ActionType(str, Enum):
    """Types of management actions."""
    NO_ACTION = "no_action"
    CLOSE_POSITION = "close_position"


@dataclass
class ManagementAction:
    """Action returned by PositionManager."""
    type: ActionType
    reason: Optional[ExitReason] = None
    price: Optional[Decimal] = None
    unrealized_profit: Optional[Decimal] = None
    trailing_stop: Optional[Decimal] = None

    @property
    def should_close(self) -> bool:
        return self.type == ActionType.CLOSE_POSITION


class PositionManager:
    """
    Exit evaluator for open positions.

    Mutates only the peak tracking fields of a position; closing is left
    to the caller.
    """

    def __init__(self, max_drawdown_pct: Decimal = Decimal("2")):
        self.max_drawdown_pct = max_drawdown_pct

    def update_peak(self, position: Position, current_price: Decimal) -> Decimal:
        """
        Ratchet ``peak_profit``/``peak_price`` on a new profit high.

        Returns:
            Unrealized profit at ``current_price``
        """
        profit = position.unrealized_profit(current_price)
        if profit > position.peak_profit:
            position.peak_profit = profit
            position.peak_price = current_price
        return profit

    def trailing_stop_price(self, position: Position) -> Decimal:
        """Peak price moved against the position by ``max_drawdown_pct``."""
        drawdown = pct_of(position.peak_price, self.max_drawdown_pct)
        if position.direction == Direction.LONG:
            return position.peak_price - drawdown
        return position.peak_price + drawdown

    def evaluate(self, position: Position, current_price: Decimal) -> ManagementAction:
        """
        Evaluate exit rules for a position at ``current_price``.

        Args:
            position: The open position (peak fields are updated in place)
            current_price: Latest market price

        Returns:
            CLOSE_POSITION with the exit reason, or NO_ACTION
        """
        profit = self.update_peak(position, current_price)
        trailing_stop = self.trailing_stop_price(position)

        if self._take_profit_hit(position, current_price):
            return ManagementAction(
                type=ActionType.CLOSE_POSITION,
                reason=ExitReason.TAKE_PROFIT,
                price=current_price,
                unrealized_profit=profit,
                trailing_stop=trailing_stop,
            )

        if self._price_breached(position.direction, current_price, position.stop_loss):
            return ManagementAction(
                type=ActionType.CLOSE_POSITION,
                reason=ExitReason.STOP_LOSS,
                price=current_price,
                unrealized_profit=profit,
                trailing_stop=trailing_stop,
            )

        if self._price_breached(position.direction, current_price, trailing_stop):
            return ManagementAction(
                type=ActionType.CLOSE_POSITION,
                reason=ExitReason.TRAILING_DRAWDOWN,
                price=current_price,
                unrealized_profit=profit,
                trailing_stop=trailing_stop,
            )

        return ManagementAction(
            type=ActionType.NO_ACTION,
            price=current_price,
            unrealized_profit=profit,
            trailing_stop=trailing_stop,
        )

    def _take_profit_hit(self, position: Position, price: Decimal) -> bool:
        if position.direction == Direction.LONG:
            return price >= position.take_profit
        return price <= position.take_profit

    def _price_breached(self, direction: Direction, price: Decimal, level: Decimal) -> bool:
        """True if price has moved through ``level`` against the position."""
        if direction == Direction.LONG:
            return price <= level
        return price >= level
