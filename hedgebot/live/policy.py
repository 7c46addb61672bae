"""
Automatic trade acceptance policy.

Replaces an operator prompt: accepts any signal inside the probability
band and sizes the trade as a fixed fraction of the selected ledger.
"""
from decimal import Decimal
from typing import Optional

from hedgebot.config.config import TradingConfig
from hedgebot.domain.models import Direction, InstrumentClass, TradeMode, TradeParams
from hedgebot.monitoring.logger import get_logger
from hedgebot.utils.decimal_math import ZERO, quantize, safe_divide

logger = get_logger(__name__)


class AutoTradePolicy:
    """DecisionPolicy driven by the ``trading`` config section."""

    def __init__(
        self,
        trading: TradingConfig,
        min_probability: Decimal = Decimal("70"),
        max_probability: Decimal = Decimal("80"),
    ):
        self.trading = trading
        self.min_probability = min_probability
        self.max_probability = max_probability
        self.instrument_class = InstrumentClass(trading.instrument_class)
        self.mode = TradeMode(trading.mode)
        self.favorable_direction = Direction(trading.favorable_direction)

    def should_accept_trade(self, probability: Decimal) -> bool:
        return self.min_probability <= probability <= self.max_probability

    def choose_trade_parameters(
        self,
        entry_price: Decimal,
        available_real: Decimal,
        available_simulated: Decimal,
    ) -> Optional[TradeParams]:
        """
        ``amount = balance * amount_pct / entry_price`` in base-asset units.

        Returns:
            TradeParams, or None if the sized amount is zero
        """
        balance = available_real if self.mode == TradeMode.REAL else available_simulated
        amount = quantize(safe_divide(balance * self.trading.amount_pct, entry_price))
        if amount <= ZERO:
            logger.warning(
                "Trade amount is zero, skipping",
                mode=self.mode.value,
                balance=str(balance),
                entry_price=str(entry_price),
            )
            return None

        return TradeParams(
            instrument_class=self.instrument_class,
            mode=self.mode,
            amount=amount,
            favorable_direction=self.favorable_direction,
        )
