"""
Domain models for the hedge trading bot.

These are the core business objects used throughout the application.
All timestamps use UTC timezone-aware datetimes and all money/price
values are Decimals.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any


class Direction(str, Enum):
    """Position direction."""
    LONG = "long"
    SHORT = "short"

    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG


class InstrumentClass(str, Enum):
    """Spot or margined futures exposure."""
    SPOT = "spot"
    FUTURES = "futures"


class TradeMode(str, Enum):
    """Selects the balance ledger and whether live orders are submitted."""
    REAL = "real"
    SIMULATED = "simulated"


class Allocation(str, Enum):
    """Which leg of a hedge a position belongs to."""
    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"


class OrderSide(str, Enum):
    """Exchange order side."""
    BUY = "buy"
    SELL = "sell"


class Outcome(str, Enum):
    """Settled trade outcome."""
    WIN = "win"
    LOSS = "loss"


class ExitReason(str, Enum):
    """Why a position was closed."""
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TRAILING_DRAWDOWN = "trailing_drawdown"
    MANUAL = "manual"


@dataclass(frozen=True)
class Candle:
    """
    Closed OHLCV candle.
    """
    symbol: str  # e.g., "AVAX/USDT"
    interval: str  # e.g., "1m", "15m"
    open_time: datetime
    close_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal

    def __post_init__(self):
        """Validate candle data."""
        if self.open_time.tzinfo is None or self.close_time.tzinfo is None:
            raise ValueError("Candle timestamps must be timezone-aware (UTC)")
        if self.high < self.low:
            raise ValueError(f"Invalid candle: high ({self.high}) < low ({self.low})")


@dataclass(frozen=True)
class IndicatorSnapshot:
    """
    Latest indicator values for one evaluation.

    Defaults are the neutral values returned when there is not enough data.
    """
    rsi: Decimal = Decimal("50")
    macd_histogram: Decimal = Decimal("0")
    sma: Decimal = Decimal("0")
    ema: Decimal = Decimal("0")
    stochastic_k: Decimal = Decimal("50")
    stochastic_d: Decimal = Decimal("50")
    atr: Decimal = Decimal("0")
    bollinger_price: Decimal = Decimal("0")
    bollinger_lower: Decimal = Decimal("0")
    bollinger_upper: Decimal = Decimal("0")


@dataclass(frozen=True)
class FeeRates:
    """Maker/taker fee rates as fractions (0.001 = 0.1%)."""
    maker: Decimal
    taker: Decimal


@dataclass(frozen=True)
class OrderReceipt:
    """Acknowledgement of a submitted market order."""
    order_id: str
    symbol: str
    side: OrderSide
    quantity: Decimal
    status: str
    filled_price: Optional[Decimal] = None


@dataclass
class Position:
    """
    A single open long/short/spot exposure.

    ``stop_loss`` and ``take_profit`` are fixed at open. Only the peak
    tracking fields and ``is_reallocated`` change while the position lives.
    """
    id: str
    symbol: str
    entry_price: Decimal
    amount: Decimal
    stop_loss: Decimal
    take_profit: Decimal
    direction: Direction
    instrument_class: InstrumentClass
    mode: TradeMode
    allocation: Allocation
    leverage: Decimal
    fee_rate: Decimal
    entry_fee: Decimal
    locked_capital: Decimal  # margin (or notional) + entry fee debited at open
    peak_profit: Decimal = Decimal("0")
    peak_price: Optional[Decimal] = None
    is_reallocated: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.peak_price is None:
            self.peak_price = self.entry_price
        if self.leverage < 1:
            raise ValueError(f"Leverage must be >= 1, got {self.leverage}")

    def unrealized_profit(self, price: Decimal) -> Decimal:
        """Direction-aware profit at ``price``, scaled by leverage."""
        if self.direction == Direction.LONG:
            move = price - self.entry_price
        else:
            move = self.entry_price - price
        return move * self.amount * self.leverage

    def snapshot(self) -> Dict[str, Any]:
        """Plain dict of the position (enums as values, decimals as strings)."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
            elif isinstance(value, Decimal):
                data[key] = str(value)
            elif isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


@dataclass(frozen=True)
class SettledTrade:
    """
    Immutable record of a closed position (entry → exit).

    ``is_reallocated`` means this close (or an earlier close of the same
    position) triggered the one-shot reallocation. The record is written
    before the ledger credit that funds the replacement, so a rejected
    replacement open is only visible in the logs.
    """
    position_id: str
    symbol: str
    direction: Direction
    instrument_class: InstrumentClass
    mode: TradeMode
    allocation: Allocation
    is_reallocated: bool
    entry_price: Decimal
    exit_price: Decimal
    amount: Decimal
    leverage: Decimal
    stop_loss: Decimal
    take_profit: Decimal
    entry_fee: Decimal
    exit_fee: Decimal
    gross_pnl: Decimal
    net_pnl: Decimal
    outcome: Outcome
    exit_reason: ExitReason
    entry_time: datetime
    exit_time: datetime


@dataclass(frozen=True)
class TradeParams:
    """Parameters chosen by a decision policy for an accepted signal."""
    instrument_class: InstrumentClass
    mode: TradeMode
    amount: Decimal
    favorable_direction: Direction = Direction.LONG


@dataclass(frozen=True)
class ProbabilityAssessment:
    """Result of one probability evaluation."""
    base_probability: Decimal
    raw_probability: Decimal
    probability: Decimal
    cumulative_deviation: Decimal
    dampened: bool
    tradeable: bool
