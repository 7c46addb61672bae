"""
Domain protocols (interfaces) for dependency inversion.

These protocols define the contracts that the exchange, storage and
indicator layers must implement, so the engine depends on abstractions
rather than on ccxt, SQLAlchemy or pandas directly. Tests substitute
in-memory fakes.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from hedgebot.domain.models import (
    Candle,
    FeeRates,
    IndicatorSnapshot,
    InstrumentClass,
    OrderReceipt,
    OrderSide,
    SettledTrade,
    TradeParams,
)


@runtime_checkable
class Gateway(Protocol):
    """
    Market data & execution gateway.

    Every method may raise ``GatewayError`` on network/API failure.
    """

    async def get_balance(self, asset: str) -> Decimal: ...

    async def get_latest_price(self, symbol: str, interval: str) -> Decimal: ...

    async def get_fee(self, symbol: str, instrument_class: InstrumentClass) -> FeeRates: ...

    async def submit_market_order(
        self,
        side: OrderSide,
        symbol: str,
        quantity: Decimal,
        instrument_class: InstrumentClass,
    ) -> OrderReceipt: ...

    async def fetch_candles(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> List[Candle]: ...

    async def close(self) -> None: ...


@runtime_checkable
class CandleStore(Protocol):
    """Historical candle persistence."""

    async def fetch_range(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> List[Candle]: ...

    async def upsert(self, candles: Sequence[Candle]) -> int: ...


@runtime_checkable
class IndicatorProvider(Protocol):
    """Pure function of a recent OHLCV window to an indicator snapshot."""

    @property
    def required_candles(self) -> int: ...

    def snapshot(self, candles: Sequence[Candle]) -> IndicatorSnapshot: ...


@runtime_checkable
class TradeHistoryStore(Protocol):
    """Settled trade records, most recent first on query."""

    async def record_settled_trade(self, trade: SettledTrade) -> None: ...

    async def query_recent(self, limit: int) -> List[SettledTrade]: ...


@runtime_checkable
class DecisionPolicy(Protocol):
    """Accept/reject decisions and trade parameters for a signal."""

    def should_accept_trade(self, probability: Decimal) -> bool: ...

    def choose_trade_parameters(
        self, entry_price: Decimal, available_real: Decimal, available_simulated: Decimal
    ) -> Optional[TradeParams]: ...
