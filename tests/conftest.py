"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from hedgebot.config.config import Config
from hedgebot.domain.models import Candle, FeeRates, InstrumentClass, OrderReceipt, OrderSide
from hedgebot.execution.engine import TradingEngine
from hedgebot.execution.ledger import BalanceLedger
from hedgebot.storage.memory import InMemoryTradeHistoryStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


def make_candle(
    index: int,
    close: Decimal = Decimal("100"),
    symbol: str = "AVAX/USDT",
    interval: str = "1m",
    base: datetime = BASE_TIME,
) -> Candle:
    """1m candle ``index`` minutes after ``base``; high == close, low == close - 1."""
    open_time = base + timedelta(minutes=index)
    close = Decimal(str(close))
    return Candle(
        symbol=symbol,
        interval=interval,
        open_time=open_time,
        close_time=open_time + timedelta(seconds=59, milliseconds=999),
        open=close - Decimal("0.5"),
        high=close,
        low=close - Decimal("1"),
        close=close,
        volume=Decimal("10"),
    )


class FakeGateway:
    """
    In-memory Gateway.

    ``prices`` is consumed one value per ``get_latest_price`` call; after it
    is exhausted the last price repeats.
    """

    def __init__(
        self,
        price: Decimal = Decimal("100"),
        prices: Optional[List[Decimal]] = None,
        balances: Optional[Dict[str, Decimal]] = None,
        fee: Decimal = Decimal("0.001"),
    ):
        self.price = Decimal(str(price))
        self.prices = [Decimal(str(p)) for p in (prices or [])]
        self.balances = balances if balances is not None else {"USDT": Decimal("10000"), "AVAX": Decimal("100")}
        self.fee = Decimal(str(fee))
        self.candles: List[Candle] = []

        self.fee_error: Optional[Exception] = None
        self.price_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None
        self.order_error: Optional[Exception] = None

        self.orders: List[OrderReceipt] = []
        self.price_calls = 0
        self.closed = False

    async def get_balance(self, asset: str) -> Decimal:
        if self.balance_error:
            raise self.balance_error
        return self.balances.get(asset, Decimal("0"))

    async def get_latest_price(self, symbol: str, interval: str) -> Decimal:
        self.price_calls += 1
        if self.price_error:
            raise self.price_error
        if self.prices:
            self.price = self.prices.pop(0)
        return self.price

    async def get_fee(self, symbol: str, instrument_class: InstrumentClass) -> FeeRates:
        if self.fee_error:
            raise self.fee_error
        return FeeRates(maker=self.fee, taker=self.fee)

    async def submit_market_order(
        self,
        side: OrderSide,
        symbol: str,
        quantity: Decimal,
        instrument_class: InstrumentClass,
    ) -> OrderReceipt:
        if self.order_error:
            raise self.order_error
        receipt = OrderReceipt(
            order_id=f"order_{len(self.orders) + 1}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            status="closed",
            filled_price=self.price,
        )
        self.orders.append(receipt)
        return receipt

    async def fetch_candles(self, symbol: str, interval: str, start: datetime, end: datetime) -> List[Candle]:
        return [
            c for c in self.candles
            if c.symbol == symbol and c.interval == interval and start <= c.open_time < end
        ]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config():
    """Deterministic config: 1.5% SL, 6% TP, 2% trailing, 5x futures leverage."""
    return Config(
        exchange={"symbol": "AVAX/USDT", "base_asset": "AVAX", "quote_asset": "USDT"},
        risk={
            "stop_loss_pct": "1.5",
            "take_profit_pct": "6",
            "max_drawdown_pct": "2",
            "leverage": "5",
        },
        execution={"lock_timeout_seconds": 0.5, "monitor_interval_seconds": 0.05},
        strategy={"timeframe": "1m", "min_candles": 26, "signal_interval_seconds": 0.05},
        trading={"mode": "simulated", "instrument_class": "futures", "amount_pct": "0.1"},
        data={"database_url": "sqlite://", "history_lookback_days": 1},
        monitoring={"log_file": None},
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def history():
    return InMemoryTradeHistoryStore()


@pytest.fixture
def ledger():
    """Seeded with 10000 quote (real and simulated) and 100 base units."""
    ledger = BalanceLedger()
    ledger.seed(Decimal("10000"), Decimal("100"))
    return ledger


@pytest.fixture
def engine(config, gateway, history, ledger):
    return TradingEngine(config, gateway, history, ledger=ledger)
