"""
Retrying gateway decorator.

Wraps any Gateway so that every call is retried with exponential backoff
on transient errors. Retries exhausted -> the last error propagates to
the caller, which decides the local fallback.
"""
from datetime import datetime
from decimal import Decimal
from typing import List

from hedgebot.domain.models import Candle, FeeRates, InstrumentClass, OrderReceipt, OrderSide
from hedgebot.domain.protocols import Gateway
from hedgebot.exceptions import OperationalError
from hedgebot.utils.retry import retry_on_transient_errors


class RetryingGateway:
    """Gateway wrapper applying ``retry_on_transient_errors`` to each call."""

    def __init__(
        self,
        inner: Gateway,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_backoff: float = 10.0,
        jitter: float = 0.5,
    ):
        self.inner = inner
        retry = retry_on_transient_errors(
            max_retries=max_retries,
            base_delay=base_delay,
            max_backoff=max_backoff,
            jitter=jitter,
            transient_errors=(OperationalError,),
        )
        self._get_balance = retry(inner.get_balance)
        self._get_latest_price = retry(inner.get_latest_price)
        self._get_fee = retry(inner.get_fee)
        self._fetch_candles = retry(inner.fetch_candles)
        # Orders are not idempotent: a retried timeout could double-fill
        self._submit_market_order = inner.submit_market_order

    @classmethod
    def from_config(cls, inner: Gateway, exchange_config) -> "RetryingGateway":
        return cls(
            inner,
            max_retries=exchange_config.max_retries,
            base_delay=exchange_config.retry_base_delay,
            max_backoff=exchange_config.retry_max_backoff,
        )

    async def get_balance(self, asset: str) -> Decimal:
        return await self._get_balance(asset)

    async def get_latest_price(self, symbol: str, interval: str) -> Decimal:
        return await self._get_latest_price(symbol, interval)

    async def get_fee(self, symbol: str, instrument_class: InstrumentClass) -> FeeRates:
        return await self._get_fee(symbol, instrument_class)

    async def submit_market_order(
        self,
        side: OrderSide,
        symbol: str,
        quantity: Decimal,
        instrument_class: InstrumentClass,
    ) -> OrderReceipt:
        return await self._submit_market_order(side, symbol, quantity, instrument_class)

    async def fetch_candles(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> List[Candle]:
        return await self._fetch_candles(symbol, interval, start, end)

    async def close(self) -> None:
        await self.inner.close()
