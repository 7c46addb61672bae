"""
Binance REST client for spot and USD-M futures markets.

Implements the Gateway protocol on top of ccxt's async API. Every ccxt
failure is re-raised as ``GatewayError`` (``RateLimitError`` for rate
limits) so callers never depend on ccxt's exception types.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import ccxt
import ccxt.async_support as ccxt_async

from hedgebot.constants import INTERVAL_SECONDS
from hedgebot.domain.models import Candle, FeeRates, InstrumentClass, OrderReceipt, OrderSide
from hedgebot.exceptions import GatewayError, RateLimitError
from hedgebot.monitoring.logger import get_logger

logger = get_logger(__name__)

OHLCV_PAGE_LIMIT = 1000


def _wrap_ccxt_error(operation: str, exc: Exception) -> GatewayError:
    if isinstance(exc, ccxt.RateLimitExceeded) or isinstance(exc, ccxt.DDoSProtection):
        return RateLimitError(f"{operation}: {exc}")
    return GatewayError(f"{operation}: {type(exc).__name__}: {exc}")


def ohlcv_row_to_candle(symbol: str, interval: str, row: list) -> Candle:
    """Convert a ccxt ``[ms, open, high, low, close, volume]`` row to a Candle."""
    timestamp_ms, open_price, high, low, close, volume = row[:6]
    open_time = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    close_time = open_time + timedelta(seconds=INTERVAL_SECONDS[interval]) - timedelta(milliseconds=1)
    return Candle(
        symbol=symbol,
        interval=interval,
        open_time=open_time,
        close_time=close_time,
        open=Decimal(str(open_price)),
        high=Decimal(str(high)),
        low=Decimal(str(low)),
        close=Decimal(str(close)),
        volume=Decimal(str(volume)),
    )


class BinanceClient:
    """
    Binance spot + USD-M futures client (ccxt async).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        use_testnet: bool = False,
        request_timeout_seconds: int = 30,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.use_testnet = use_testnet
        self.request_timeout_seconds = request_timeout_seconds

        self.exchange = None
        self.futures_exchange = None

        logger.info("Binance client configuration loaded", testnet=use_testnet)

    def has_valid_credentials(self) -> bool:
        """Check if API keys are present."""
        return bool(self.api_key and self.api_secret and not self.api_key.startswith("${"))

    async def initialize(self):
        """
        Lazy initialization of CCXT exchanges.
        MUST be called inside the running event loop of the target process.
        """
        params = {
            'enableRateLimit': True,
            'timeout': self.request_timeout_seconds * 1000,
        }
        if self.has_valid_credentials():
            params['apiKey'] = self.api_key
            params['secret'] = self.api_secret

        if not self.exchange:
            self.exchange = ccxt_async.binance(dict(params))
            if self.use_testnet:
                self.exchange.set_sandbox_mode(True)

        if not self.futures_exchange:
            self.futures_exchange = ccxt_async.binanceusdm(dict(params))
            if self.use_testnet:
                self.futures_exchange.set_sandbox_mode(True)

        logger.info("BinanceClient initialized (Lazy)")

    def _exchange_for(self, instrument_class: InstrumentClass):
        return self.futures_exchange if instrument_class == InstrumentClass.FUTURES else self.exchange

    @staticmethod
    def futures_symbol(symbol: str) -> str:
        """Unified USD-M perpetual symbol, e.g. AVAX/USDT -> AVAX/USDT:USDT."""
        if ":" in symbol:
            return symbol
        quote = symbol.split("/")[-1]
        return f"{symbol}:{quote}"

    def _symbol_for(self, symbol: str, instrument_class: InstrumentClass) -> str:
        return self.futures_symbol(symbol) if instrument_class == InstrumentClass.FUTURES else symbol

    async def get_balance(self, asset: str) -> Decimal:
        """Free spot balance of ``asset``."""
        if not self.exchange:
            await self.initialize()
        try:
            balance = await self.exchange.fetch_balance()
        except ccxt.BaseError as e:
            logger.error("Failed to fetch balance", asset=asset, error=str(e))
            raise _wrap_ccxt_error("fetch_balance", e) from e
        free = (balance.get("free") or {}).get(asset)
        return Decimal(str(free)) if free is not None else Decimal("0")

    async def get_latest_price(self, symbol: str, interval: str) -> Decimal:
        """Close of the most recent candle for ``interval``."""
        if not self.exchange:
            await self.initialize()
        try:
            ohlcv = await self.exchange.fetch_ohlcv(symbol, interval, limit=1)
        except ccxt.BaseError as e:
            raise _wrap_ccxt_error("fetch_ohlcv", e) from e
        if not ohlcv:
            raise GatewayError(f"No price data for {symbol} {interval}")
        return Decimal(str(ohlcv[-1][4]))

    async def get_fee(self, symbol: str, instrument_class: InstrumentClass) -> FeeRates:
        """Account maker/taker rates for ``symbol``."""
        if not self.exchange:
            await self.initialize()
        exchange = self._exchange_for(instrument_class)
        try:
            fee = await exchange.fetch_trading_fee(self._symbol_for(symbol, instrument_class))
        except ccxt.BaseError as e:
            raise _wrap_ccxt_error("fetch_trading_fee", e) from e
        return FeeRates(maker=Decimal(str(fee["maker"])), taker=Decimal(str(fee["taker"])))

    async def submit_market_order(
        self,
        side: OrderSide,
        symbol: str,
        quantity: Decimal,
        instrument_class: InstrumentClass,
    ) -> OrderReceipt:
        """Place a market order."""
        if not self.exchange:
            await self.initialize()
        exchange = self._exchange_for(instrument_class)
        unified = self._symbol_for(symbol, instrument_class)
        try:
            order = await exchange.create_order(unified, 'market', side.value, float(quantity))
        except ccxt.BaseError as e:
            logger.error(
                "Order placement failed",
                symbol=unified,
                side=side.value,
                quantity=str(quantity),
                error=str(e),
            )
            raise _wrap_ccxt_error("create_order", e) from e

        filled = order.get("average") or order.get("price")
        return OrderReceipt(
            order_id=str(order.get("id")),
            symbol=unified,
            side=side,
            quantity=Decimal(str(order.get("amount") or quantity)),
            status=str(order.get("status") or "unknown"),
            filled_price=Decimal(str(filled)) if filled is not None else None,
        )

    async def fetch_candles(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> List[Candle]:
        """Closed spot candles with open time in [start, end), paginated."""
        if not self.exchange:
            await self.initialize()

        candles: List[Candle] = []
        since = int(start.timestamp() * 1000)
        end_ms = int(end.timestamp() * 1000)
        step_ms = INTERVAL_SECONDS[interval] * 1000

        while since < end_ms:
            try:
                rows = await asyncio.wait_for(
                    self.exchange.fetch_ohlcv(symbol, interval, since=since, limit=OHLCV_PAGE_LIMIT),
                    timeout=self.request_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise GatewayError(f"fetch_ohlcv timed out for {symbol} {interval}") from e
            except ccxt.BaseError as e:
                logger.error("Failed to fetch OHLCV", symbol=symbol, interval=interval, error=str(e))
                raise _wrap_ccxt_error("fetch_ohlcv", e) from e

            if not rows:
                break
            for row in rows:
                if row[0] >= end_ms:
                    break
                candles.append(ohlcv_row_to_candle(symbol, interval, row))
            last_ms = rows[-1][0]
            if last_ms + step_ms <= since:
                break
            since = last_ms + step_ms

        logger.debug("Fetched OHLCV", symbol=symbol, interval=interval, count=len(candles))
        return candles

    async def close(self):
        """Cleanup resources."""
        if self.futures_exchange:
            await self.futures_exchange.close()
        if self.exchange:
            await self.exchange.close()
