"""
Binance WebSocket kline feed.

Connects to ``wss://stream.binance.com:9443/ws/<symbol>@kline_<interval>``
and pushes each CLOSED candle to an async callback. In-progress kline
updates are ignored. On disconnect it reconnects with exponential
backoff; once ``max_retries`` consecutive attempts fail it raises
``FeedExhaustedError`` so the trading loop can shut down.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional

import websockets

from hedgebot.constants import BINANCE_WS_BASE_URL
from hedgebot.domain.models import Candle
from hedgebot.exceptions import FeedExhaustedError
from hedgebot.monitoring.logger import get_logger

logger = get_logger(__name__)

CandleCallback = Callable[[Candle], Awaitable[None]]


def stream_name(symbol: str, interval: str) -> str:
    """AVAX/USDT, 1m -> avaxusdt@kline_1m"""
    return f"{symbol.replace('/', '').lower()}@kline_{interval}"


def parse_kline_message(msg: dict, symbol: str) -> Optional[Candle]:
    """
    Build a Candle from a kline event, or None if it is not a closed kline.
    """
    if msg.get("e") != "kline":
        return None
    k = msg.get("k") or {}
    if not k.get("x"):
        return None
    try:
        return Candle(
            symbol=symbol,
            interval=k["i"],
            open_time=datetime.fromtimestamp(k["t"] / 1000, tz=timezone.utc),
            close_time=datetime.fromtimestamp(k["T"] / 1000, tz=timezone.utc),
            open=Decimal(str(k["o"])),
            high=Decimal(str(k["h"])),
            low=Decimal(str(k["l"])),
            close=Decimal(str(k["c"])),
            volume=Decimal(str(k["v"])),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning("Malformed kline message", error=str(e))
        return None


class BinanceCandleFeed:
    """Streams closed klines for one symbol/interval into a callback."""

    def __init__(
        self,
        symbol: str,
        interval: str,
        on_candle: CandleCallback,
        max_retries: int = 10,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        base_url: str = BINANCE_WS_BASE_URL,
    ):
        self._symbol = symbol
        self._interval = interval
        self._on_candle = on_candle
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._url = f"{base_url}/{stream_name(symbol, interval)}"
        self._ws: Optional[websockets.ClientConnection] = None
        self._running = False
        self._retry_count = 0
        self._received_count = 0
        logger.info("BinanceCandleFeed initialized", url=self._url)

    @property
    def received_count(self) -> int:
        return self._received_count

    def backoff_for(self, retry: int) -> float:
        """Delay before reconnect attempt ``retry`` (1-based)."""
        return min(self._backoff_base * (2 ** (retry - 1)), self._backoff_cap)

    async def run(self) -> None:
        """
        Connect and stream with auto-reconnect until stopped.

        Raises:
            FeedExhaustedError: after ``max_retries`` consecutive failures
        """
        self._running = True
        try:
            while self._running:
                try:
                    await self._connect_and_stream()
                    if self._running:
                        raise ConnectionError("stream closed by server")
                except asyncio.CancelledError:
                    logger.info("BinanceCandleFeed cancelled")
                    raise
                except Exception as e:
                    if not self._running:
                        break
                    self._retry_count += 1
                    if self._retry_count > self._max_retries:
                        logger.error("WS_CANDLE_FEED_MAX_RETRIES", retries=self._max_retries, error=str(e))
                        raise FeedExhaustedError(
                            f"Candle feed failed after {self._max_retries} reconnect attempts: {e}"
                        ) from e
                    backoff = self.backoff_for(self._retry_count)
                    logger.warning(
                        "WS_CANDLE_FEED_DISCONNECT",
                        error=str(e),
                        error_type=type(e).__name__,
                        retry=self._retry_count,
                        max_retries=self._max_retries,
                        backoff_s=backoff,
                    )
                    await asyncio.sleep(backoff)
        finally:
            self._running = False
            logger.info("BinanceCandleFeed stopped", total_received=self._received_count)

    async def stop(self) -> None:
        self._running = False
        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug("WS close failed", error=str(e))

    async def _connect_and_stream(self) -> None:
        async with websockets.connect(
            self._url,
            ping_interval=30,
            ping_timeout=10,
            close_timeout=5,
        ) as ws:
            self._ws = ws
            self._retry_count = 0
            logger.info("WS_CANDLE_FEED_CONNECTED", url=self._url)

            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except (json.JSONDecodeError, ValueError):
                    continue
                await self._handle_message(msg)

    async def _handle_message(self, msg: dict) -> None:
        candle = parse_kline_message(msg, self._symbol)
        if candle is None:
            return
        self._received_count += 1
        await self._on_candle(candle)
