from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from hedgebot.constants import INTERVAL_SECONDS
from hedgebot.domain.models import Candle
from hedgebot.domain.protocols import CandleStore, Gateway
from hedgebot.exceptions import OperationalError
from hedgebot.monitoring.logger import get_logger

logger = get_logger(__name__)

Gap = Tuple[datetime, datetime]


def interval_delta(interval: str) -> timedelta:
    return timedelta(seconds=INTERVAL_SECONDS[interval])


def detect_gaps(candles: Sequence[Candle], interval: str) -> List[Gap]:
    """
    Find missing ranges in a chronologically sorted candle sequence.

    Returns:
        List of ``(first_missing_open_time, next_present_open_time)`` ranges
    """
    step = interval_delta(interval)
    gaps: List[Gap] = []
    for prev, curr in zip(candles, candles[1:]):
        expected = prev.open_time + step
        if curr.open_time > expected:
            gaps.append((expected, curr.open_time))
    return gaps


def merge_candles(*batches: Sequence[Candle]) -> List[Candle]:
    """Merge batches by open time (later batches win), sorted ascending."""
    by_time: Dict[datetime, Candle] = {}
    for batch in batches:
        for candle in batch:
            by_time[candle.open_time] = candle
    return [by_time[t] for t in sorted(by_time)]


class CandleManager:
    """
    Rolling candle window for one symbol/interval.

    History is loaded from the candle store, missing ranges are fetched
    from the gateway and written back, and live candles are appended as
    they close. Gaps are always logged; backfill failures are logged and
    the window continues with what it has.
    """

    def __init__(
        self,
        gateway: Gateway,
        store: CandleStore,
        symbol: str,
        interval: str,
        lookback_days: int = 3,
        max_candles: int = 1000,
    ):
        self.gateway = gateway
        self.store = store
        self.symbol = symbol
        self.interval = interval
        self.lookback_days = lookback_days
        self.max_candles = max_candles
        self.step = interval_delta(interval)
        self.candles: List[Candle] = []

    async def initialize(self, now: Optional[datetime] = None) -> int:
        """
        Hydrate the window from the store and backfill anything missing.

        Returns:
            Number of candles in the window
        """
        now = now or datetime.now(timezone.utc)
        start = now - timedelta(days=self.lookback_days)
        # Only fully closed candles: the one opening at floor(now) is still live
        end = self._floor(now)

        logger.info(
            "Hydrating candle window",
            symbol=self.symbol,
            interval=self.interval,
            start=start.isoformat(),
            end=end.isoformat(),
        )

        try:
            stored = await self.store.fetch_range(self.symbol, self.interval, start, end)
        except Exception as e:
            logger.error("Candle store read failed", symbol=self.symbol, error=str(e))
            stored = []

        missing: List[Gap] = []
        if not stored:
            missing.append((start, end))
        else:
            if stored[0].open_time - start >= self.step:
                missing.append((start, stored[0].open_time))
            missing.extend(detect_gaps(stored, self.interval))
            tail_start = stored[-1].open_time + self.step
            if tail_start < end:
                missing.append((tail_start, end))

        fetched: List[Candle] = []
        for gap_start, gap_end in missing:
            fetched.extend(await self._fetch_range(gap_start, gap_end))

        await self._persist(fetched)
        self.candles = merge_candles(stored, fetched)[-self.max_candles:]

        remaining = detect_gaps(self.candles, self.interval)
        if remaining:
            logger.warning(
                "Candle gaps remain after backfill",
                symbol=self.symbol,
                interval=self.interval,
                gaps=len(remaining),
                first_gap=remaining[0][0].isoformat(),
            )

        logger.info(
            "Hydration complete",
            symbol=self.symbol,
            interval=self.interval,
            stored=len(stored),
            backfilled=len(fetched),
            window=len(self.candles),
        )
        return len(self.candles)

    async def backfill(self, start: datetime, end: datetime) -> int:
        """
        Fetch ``[start, end)`` from the gateway and upsert it into the store.

        Returns:
            Number of candles written
        """
        candles = await self._fetch_range(start, end)
        return await self._persist(candles)

    async def receive_live_candle(self, candle: Candle) -> bool:
        """
        Ingest a closed candle from the live feed.

        A candle with the same open time as the latest replaces it; older
        candles are ignored. A jump over missing candles triggers a backfill
        of the gap before the new candle is appended.

        Returns:
            True if the window advanced
        """
        if candle.symbol != self.symbol or candle.interval != self.interval:
            return False

        if self.candles:
            last = self.candles[-1]
            if candle.open_time < last.open_time:
                return False
            if candle.open_time == last.open_time:
                self.candles[-1] = candle
                await self._persist([candle])
                return False

            expected = last.open_time + self.step
            if candle.open_time > expected:
                logger.warning(
                    "Live candle gap detected",
                    symbol=self.symbol,
                    interval=self.interval,
                    gap_start=expected.isoformat(),
                    gap_end=candle.open_time.isoformat(),
                )
                filled = await self._fetch_range(expected, candle.open_time)
                await self._persist(filled)
                self.candles = merge_candles(self.candles, filled)

        self.candles.append(candle)
        if len(self.candles) > self.max_candles:
            self.candles = self.candles[-self.max_candles:]
        await self._persist([candle])
        return True

    def window(self, size: Optional[int] = None) -> List[Candle]:
        """Most recent ``size`` candles (the whole window if None)."""
        if size is None:
            return list(self.candles)
        return self.candles[-size:]

    @property
    def latest(self) -> Optional[Candle]:
        return self.candles[-1] if self.candles else None

    def _floor(self, ts: datetime) -> datetime:
        seconds = int(self.step.total_seconds())
        epoch = int(ts.timestamp())
        return datetime.fromtimestamp(epoch - epoch % seconds, tz=timezone.utc)

    async def _fetch_range(self, start: datetime, end: datetime) -> List[Candle]:
        if start >= end:
            return []
        try:
            candles = await self.gateway.fetch_candles(self.symbol, self.interval, start, end)
        except OperationalError as e:
            logger.error(
                "Candle backfill failed",
                symbol=self.symbol,
                interval=self.interval,
                start=start.isoformat(),
                end=end.isoformat(),
                error=str(e),
            )
            return []
        logger.debug(
            "Candles backfilled",
            symbol=self.symbol,
            interval=self.interval,
            start=start.isoformat(),
            count=len(candles),
        )
        return candles

    async def _persist(self, candles: Sequence[Candle]) -> int:
        if not candles:
            return 0
        try:
            return await self.store.upsert(candles)
        except Exception as e:
            logger.error("Failed to persist candles", symbol=self.symbol, count=len(candles), error=str(e))
            return 0
