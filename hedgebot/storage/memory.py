"""
In-memory stores for simulated sessions and tests.
"""
from datetime import datetime
from typing import Dict, List, Sequence

from hedgebot.domain.models import Candle, SettledTrade


class InMemoryTradeHistoryStore:
    """Trade history kept in a list, newest appended last."""

    def __init__(self):
        self.trades: List[SettledTrade] = []

    async def record_settled_trade(self, trade: SettledTrade) -> None:
        self.trades.append(trade)

    async def query_recent(self, limit: int) -> List[SettledTrade]:
        """Most recent first."""
        ordered = sorted(self.trades, key=lambda t: t.exit_time, reverse=True)
        return ordered[:limit]


class InMemoryCandleStore:
    """Candle store keyed by (symbol, interval, open_time)."""

    def __init__(self):
        self._candles: Dict[tuple, Candle] = {}

    async def fetch_range(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> List[Candle]:
        rows = [
            c for (s, i, t), c in self._candles.items()
            if s == symbol and i == interval and start <= t < end
        ]
        return sorted(rows, key=lambda c: c.open_time)

    async def upsert(self, candles: Sequence[Candle]) -> int:
        for c in candles:
            self._candles[(c.symbol, c.interval, c.open_time)] = c
        return len(candles)

    def __len__(self) -> int:
        return len(self._candles)
