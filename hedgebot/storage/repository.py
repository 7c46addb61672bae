"""
Repository layer: ORM models and the SQL-backed candle and trade stores.

The stores implement the async ``CandleStore`` / ``TradeHistoryStore``
protocols by running synchronous SQLAlchemy sessions in a worker thread.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Sequence

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from hedgebot.domain.models import (
    Allocation,
    Candle,
    Direction,
    ExitReason,
    InstrumentClass,
    Outcome,
    SettledTrade,
    TradeMode,
)
from hedgebot.monitoring.logger import get_logger
from hedgebot.storage.db import Base, Database

logger = get_logger(__name__)

PRICE = Numeric(precision=28, scale=10)
MONEY = Numeric(precision=28, scale=10)


def _to_utc(ts: datetime) -> datetime:
    """Stored datetimes are naive UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _to_naive_utc(ts: datetime) -> datetime:
    return _to_utc(ts).replace(tzinfo=None)


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ORM Models
class CandleModel(Base):
    """ORM model for OHLCV candles."""
    __tablename__ = "candles"
    __table_args__ = (
        Index('idx_candle_lookup', 'symbol', 'interval', 'open_time'),
        UniqueConstraint('symbol', 'interval', 'open_time', name='uq_candle_key'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False)
    interval = Column(String, nullable=False)
    open_time = Column(DateTime, nullable=False)
    close_time = Column(DateTime, nullable=False)
    open = Column(PRICE, nullable=False)
    high = Column(PRICE, nullable=False)
    low = Column(PRICE, nullable=False)
    close = Column(PRICE, nullable=False)
    volume = Column(PRICE, nullable=False)

    def to_domain(self) -> Candle:
        return Candle(
            symbol=self.symbol,
            interval=self.interval,
            open_time=_to_utc(self.open_time),
            close_time=_to_utc(self.close_time),
            open=_dec(self.open),
            high=_dec(self.high),
            low=_dec(self.low),
            close=_dec(self.close),
            volume=_dec(self.volume),
        )


class SettledTradeModel(Base):
    """ORM model for settled positions."""
    __tablename__ = "settled_trades"
    __table_args__ = (
        Index('idx_settled_exit_time', 'exit_time'),
        Index('idx_settled_symbol', 'symbol', 'exit_time'),
    )

    position_id = Column(String, primary_key=True)
    symbol = Column(String, nullable=False)
    direction = Column(String, nullable=False)
    instrument_class = Column(String, nullable=False)
    mode = Column(String, nullable=False)
    allocation = Column(String, nullable=False)
    is_reallocated = Column(Boolean, nullable=False, default=False)

    entry_price = Column(PRICE, nullable=False)
    exit_price = Column(PRICE, nullable=False)
    amount = Column(PRICE, nullable=False)
    leverage = Column(Numeric(precision=10, scale=2), nullable=False)
    stop_loss = Column(PRICE, nullable=False)
    take_profit = Column(PRICE, nullable=False)

    entry_fee = Column(MONEY, nullable=False)
    exit_fee = Column(MONEY, nullable=False)
    gross_pnl = Column(MONEY, nullable=False)
    net_pnl = Column(MONEY, nullable=False)
    outcome = Column(String, nullable=False)
    exit_reason = Column(String, nullable=False)

    entry_time = Column(DateTime, nullable=False)
    exit_time = Column(DateTime, nullable=False)

    @classmethod
    def from_domain(cls, trade: SettledTrade) -> "SettledTradeModel":
        return cls(
            position_id=trade.position_id,
            symbol=trade.symbol,
            direction=trade.direction.value,
            instrument_class=trade.instrument_class.value,
            mode=trade.mode.value,
            allocation=trade.allocation.value,
            is_reallocated=trade.is_reallocated,
            entry_price=trade.entry_price,
            exit_price=trade.exit_price,
            amount=trade.amount,
            leverage=trade.leverage,
            stop_loss=trade.stop_loss,
            take_profit=trade.take_profit,
            entry_fee=trade.entry_fee,
            exit_fee=trade.exit_fee,
            gross_pnl=trade.gross_pnl,
            net_pnl=trade.net_pnl,
            outcome=trade.outcome.value,
            exit_reason=trade.exit_reason.value,
            entry_time=_to_naive_utc(trade.entry_time),
            exit_time=_to_naive_utc(trade.exit_time),
        )

    def to_domain(self) -> SettledTrade:
        return SettledTrade(
            position_id=self.position_id,
            symbol=self.symbol,
            direction=Direction(self.direction),
            instrument_class=InstrumentClass(self.instrument_class),
            mode=TradeMode(self.mode),
            allocation=Allocation(self.allocation),
            is_reallocated=bool(self.is_reallocated),
            entry_price=_dec(self.entry_price),
            exit_price=_dec(self.exit_price),
            amount=_dec(self.amount),
            leverage=_dec(self.leverage),
            stop_loss=_dec(self.stop_loss),
            take_profit=_dec(self.take_profit),
            entry_fee=_dec(self.entry_fee),
            exit_fee=_dec(self.exit_fee),
            gross_pnl=_dec(self.gross_pnl),
            net_pnl=_dec(self.net_pnl),
            outcome=Outcome(self.outcome),
            exit_reason=ExitReason(self.exit_reason),
            entry_time=_to_utc(self.entry_time),
            exit_time=_to_utc(self.exit_time),
        )


class SqlCandleStore:
    """Candle store over the ``candles`` table."""

    def __init__(self, db: Database):
        self.db = db

    async def fetch_range(
        self, symbol: str, interval: str, start: datetime, end: datetime
    ) -> List[Candle]:
        """Candles with ``start <= open_time < end``, ascending."""
        return await asyncio.to_thread(self.get_candles, symbol, interval, start, end)

    async def upsert(self, candles: Sequence[Candle]) -> int:
        return await asyncio.to_thread(self.save_candles_bulk, list(candles))

    def get_candles(self, symbol: str, interval: str, start: datetime, end: datetime) -> List[Candle]:
        with self.db.get_session() as session:
            rows = (
                session.query(CandleModel)
                .filter(
                    CandleModel.symbol == symbol,
                    CandleModel.interval == interval,
                    CandleModel.open_time >= _to_naive_utc(start),
                    CandleModel.open_time < _to_naive_utc(end),
                )
                .order_by(CandleModel.open_time.asc())
                .all()
            )
            return [row.to_domain() for row in rows]

    def save_candles_bulk(self, candles: List[Candle]) -> int:
        """
        Upsert candles keyed by (symbol, interval, open_time).

        Returns:
            Number of candles processed
        """
        if not candles:
            return 0

        values = [
            {
                "symbol": c.symbol,
                "interval": c.interval,
                "open_time": _to_naive_utc(c.open_time),
                "close_time": _to_naive_utc(c.close_time),
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ]

        insert = sqlite_insert if self.db.is_sqlite else pg_insert
        with self.db.get_session() as session:
            stmt = insert(CandleModel).values(values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["symbol", "interval", "open_time"],
                set_={
                    "close_time": stmt.excluded.close_time,
                    "open": stmt.excluded.open,
                    "high": stmt.excluded.high,
                    "low": stmt.excluded.low,
                    "close": stmt.excluded.close,
                    "volume": stmt.excluded.volume,
                },
            )
            session.execute(stmt)

        logger.debug("Candles upserted", count=len(values), symbol=candles[0].symbol)
        return len(values)


class SqlTradeHistoryStore:
    """Trade history over the ``settled_trades`` table."""

    def __init__(self, db: Database):
        self.db = db

    async def record_settled_trade(self, trade: SettledTrade) -> None:
        await asyncio.to_thread(self.save_settled_trade, trade)

    async def query_recent(self, limit: int) -> List[SettledTrade]:
        """Most recent first."""
        return await asyncio.to_thread(self.get_recent_trades, limit)

    def save_settled_trade(self, trade: SettledTrade) -> None:
        with self.db.get_session() as session:
            session.merge(SettledTradeModel.from_domain(trade))
        logger.debug("Settled trade saved", position_id=trade.position_id, outcome=trade.outcome.value)

    def get_recent_trades(self, limit: int) -> List[SettledTrade]:
        with self.db.get_session() as session:
            rows = (
                session.query(SettledTradeModel)
                .order_by(SettledTradeModel.exit_time.desc())
                .limit(limit)
                .all()
            )
            return [row.to_domain() for row in rows]
