"""
Tests for candle gap detection, hydration and live ingestion.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from hedgebot.data.candle_manager import CandleManager, detect_gaps, merge_candles
from hedgebot.exceptions import GatewayError
from hedgebot.storage.memory import InMemoryCandleStore
from tests.conftest import BASE_TIME, FakeGateway, make_candle


class FailingFetchGateway(FakeGateway):
    async def fetch_candles(self, symbol, interval, start, end):
        raise GatewayError("klines unavailable")


@pytest.fixture
def store():
    return InMemoryCandleStore()


@pytest.fixture
def gateway():
    gateway = FakeGateway()
    gateway.candles = [make_candle(i, Decimal(100 + i)) for i in range(10)]
    return gateway


@pytest.fixture
def manager(gateway, store):
    return CandleManager(gateway, store, "AVAX/USDT", "1m", lookback_days=1, max_candles=50)


NOW = BASE_TIME + timedelta(minutes=10, seconds=30)


def test_detect_gaps():
    candles = [make_candle(0), make_candle(1), make_candle(4), make_candle(5)]

    gaps = detect_gaps(candles, "1m")

    assert gaps == [(BASE_TIME + timedelta(minutes=2), BASE_TIME + timedelta(minutes=4))]
    assert detect_gaps(candles[:2], "1m") == []


def test_merge_candles_later_batch_wins():
    merged = merge_candles(
        [make_candle(1, Decimal("1")), make_candle(0, Decimal("1"))],
        [make_candle(1, Decimal("2"))],
    )

    assert [c.open_time for c in merged] == [BASE_TIME, BASE_TIME + timedelta(minutes=1)]
    assert merged[1].close == Decimal("2")


@pytest.mark.asyncio
async def test_initialize_backfills_empty_store(manager, store):
    count = await manager.initialize(now=NOW)

    assert count == 10
    assert len(store) == 10
    assert manager.latest.close == Decimal("109")


@pytest.mark.asyncio
async def test_initialize_fills_internal_gaps(manager, store, gateway):
    await store.upsert([c for i, c in enumerate(gateway.candles) if i not in (3, 4, 5)])

    count = await manager.initialize(now=NOW)

    assert count == 10
    assert detect_gaps(manager.window(), "1m") == []
    assert len(store) == 10


@pytest.mark.asyncio
async def test_initialize_excludes_open_candle(manager, gateway):
    gateway.candles.append(make_candle(10))

    await manager.initialize(now=NOW)

    assert manager.latest.open_time == BASE_TIME + timedelta(minutes=9)


@pytest.mark.asyncio
async def test_initialize_tolerates_gateway_failure(store):
    await store.upsert([make_candle(i) for i in range(5)])
    manager = CandleManager(FailingFetchGateway(), store, "AVAX/USDT", "1m", lookback_days=1)

    assert await manager.initialize(now=NOW) == 5


@pytest.mark.asyncio
async def test_window_is_trimmed_to_max_candles(gateway, store):
    manager = CandleManager(gateway, store, "AVAX/USDT", "1m", lookback_days=1, max_candles=4)

    await manager.initialize(now=NOW)

    assert len(manager.window()) == 4
    assert manager.window(2)[-1].open_time == BASE_TIME + timedelta(minutes=9)


@pytest.mark.asyncio
async def test_live_candle_appends_and_persists(manager, store):
    await manager.initialize(now=NOW)

    assert await manager.receive_live_candle(make_candle(10, Decimal("111"))) is True
    assert manager.latest.close == Decimal("111")
    assert len(store) == 11


@pytest.mark.asyncio
async def test_live_candle_replaces_same_open_time(manager):
    await manager.initialize(now=NOW)

    assert await manager.receive_live_candle(make_candle(9, Decimal("120"))) is False
    assert manager.latest.close == Decimal("120")
    assert len(manager.window()) == 10


@pytest.mark.asyncio
async def test_live_candle_ignores_stale_and_foreign(manager):
    await manager.initialize(now=NOW)

    assert await manager.receive_live_candle(make_candle(3)) is False
    assert await manager.receive_live_candle(make_candle(10, symbol="BTC/USDT")) is False
    assert await manager.receive_live_candle(make_candle(10, interval="5m")) is False
    assert len(manager.window()) == 10


@pytest.mark.asyncio
async def test_live_candle_gap_is_backfilled(manager, gateway):
    await manager.initialize(now=NOW)
    gateway.candles.extend(make_candle(i, Decimal(100 + i)) for i in range(10, 13))

    assert await manager.receive_live_candle(make_candle(13, Decimal("113"))) is True

    window = manager.window()
    assert len(window) == 14
    assert detect_gaps(window, "1m") == []


@pytest.mark.asyncio
async def test_backfill_writes_range(gateway, store):
    manager = CandleManager(gateway, store, "AVAX/USDT", "1m")

    written = await manager.backfill(BASE_TIME, BASE_TIME + timedelta(minutes=5))

    assert written == 5
    assert len(store) == 5
