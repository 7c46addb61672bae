"""
Integration test: LiveTrading signal check, monitoring and shutdown with
a fake gateway and in-memory stores.
"""
import asyncio
from decimal import Decimal

import pytest

from hedgebot.domain.models import Allocation, Direction, IndicatorSnapshot
from hedgebot.exceptions import FeedExhaustedError
from hedgebot.live.live_trading import LiveTrading
from hedgebot.storage.memory import InMemoryCandleStore, InMemoryTradeHistoryStore
from tests.conftest import FakeGateway, make_candle


class FixedIndicators:
    """IndicatorProvider returning a preset snapshot."""

    required_candles = 26

    def __init__(self, snapshot: IndicatorSnapshot = IndicatorSnapshot()):
        self.snapshot_value = snapshot
        self.calls = 0

    def snapshot(self, candles):
        self.calls += 1
        return self.snapshot_value


class ExhaustedFeed:
    """Feed whose reconnects are already used up."""

    def __init__(self):
        self.stopped = False

    async def run(self):
        await asyncio.sleep(0)
        raise FeedExhaustedError("no connection")

    async def stop(self):
        self.stopped = True


def _live(config, gateway, indicators=None, feed=None):
    return LiveTrading(
        config,
        gateway=gateway,
        history=InMemoryTradeHistoryStore(),
        candle_store=InMemoryCandleStore(),
        indicators=indicators or FixedIndicators(),
        feed=feed or ExhaustedFeed(),
    )


@pytest.fixture
def gateway():
    return FakeGateway(price=Decimal("100"))


@pytest.fixture
def live(config, gateway):
    live = _live(config, gateway)
    live.candles.candles = [make_candle(i) for i in range(40)]
    return live


@pytest.mark.asyncio
async def test_accepted_signal_opens_hedge(live):
    # Neutral snapshot on a 75 base scores 70: inside the 70-80 band
    assert await live.check_signal() is True

    positions = sorted(live.engine.active_positions.values(), key=lambda p: p.allocation.value)
    assert [p.allocation for p in positions] == [Allocation.FAVORABLE, Allocation.UNFAVORABLE]
    assert positions[0].direction == Direction.LONG
    # 10% of the 10000 seeded balance at 100 per unit
    assert sum(p.amount for p in positions) == Decimal("10")
    assert live.engine.ledger.seeded is True


@pytest.mark.asyncio
async def test_second_signal_waits_for_open_positions(live):
    assert await live.check_signal() is True
    assert await live.check_signal() is False
    assert len(live.engine.active_positions) == 2


@pytest.mark.asyncio
async def test_out_of_band_signal_is_rejected(config, gateway):
    live = _live(config, gateway, indicators=FixedIndicators(IndicatorSnapshot(rsi=Decimal("85"))))
    live.candles.candles = [make_candle(i) for i in range(40)]

    assert await live.check_signal() is False
    assert live.engine.active_positions == {}


@pytest.mark.asyncio
async def test_insufficient_candles_skip_evaluation(config, gateway):
    indicators = FixedIndicators()
    live = _live(config, gateway, indicators=indicators)
    live.candles.candles = [make_candle(i) for i in range(5)]

    assert await live.check_signal() is False
    assert indicators.calls == 0


@pytest.mark.asyncio
async def test_indicator_warmup_overrides_low_min_candles(config, gateway):
    config.strategy.min_candles = 5
    indicators = FixedIndicators()
    live = _live(config, gateway, indicators=indicators)
    live.candles.candles = [make_candle(i) for i in range(10)]

    # 10 candles satisfy min_candles but not the 26-candle indicator warm-up
    assert await live.check_signal() is False
    assert indicators.calls == 0
    assert live.engine.active_positions == {}


@pytest.mark.asyncio
async def test_session_ends_when_auto_trade_disabled(config, gateway):
    config.trading.auto_trade_enabled = False
    gateway.fee = Decimal("0")
    live = _live(config, gateway)
    live.candles.candles = [make_candle(i) for i in range(40)]
    await live.check_signal()

    for position_id in list(live.engine.active_positions):
        await live.engine.close_position(position_id, Decimal("100"))

    assert live._stop_event.is_set()


@pytest.mark.asyncio
async def test_cycle_completion_requests_new_signal(live, gateway):
    gateway.fee = Decimal("0")
    await live.check_signal()
    live.signal_requested = False

    for position_id in list(live.engine.active_positions):
        await live.engine.close_position(position_id, Decimal("100"))

    assert live.signal_requested is True
    assert not live._stop_event.is_set()


@pytest.mark.asyncio
async def test_live_candle_triggers_monitor_pass(live, gateway):
    await live.check_signal()
    gateway.price = Decimal("106")

    await live.on_candle(make_candle(40, Decimal("106")))

    assert live.candles.latest.close == Decimal("106")
    # Favorable long hit take-profit, unfavorable short hit its stop and
    # was reallocated into a new favorable long
    assert len(live.engine.history.trades) == 2
    remaining = list(live.engine.active_positions.values())
    assert len(remaining) == 1
    assert remaining[0].allocation == Allocation.FAVORABLE
    assert remaining[0].entry_price == Decimal("106")


@pytest.mark.asyncio
async def test_run_shuts_down_when_feed_exhausted(config, gateway):
    feed = ExhaustedFeed()
    live = _live(config, gateway, feed=feed)

    await asyncio.wait_for(live.run(install_signal_handlers=False), timeout=5)

    assert feed.stopped is True
    assert gateway.closed is True
    assert live.active is False

    # Idempotent
    await live.shutdown()
