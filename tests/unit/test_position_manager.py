import pytest
from decimal import Decimal

from hedgebot.domain.models import (
    Allocation,
    Direction,
    ExitReason,
    InstrumentClass,
    Position,
    TradeMode,
)
from hedgebot.execution.position_manager import ActionType, PositionManager


def _position(direction=Direction.LONG, stop_loss="98.5", take_profit="106", leverage="1"):
    return Position(
        id="trade_1",
        symbol="AVAX/USDT",
        entry_price=Decimal("100"),
        amount=Decimal("10"),
        stop_loss=Decimal(stop_loss),
        take_profit=Decimal(take_profit),
        direction=direction,
        instrument_class=InstrumentClass.FUTURES,
        mode=TradeMode.SIMULATED,
        allocation=Allocation.FAVORABLE,
        leverage=Decimal(leverage),
        fee_rate=Decimal("0.001"),
        entry_fee=Decimal("1"),
        locked_capital=Decimal("1001"),
    )


@pytest.fixture
def position_manager():
    return PositionManager(max_drawdown_pct=Decimal("2"))


@pytest.fixture
def long_position():
    return _position()


@pytest.fixture
def short_position():
    return _position(Direction.SHORT, stop_loss="101.5", take_profit="94")


def test_new_position_peak_starts_at_entry(long_position):
    assert long_position.peak_price == Decimal("100")
    assert long_position.peak_profit == Decimal("0")


def test_no_action_inside_levels(position_manager, long_position):
    action = position_manager.evaluate(long_position, Decimal("99"))

    assert action.type == ActionType.NO_ACTION
    assert not action.should_close
    assert action.trailing_stop == Decimal("98")


def test_take_profit_hit(position_manager, long_position):
    action = position_manager.evaluate(long_position, Decimal("106"))

    assert action.type == ActionType.CLOSE_POSITION
    assert action.reason == ExitReason.TAKE_PROFIT


def test_stop_loss_hit(position_manager, long_position):
    action = position_manager.evaluate(long_position, Decimal("98.4"))

    assert action.should_close
    assert action.reason == ExitReason.STOP_LOSS


def test_take_profit_checked_before_stop(position_manager):
    # Crossed levels: a tick at 107 satisfies both TP and SL
    position = _position(stop_loss="110", take_profit="106")
    action = position_manager.evaluate(position, Decimal("107"))

    assert action.reason == ExitReason.TAKE_PROFIT


def test_peak_ratchets_only_upward(position_manager, long_position):
    position_manager.evaluate(long_position, Decimal("103"))
    assert long_position.peak_price == Decimal("103")
    assert long_position.peak_profit == Decimal("30")

    position_manager.evaluate(long_position, Decimal("102"))
    assert long_position.peak_price == Decimal("103")
    assert long_position.peak_profit == Decimal("30")


def test_trailing_drawdown_from_peak(position_manager, long_position):
    position_manager.evaluate(long_position, Decimal("103"))

    # 103 * (1 - 2%) = 100.94
    assert position_manager.evaluate(long_position, Decimal("101")).type == ActionType.NO_ACTION
    action = position_manager.evaluate(long_position, Decimal("100.9"))

    assert action.reason == ExitReason.TRAILING_DRAWDOWN
    assert action.trailing_stop == Decimal("100.94")


def test_short_levels_mirror_long(position_manager, short_position):
    assert position_manager.evaluate(short_position, Decimal("94")).reason == ExitReason.TAKE_PROFIT

    short = _position(Direction.SHORT, stop_loss="101.5", take_profit="94")
    assert position_manager.evaluate(short, Decimal("101.6")).reason == ExitReason.STOP_LOSS


def test_short_trailing_drawdown(position_manager, short_position):
    position_manager.evaluate(short_position, Decimal("97"))
    assert short_position.peak_price == Decimal("97")

    # 97 * (1 + 2%) = 98.94
    action = position_manager.evaluate(short_position, Decimal("99"))
    assert action.reason == ExitReason.TRAILING_DRAWDOWN


def test_leverage_scales_unrealized_profit(position_manager):
    position = _position(leverage="5")
    action = position_manager.evaluate(position, Decimal("101"))

    assert action.unrealized_profit == Decimal("50")
    assert position.peak_profit == Decimal("50")
