"""
Tests for the probability engine: indicator adjustments, decayed base
rate and session dampening.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from hedgebot.domain.models import (
    Allocation,
    Direction,
    ExitReason,
    IndicatorSnapshot,
    InstrumentClass,
    Outcome,
    SettledTrade,
    TradeMode,
)
from hedgebot.storage.memory import InMemoryTradeHistoryStore
from hedgebot.strategy.probability import (
    ProbabilityEngine,
    compute_success_probability,
    weighted_win_rate,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FailingHistory:
    async def record_settled_trade(self, trade):
        raise RuntimeError("db down")

    async def query_recent(self, limit):
        raise RuntimeError("db down")


def _trade(outcome: Outcome, minute: int):
    ts = datetime(2024, 1, 1, 0, minute, tzinfo=timezone.utc)
    return SettledTrade(
        position_id=f"trade_{minute}",
        symbol="AVAX/USDT",
        direction=Direction.LONG,
        instrument_class=InstrumentClass.FUTURES,
        mode=TradeMode.SIMULATED,
        allocation=Allocation.FAVORABLE,
        is_reallocated=False,
        entry_price=Decimal("100"),
        exit_price=Decimal("101"),
        amount=Decimal("1"),
        leverage=Decimal("5"),
        stop_loss=Decimal("98.5"),
        take_profit=Decimal("106"),
        entry_fee=Decimal("0"),
        exit_fee=Decimal("0"),
        gross_pnl=Decimal("5"),
        net_pnl=Decimal("5") if outcome == Outcome.WIN else Decimal("-5"),
        outcome=outcome,
        exit_reason=ExitReason.TAKE_PROFIT,
        entry_time=ts,
        exit_time=ts,
    )


class TestComputeSuccessProbability:

    def test_neutral_snapshot_only_moving_average_vote_fires(self):
        # sma == ema is not "above", so the MA vote is -5
        assert compute_success_probability(IndicatorSnapshot(), Decimal("75")) == Decimal("70")

    def test_moving_average_vote_is_asymmetric(self):
        above = IndicatorSnapshot(sma=Decimal("10.1"), ema=Decimal("10"))
        below = IndicatorSnapshot(sma=Decimal("9.9"), ema=Decimal("10"))
        assert compute_success_probability(above, Decimal("50")) == Decimal("55")
        assert compute_success_probability(below, Decimal("50")) == Decimal("45")

    def test_bullish_snapshot_adds_every_vote(self):
        snapshot = IndicatorSnapshot(
            rsi=Decimal("25"),
            macd_histogram=Decimal("0.2"),
            sma=Decimal("11"),
            ema=Decimal("10"),
            stochastic_k=Decimal("10"),
            stochastic_d=Decimal("15"),
            atr=Decimal("0.1"),
            bollinger_price=Decimal("9"),
            bollinger_lower=Decimal("9.5"),
            bollinger_upper=Decimal("12"),
        )
        # +10 rsi, +5 macd, +5 ma, +10 stoch, +5 bollinger
        assert compute_success_probability(snapshot, Decimal("40")) == Decimal("75")

    def test_stochastic_requires_both_lines(self):
        snapshot = IndicatorSnapshot(sma=Decimal("2"), ema=Decimal("1"), stochastic_k=Decimal("10"), stochastic_d=Decimal("30"))
        assert compute_success_probability(snapshot, Decimal("50")) == Decimal("55")

    def test_high_atr_penalizes(self):
        snapshot = IndicatorSnapshot(sma=Decimal("2"), ema=Decimal("1"), atr=Decimal("0.51"))
        assert compute_success_probability(snapshot, Decimal("50")) == Decimal("50")

    def test_result_is_clamped(self):
        bullish = IndicatorSnapshot(rsi=Decimal("10"), sma=Decimal("2"), ema=Decimal("1"))
        bearish = IndicatorSnapshot(rsi=Decimal("90"), macd_histogram=Decimal("-1"), atr=Decimal("3"))
        assert compute_success_probability(bullish, Decimal("98")) == Decimal("100")
        assert compute_success_probability(bearish, Decimal("5")) == Decimal("0")


class TestWeightedWinRate:

    def test_empty_history_uses_default(self):
        assert weighted_win_rate([]) == Decimal("75")

    def test_single_win_is_100(self):
        assert weighted_win_rate([Outcome.WIN]) == Decimal("100")

    def test_recent_outcomes_weigh_more(self):
        recent_loss = weighted_win_rate([Outcome.LOSS, Outcome.WIN])
        recent_win = weighted_win_rate([Outcome.WIN, Outcome.LOSS])
        assert recent_win > Decimal("50") > recent_loss
        # 0.1 / (0.1 + 0.09)
        assert recent_win.quantize(Decimal("0.01")) == Decimal("52.63")


class TestProbabilityEngine:

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def probability(self, clock):
        return ProbabilityEngine(clock=clock)

    @pytest.mark.asyncio
    async def test_base_probability_from_history(self, probability):
        history = InMemoryTradeHistoryStore()
        await history.record_settled_trade(_trade(Outcome.WIN, 1))
        assert await probability.base_probability(history) == Decimal("100")

    @pytest.mark.asyncio
    async def test_base_probability_falls_back_when_history_fails(self, probability):
        assert await probability.base_probability(FailingHistory()) == Decimal("75")

    @pytest.mark.asyncio
    async def test_base_probability_uses_most_recent_first(self, probability):
        history = InMemoryTradeHistoryStore()
        await history.record_settled_trade(_trade(Outcome.WIN, 1))
        await history.record_settled_trade(_trade(Outcome.LOSS, 2))
        assert await probability.base_probability(history) < Decimal("50")

    def test_dampening_applies_after_threshold(self, probability, clock):
        clock.now = 10
        p, dampened = probability.apply_session_dampening(Decimal("90"), Decimal("75"))
        assert (p, dampened) == (Decimal("90"), False)

        clock.now = 20
        p, dampened = probability.apply_session_dampening(Decimal("90"), Decimal("75"))
        assert (p, dampened) == (Decimal("85"), True)
        assert probability.cumulative_deviation == Decimal("30")

    def test_dampening_window_resets_after_900_seconds(self, probability, clock):
        clock.now = 10
        probability.apply_session_dampening(Decimal("100"), Decimal("75"))
        assert probability.cumulative_deviation == Decimal("25")

        clock.now = 901
        p, dampened = probability.apply_session_dampening(Decimal("90"), Decimal("75"))
        assert dampened is False
        assert p == Decimal("90")
        assert probability.cumulative_deviation == Decimal("0")
        assert probability.window_start == 901

    def test_dampened_probability_is_clamped(self, clock):
        probability = ProbabilityEngine(dampening_threshold=Decimal("0"), dampening_penalty=Decimal("10"), clock=clock)
        clock.now = 1
        p, dampened = probability.apply_session_dampening(Decimal("3"), Decimal("75"))
        assert dampened is True
        assert p == Decimal("0")

    def test_acceptance_band_is_inclusive(self, probability):
        assert probability.is_tradeable(Decimal("70"))
        assert probability.is_tradeable(Decimal("80"))
        assert not probability.is_tradeable(Decimal("69.99"))
        assert not probability.is_tradeable(Decimal("80.01"))

    def test_evaluate_returns_assessment(self, probability, clock):
        clock.now = 5
        assessment = probability.evaluate(IndicatorSnapshot(), Decimal("75"))
        assert assessment.raw_probability == Decimal("70")
        assert assessment.probability == Decimal("70")
        assert assessment.tradeable is True
        assert assessment.dampened is False
        assert assessment.cumulative_deviation == Decimal("5")
