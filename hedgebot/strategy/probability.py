"""
Success probability engine.

Combines a decayed empirical win rate (the base probability) with
additive indicator adjustments, then applies session dampening to
discourage overtrading when the probability keeps swinging away from
its base.
"""
import time
from decimal import Decimal
from typing import Callable, Optional, Sequence

from hedgebot.constants import PROBABILITY_CEILING, PROBABILITY_FLOOR
from hedgebot.domain.models import IndicatorSnapshot, Outcome, ProbabilityAssessment
from hedgebot.domain.protocols import TradeHistoryStore
from hedgebot.monitoring.logger import get_logger
from hedgebot.utils.decimal_math import HUNDRED, ONE, ZERO, clamp, safe_divide, to_decimal

logger = get_logger(__name__)

RSI_OVERSOLD = Decimal("30")
RSI_OVERBOUGHT = Decimal("70")
STOCH_OVERSOLD = Decimal("20")
STOCH_OVERBOUGHT = Decimal("80")
ATR_VOLATILITY_LIMIT = Decimal("0.5")


def compute_success_probability(snapshot: IndicatorSnapshot, base_probability: Decimal) -> Decimal:
    """
    Adjust ``base_probability`` by indicator votes and clamp to [0, 100].

    The SMA/EMA vote always fires (+5 or -5); every other indicator has a
    neutral zone that contributes nothing.
    """
    probability = to_decimal(base_probability)

    if snapshot.rsi < RSI_OVERSOLD:
        probability += 10
    elif snapshot.rsi > RSI_OVERBOUGHT:
        probability -= 10

    if snapshot.macd_histogram > 0:
        probability += 5
    elif snapshot.macd_histogram < 0:
        probability -= 5

    if snapshot.sma > snapshot.ema:
        probability += 5
    else:
        probability -= 5

    if snapshot.stochastic_k < STOCH_OVERSOLD and snapshot.stochastic_d < STOCH_OVERSOLD:
        probability += 10
    elif snapshot.stochastic_k > STOCH_OVERBOUGHT and snapshot.stochastic_d > STOCH_OVERBOUGHT:
        probability -= 10

    if snapshot.atr > ATR_VOLATILITY_LIMIT:
        probability -= 5

    if snapshot.bollinger_price < snapshot.bollinger_lower:
        probability += 5
    elif snapshot.bollinger_price > snapshot.bollinger_upper:
        probability -= 5

    return clamp(probability, PROBABILITY_FLOOR, PROBABILITY_CEILING)


def weighted_win_rate(
    outcomes: Sequence[Outcome],
    alpha: Decimal = Decimal("0.1"),
    default: Decimal = Decimal("75"),
) -> Decimal:
    """
    Exponentially weighted win rate in percent.

    ``outcomes[0]`` is the most recent trade and carries weight
    ``alpha``; the i-th carries ``alpha * (1 - alpha) ** i``.
    """
    if not outcomes:
        return to_decimal(default)

    alpha = to_decimal(alpha)
    decay = ONE - alpha
    weight = alpha
    total = ZERO
    wins = ZERO
    for outcome in outcomes:
        total += weight
        if outcome == Outcome.WIN:
            wins += weight
        weight *= decay

    return safe_divide(wins, total, default) * HUNDRED


class ProbabilityEngine:
    """
    Stateful probability evaluation for one trading session.

    Owns the dampening accumulator and its window start. The clock is
    injectable so tests can advance time without sleeping.
    """

    def __init__(
        self,
        default_base_probability: Decimal = Decimal("75"),
        base_window: int = 100,
        base_alpha: Decimal = Decimal("0.1"),
        min_probability: Decimal = Decimal("70"),
        max_probability: Decimal = Decimal("80"),
        dampening_window_seconds: float = 900.0,
        dampening_threshold: Decimal = Decimal("20"),
        dampening_penalty: Decimal = Decimal("5"),
        clock: Optional[Callable[[], float]] = None,
    ):
        self.default_base_probability = to_decimal(default_base_probability)
        self.base_window = base_window
        self.base_alpha = to_decimal(base_alpha)
        self.min_probability = to_decimal(min_probability)
        self.max_probability = to_decimal(max_probability)
        self.dampening_window_seconds = dampening_window_seconds
        self.dampening_threshold = to_decimal(dampening_threshold)
        self.dampening_penalty = to_decimal(dampening_penalty)

        self._clock = clock or time.monotonic
        self.cumulative_deviation = ZERO
        self.window_start = self._clock()

    @classmethod
    def from_config(cls, strategy_config, clock: Optional[Callable[[], float]] = None) -> "ProbabilityEngine":
        return cls(
            default_base_probability=strategy_config.default_base_probability,
            base_window=strategy_config.base_window,
            base_alpha=strategy_config.base_alpha,
            min_probability=strategy_config.min_probability,
            max_probability=strategy_config.max_probability,
            dampening_window_seconds=strategy_config.dampening_window_seconds,
            dampening_threshold=strategy_config.dampening_threshold,
            dampening_penalty=strategy_config.dampening_penalty,
            clock=clock,
        )

    async def base_probability(self, history: TradeHistoryStore) -> Decimal:
        """
        Decayed win rate over the most recent settled trades.

        A failing history store is logged and the default base is used.
        """
        try:
            recent = await history.query_recent(self.base_window)
        except Exception as e:
            logger.warning(
                "Trade history unavailable, using default base probability",
                error=str(e),
                default=str(self.default_base_probability),
            )
            return self.default_base_probability

        base = weighted_win_rate(
            [trade.outcome for trade in recent],
            alpha=self.base_alpha,
            default=self.default_base_probability,
        )
        logger.debug("Base probability computed", trades=len(recent), base_probability=str(base))
        return base

    def apply_session_dampening(self, probability: Decimal, base_probability: Decimal) -> tuple[Decimal, bool]:
        """
        Update the deviation accumulator and apply the overtrading penalty.

        Returns:
            (probability, dampened)
        """
        now = self._clock()
        if now - self.window_start >= self.dampening_window_seconds:
            logger.debug(
                "Dampening window reset",
                elapsed_seconds=round(now - self.window_start, 1),
                cumulative_deviation=str(self.cumulative_deviation),
            )
            self.cumulative_deviation = ZERO
            self.window_start = now
        else:
            self.cumulative_deviation += abs(probability - base_probability)

        if self.cumulative_deviation > self.dampening_threshold:
            dampened = clamp(probability - self.dampening_penalty, PROBABILITY_FLOOR, PROBABILITY_CEILING)
            return dampened, True
        return probability, False

    def is_tradeable(self, probability: Decimal) -> bool:
        """Acceptance band check, inclusive on both ends."""
        return self.min_probability <= probability <= self.max_probability

    def evaluate(self, snapshot: IndicatorSnapshot, base_probability: Decimal) -> ProbabilityAssessment:
        """Full evaluation: indicator adjustments, dampening, acceptance band."""
        raw = compute_success_probability(snapshot, base_probability)
        probability, dampened = self.apply_session_dampening(raw, base_probability)
        tradeable = self.is_tradeable(probability)

        logger.info(
            "Probability evaluated",
            base_probability=str(base_probability),
            raw_probability=str(raw),
            probability=str(probability),
            cumulative_deviation=str(self.cumulative_deviation),
            dampened=dampened,
            tradeable=tradeable,
        )

        return ProbabilityAssessment(
            base_probability=base_probability,
            raw_probability=raw,
            probability=probability,
            cumulative_deviation=self.cumulative_deviation,
            dampened=dampened,
            tradeable=tradeable,
        )
