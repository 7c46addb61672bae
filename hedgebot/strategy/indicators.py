"""
Technical indicators for the probability engine.

Manual implementations using pandas (no pandas-ta dependency). Each
indicator falls back to its neutral value when the window is too short,
so a snapshot can always be produced.
"""
import math
from decimal import Decimal
from typing import Sequence

import numpy as np
import pandas as pd

from hedgebot.domain.models import Candle, IndicatorSnapshot
from hedgebot.monitoring.logger import get_logger

logger = get_logger(__name__)


class Indicators:
    """
    Technical indicator calculations on close/high/low series.

    Every ``calculate_*`` method returns the full pandas Series so callers
    can inspect history; ``PandasIndicatorProvider`` takes the latest value.
    """

    @staticmethod
    def calculate_rsi(df: pd.DataFrame, period: int = 14) -> pd.Series:
        """Relative Strength Index with EWM-smoothed gains and losses."""
        delta = df['close'].diff()

        gain = delta.where(delta > 0, 0.0)
        loss = -delta.where(delta < 0, 0.0)

        avg_gain = gain.ewm(span=period, adjust=False).mean()
        avg_loss = loss.ewm(span=period, adjust=False).mean()

        rs = avg_gain / avg_loss
        rsi = 100 - (100 / (1 + rs))
        # No losses -> 100; a flat window (no moves at all) -> 50
        rsi = rsi.where(avg_loss != 0, 100.0)
        return rsi.where((avg_gain != 0) | (avg_loss != 0), 50.0)

    @staticmethod
    def calculate_macd(
        df: pd.DataFrame,
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: int = 9,
    ) -> pd.DataFrame:
        """MACD line, signal line and histogram."""
        fast = df['close'].ewm(span=fast_period, adjust=False).mean()
        slow = df['close'].ewm(span=slow_period, adjust=False).mean()
        macd = fast - slow
        signal = macd.ewm(span=signal_period, adjust=False).mean()
        return pd.DataFrame({
            'macd': macd,
            'signal': signal,
            'histogram': macd - signal,
        })

    @staticmethod
    def calculate_sma(df: pd.DataFrame, period: int = 14) -> pd.Series:
        return df['close'].rolling(window=period).mean()

    @staticmethod
    def calculate_ema(df: pd.DataFrame, period: int = 14) -> pd.Series:
        return df['close'].ewm(span=period, adjust=False).mean()

    @staticmethod
    def calculate_stochastic(
        df: pd.DataFrame, period: int = 14, signal_period: int = 3
    ) -> pd.DataFrame:
        """Stochastic oscillator %K and its SMA %D."""
        lowest = df['low'].rolling(window=period).min()
        highest = df['high'].rolling(window=period).max()
        span = (highest - lowest).replace(0, np.nan)
        k = 100 * (df['close'] - lowest) / span
        # Flat range: close sits at every extreme at once, report mid-scale
        k = k.fillna(50.0).where(highest.notna())
        d = k.rolling(window=signal_period).mean()
        return pd.DataFrame({'k': k, 'd': d})

    @staticmethod
    def calculate_atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
        """
        Average True Range.

        True Range = max(high-low, abs(high-prev_close), abs(low-prev_close))
        """
        high_low = df['high'] - df['low']
        high_close = np.abs(df['high'] - df['close'].shift())
        low_close = np.abs(df['low'] - df['close'].shift())

        tr = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)
        return tr.ewm(span=period, adjust=False).mean()

    @staticmethod
    def calculate_bollinger(
        df: pd.DataFrame, period: int = 20, std_dev: float = 2.0
    ) -> pd.DataFrame:
        """Bollinger Bands around a rolling SMA (population std)."""
        middle = df['close'].rolling(window=period).mean()
        std = df['close'].rolling(window=period).std(ddof=0)
        return pd.DataFrame({
            'lower': middle - std_dev * std,
            'middle': middle,
            'upper': middle + std_dev * std,
        })

    @staticmethod
    def candles_to_df(candles: Sequence[Candle]) -> pd.DataFrame:
        """
        Convert candles to a DataFrame indexed by open time.

        Args:
            candles: Candles in chronological order

        Returns:
            DataFrame with OHLCV float columns
        """
        if not candles:
            return pd.DataFrame(columns=['open', 'high', 'low', 'close', 'volume'])

        n = len(candles)
        timestamps = np.empty(n, dtype='datetime64[ns]')
        opens = np.empty(n, dtype=np.float64)
        highs = np.empty(n, dtype=np.float64)
        lows = np.empty(n, dtype=np.float64)
        closes = np.empty(n, dtype=np.float64)
        volumes = np.empty(n, dtype=np.float64)

        for i, c in enumerate(candles):
            timestamps[i] = np.datetime64(c.open_time.replace(tzinfo=None), 'ns')
            opens[i] = float(c.open)
            highs[i] = float(c.high)
            lows[i] = float(c.low)
            closes[i] = float(c.close)
            volumes[i] = float(c.volume)

        df = pd.DataFrame({
            'timestamp': timestamps,
            'open': opens,
            'high': highs,
            'low': lows,
            'close': closes,
            'volume': volumes,
        })
        df.set_index('timestamp', inplace=True)
        return df


def _last(series: pd.Series, default: Decimal) -> Decimal:
    """Latest value of a series as Decimal, or ``default`` if missing/NaN."""
    if series is None or series.empty:
        return default
    value = series.iloc[-1]
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return default
    return Decimal(str(round(float(value), 8)))


class PandasIndicatorProvider:
    """
    Indicator provider producing an ``IndicatorSnapshot`` from a candle window.

    Periods: RSI 14, MACD 12/26/9, SMA 14, EMA 14, Stochastic 14/3,
    ATR 14, Bollinger 20/2.
    """

    def __init__(
        self,
        rsi_period: int = 14,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: int = 9,
        ma_period: int = 14,
        stochastic_period: int = 14,
        stochastic_signal: int = 3,
        atr_period: int = 14,
        bollinger_period: int = 20,
        bollinger_std: float = 2.0,
    ):
        self.rsi_period = rsi_period
        self.macd_fast = macd_fast
        self.macd_slow = macd_slow
        self.macd_signal = macd_signal
        self.ma_period = ma_period
        self.stochastic_period = stochastic_period
        self.stochastic_signal = stochastic_signal
        self.atr_period = atr_period
        self.bollinger_period = bollinger_period
        self.bollinger_std = bollinger_std

    @property
    def required_candles(self) -> int:
        """Candles needed for every indicator to leave its neutral default."""
        return max(
            self.rsi_period + 1,
            self.macd_slow,
            self.ma_period,
            self.stochastic_period + self.stochastic_signal - 1,
            self.atr_period,
            self.bollinger_period,
        )

    def snapshot(self, candles: Sequence[Candle]) -> IndicatorSnapshot:
        """Compute the latest indicator values; never raises on short windows."""
        neutral = IndicatorSnapshot()
        n = len(candles)
        if n == 0:
            logger.warning("No candles for indicator snapshot")
            return neutral

        df = Indicators.candles_to_df(candles)
        price = Decimal(str(candles[-1].close))

        rsi = neutral.rsi
        if n > self.rsi_period:
            rsi = _last(Indicators.calculate_rsi(df, self.rsi_period), neutral.rsi)

        macd_histogram = neutral.macd_histogram
        if n >= self.macd_slow:
            macd = Indicators.calculate_macd(df, self.macd_fast, self.macd_slow, self.macd_signal)
            macd_histogram = _last(macd['histogram'], neutral.macd_histogram)

        sma = neutral.sma
        ema = neutral.ema
        if n >= self.ma_period:
            sma = _last(Indicators.calculate_sma(df, self.ma_period), neutral.sma)
            ema = _last(Indicators.calculate_ema(df, self.ma_period), neutral.ema)

        stochastic_k = neutral.stochastic_k
        stochastic_d = neutral.stochastic_d
        if n >= self.stochastic_period + self.stochastic_signal - 1:
            stoch = Indicators.calculate_stochastic(df, self.stochastic_period, self.stochastic_signal)
            stochastic_k = _last(stoch['k'], neutral.stochastic_k)
            stochastic_d = _last(stoch['d'], neutral.stochastic_d)

        atr = neutral.atr
        if n >= self.atr_period:
            atr = _last(Indicators.calculate_atr(df, self.atr_period), neutral.atr)

        bollinger_lower = neutral.bollinger_lower
        bollinger_upper = neutral.bollinger_upper
        bollinger_price = neutral.bollinger_price
        if n >= self.bollinger_period:
            bands = Indicators.calculate_bollinger(df, self.bollinger_period, self.bollinger_std)
            bollinger_lower = _last(bands['lower'], neutral.bollinger_lower)
            bollinger_upper = _last(bands['upper'], neutral.bollinger_upper)
            bollinger_price = price

        if n < self.required_candles:
            logger.debug(
                "Partial indicator snapshot (neutral defaults used)",
                candles=n,
                required=self.required_candles,
            )

        return IndicatorSnapshot(
            rsi=rsi,
            macd_histogram=macd_histogram,
            sma=sma,
            ema=ema,
            stochastic_k=stochastic_k,
            stochastic_d=stochastic_d,
            atr=atr,
            bollinger_price=bollinger_price,
            bollinger_lower=bollinger_lower,
            bollinger_upper=bollinger_upper,
        )
