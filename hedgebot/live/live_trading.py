"""
Live trading loop.

Three concurrent activities share one TradingEngine:

- the candle feed, which appends closed candles and triggers a monitor pass
- a fixed-interval monitor timer
- a signal loop, which asks for a new hedge whenever the active set is empty

Shutdown is triggered by SIGINT/SIGTERM, by the feed exhausting its
reconnects, by a ledger invariant violation, or by the session ending
with auto-trade disabled.
"""
import asyncio
import signal
from decimal import Decimal
from typing import Optional

from hedgebot.config.config import Config
from hedgebot.data.candle_manager import CandleManager
from hedgebot.data.ws_candle_feed import BinanceCandleFeed
from hedgebot.domain.models import Candle
from hedgebot.domain.protocols import CandleStore, DecisionPolicy, Gateway, IndicatorProvider, TradeHistoryStore
from hedgebot.exceptions import FeedExhaustedError, InvariantError
from hedgebot.execution.engine import TradingEngine
from hedgebot.live.policy import AutoTradePolicy
from hedgebot.monitoring.logger import get_logger
from hedgebot.storage.db import Database
from hedgebot.strategy.indicators import PandasIndicatorProvider
from hedgebot.strategy.probability import ProbabilityEngine
from hedgebot.utils.decimal_math import fmt, to_decimal

logger = get_logger(__name__)


class LiveTrading:
    """
    Live trading engine wiring data, probability, policy and execution.
    """

    def __init__(
        self,
        config: Config,
        gateway: Gateway,
        history: TradeHistoryStore,
        candle_store: CandleStore,
        indicators: Optional[IndicatorProvider] = None,
        policy: Optional[DecisionPolicy] = None,
        probability: Optional[ProbabilityEngine] = None,
        feed: Optional[BinanceCandleFeed] = None,
        db: Optional[Database] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.history = history
        self.db = db

        self.engine = TradingEngine(config, gateway, history, on_cycle_complete=self._on_cycle_complete)
        self.candles = CandleManager(
            gateway,
            candle_store,
            config.exchange.symbol,
            config.strategy.timeframe,
            lookback_days=config.data.history_lookback_days,
            max_candles=config.data.max_candles,
        )
        self.indicators = indicators or PandasIndicatorProvider()
        self.probability = probability or ProbabilityEngine.from_config(config.strategy)
        self.policy = policy or AutoTradePolicy(
            config.trading,
            min_probability=config.strategy.min_probability,
            max_probability=config.strategy.max_probability,
        )
        self.feed = feed or BinanceCandleFeed(
            config.exchange.symbol,
            config.strategy.timeframe,
            self.on_candle,
            max_retries=config.data.ws_max_retries,
            backoff_base=config.data.ws_backoff_base_seconds,
            backoff_cap=config.data.ws_backoff_cap_seconds,
        )

        self.active = False
        self.signal_requested = True
        self.fatal_error: Optional[BaseException] = None
        self._stop_event = asyncio.Event()
        self._shutdown_done = False

    # ============ SIGNALS ============

    async def check_signal(self) -> bool:
        """
        Evaluate the current window and open a hedge if the trade is accepted.

        Returns:
            True if at least one position was opened
        """
        if self.engine.active_positions:
            logger.debug("Signal check skipped: positions still open", active=len(self.engine.active_positions))
            return False

        strategy = self.config.strategy
        window = self.candles.window(strategy.indicator_window)
        required = max(strategy.min_candles, self.indicators.required_candles)
        if len(window) < required:
            logger.info(
                "Signal check skipped: insufficient data",
                available=len(window),
                required=required,
            )
            return False

        await self.engine.refresh_balances()

        base = await self.probability.base_probability(self.history)
        snapshot = self.indicators.snapshot(window)
        assessment = self.probability.evaluate(snapshot, base)

        if not (assessment.tradeable and self.policy.should_accept_trade(assessment.probability)):
            logger.info(
                "Trade rejected",
                probability=fmt(assessment.probability),
                band=f"{strategy.min_probability}-{strategy.max_probability}",
                dampened=assessment.dampened,
            )
            return False

        entry_price = await self._entry_price(window[-1])
        ledger = self.engine.ledger
        params = self.policy.choose_trade_parameters(entry_price, ledger.real, ledger.simulated)
        if params is None:
            return False

        logger.info(
            "Trade accepted",
            probability=fmt(assessment.probability),
            entry_price=fmt(entry_price),
            amount=str(params.amount),
            instrument_class=params.instrument_class.value,
            mode=params.mode.value,
            favorable_direction=params.favorable_direction.value,
        )
        opened = await self.engine.open_hedge(
            entry_price,
            params.amount,
            params.instrument_class,
            params.mode,
            params.favorable_direction,
        )
        return bool(opened)

    async def _entry_price(self, last_candle: Candle) -> Decimal:
        try:
            return to_decimal(await self.gateway.get_latest_price(self.config.exchange.symbol, self.config.strategy.timeframe))
        except Exception as e:
            logger.warning("Latest price unavailable, using last close", error=str(e), close=str(last_candle.close))
            return last_candle.close

    def _on_cycle_complete(self) -> None:
        if self.config.trading.auto_trade_enabled:
            logger.info("All positions closed, soliciting new trade signal")
            self.signal_requested = True
        else:
            logger.info("All positions closed, auto-trade disabled: ending session")
            self._stop_event.set()

    # ============ MONITORING ============

    async def on_candle(self, candle: Candle) -> None:
        """Feed callback: extend the window, then run a monitor pass."""
        try:
            await self.candles.receive_live_candle(candle)
        except Exception as e:
            logger.error("Failed to ingest live candle", error=str(e), open_time=candle.open_time.isoformat())
        await self.monitor()

    async def monitor(self) -> None:
        """One monitor pass; an invariant violation stops the loop."""
        try:
            await self.engine.monitor_once()
        except InvariantError as e:
            logger.critical("INVARIANT_VIOLATION", error=str(e))
            self.fatal_error = e
            self._stop_event.set()

    async def _monitor_loop(self) -> None:
        interval = self.config.execution.monitor_interval_seconds
        while not self._stop_event.is_set():
            await self.monitor()
            await self._sleep(interval)

    async def _signal_loop(self) -> None:
        interval = self.config.strategy.signal_interval_seconds
        while not self._stop_event.is_set():
            if self.signal_requested and not self.engine.active_positions:
                try:
                    if await self.check_signal():
                        self.signal_requested = False
                except Exception as e:
                    logger.error("Signal check failed", error=str(e), exc_info=True)
            await self._sleep(interval)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ============ LIFECYCLE ============

    async def run(self, install_signal_handlers: bool = True) -> None:
        """
        Main trading loop. Returns after shutdown.

        Raises:
            InvariantError: re-raised after shutdown if a ledger check failed
        """
        self.active = True
        logger.info(
            "Starting live trading",
            symbol=self.config.exchange.symbol,
            timeframe=self.config.strategy.timeframe,
            mode=self.config.trading.mode,
            instrument_class=self.config.trading.instrument_class,
            auto_trade=self.config.trading.auto_trade_enabled,
        )

        if install_signal_handlers:
            self._install_signal_handlers()

        tasks = []
        try:
            await self.candles.initialize()
            tasks = [
                asyncio.create_task(self.feed.run(), name="candle_feed"),
                asyncio.create_task(self._monitor_loop(), name="monitor_loop"),
                asyncio.create_task(self._signal_loop(), name="signal_loop"),
            ]
            stop_task = asyncio.create_task(self._stop_event.wait(), name="stop_wait")
            feed_task = tasks[0]

            done, _ = await asyncio.wait({feed_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if feed_task in done and not feed_task.cancelled():
                error = feed_task.exception()
                if isinstance(error, FeedExhaustedError):
                    logger.critical("FEED_EXHAUSTED", error=str(error))
                elif error is not None:
                    logger.critical("Candle feed crashed", error=str(error), error_type=type(error).__name__)
                else:
                    logger.warning("Candle feed ended")
            tasks.append(stop_task)
        finally:
            await self.shutdown(tasks)

        if self.fatal_error:
            raise self.fatal_error

    def request_stop(self) -> None:
        logger.info("Shutdown signal received")
        self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError) as e:
                logger.debug("Signal handler not installed", signal=sig.name, error=str(e))

    async def shutdown(self, tasks=()) -> None:
        """Stop timers and feed, close the gateway and database. Idempotent."""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        self.active = False
        self._stop_event.set()
        logger.info("Shutting down live trading", active_positions=len(self.engine.active_positions))

        try:
            await self.feed.stop()
        except Exception as e:
            logger.error("Failed to stop candle feed", error=str(e))

        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        try:
            await self.gateway.close()
        except Exception as e:
            logger.error("Failed to close gateway", error=str(e))

        if self.db is not None:
            self.db.dispose()

        self.engine.log_pnl_summary()
        logger.info("Live trading stopped")
