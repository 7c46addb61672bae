"""
Trading engine: position sizing, opening, monitoring and settlement.

All mutation of the active position set and the balance ledger happens
inside a ``CycleGuard`` cycle. Public coroutines acquire the guard; the
``_locked`` helpers assume it is already held and may call each other
(settlement opens the reallocation position without re-acquiring).
"""
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from hedgebot.config.config import Config
from hedgebot.constants import TRADE_ID_PREFIX
from hedgebot.domain.models import (
    Allocation,
    Direction,
    ExitReason,
    InstrumentClass,
    OrderSide,
    Outcome,
    Position,
    SettledTrade,
    TradeMode,
)
from hedgebot.domain.protocols import Gateway, TradeHistoryStore
from hedgebot.exceptions import (
    CycleLockTimeout,
    DataError,
    GatewayError,
    InsufficientBalanceError,
    LedgerInvariantError,
    ValidationError,
)
from hedgebot.execution.ledger import BalanceLedger
from hedgebot.execution.position_manager import PositionManager
from hedgebot.monitoring.logger import get_logger
from hedgebot.runtime.cycle_guard import CycleGuard
from hedgebot.utils.decimal_math import ONE, ZERO, fmt, pct_of, quantize, safe_divide, to_decimal

logger = get_logger(__name__)


def generate_trade_id() -> str:
    """``trade_<epoch ms>_<random hex>``, unique for the process lifetime."""
    return f"{TRADE_ID_PREFIX}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def entry_side(direction: Direction) -> OrderSide:
    return OrderSide.BUY if direction == Direction.LONG else OrderSide.SELL


def exit_side(direction: Direction) -> OrderSide:
    return OrderSide.SELL if direction == Direction.LONG else OrderSide.BUY


def risk_levels(
    entry_price: Decimal,
    direction: Direction,
    stop_loss_pct: Decimal,
    take_profit_pct: Decimal,
) -> tuple[Decimal, Decimal]:
    """
    Fixed stop-loss and take-profit relative to entry.

    Returns:
        (stop_loss, take_profit)
    """
    sl_move = pct_of(entry_price, stop_loss_pct)
    tp_move = pct_of(entry_price, take_profit_pct)
    if direction == Direction.LONG:
        return entry_price - sl_move, entry_price + tp_move
    return entry_price + sl_move, entry_price - tp_move


class TradingEngine:
    """
    Owns the active position set, the balance ledger and the cycle guard.

    Every instance is independent; nothing is module-global, so tests can
    run several engines side by side.
    """

    def __init__(
        self,
        config: Config,
        gateway: Gateway,
        history: TradeHistoryStore,
        ledger: Optional[BalanceLedger] = None,
        guard: Optional[CycleGuard] = None,
        position_manager: Optional[PositionManager] = None,
        on_cycle_complete: Optional[Callable[[], None]] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.history = history
        self.ledger = ledger or BalanceLedger()
        self.guard = guard or CycleGuard(lock_timeout_seconds=config.execution.lock_timeout_seconds)
        self.position_manager = position_manager or PositionManager(config.risk.max_drawdown_pct)
        self.on_cycle_complete = on_cycle_complete

        self.symbol = config.exchange.symbol
        self.interval = config.strategy.timeframe
        self.active_positions: Dict[str, Position] = {}

    # ============ OPENING ============

    async def open_position(
        self,
        entry_price: Decimal,
        amount: Decimal,
        direction: Direction,
        instrument_class: InstrumentClass,
        mode: TradeMode,
        allocation: Allocation = Allocation.FAVORABLE,
    ) -> Optional[Position]:
        """
        Open a single position.

        Returns:
            The registered position, or None if the open was rejected
            (insufficient balance, invalid input, order failure, lock timeout).
            A rejected open leaves the ledger and active set unchanged.
        """
        try:
            async with self.guard.cycle("open_position"):
                return await self._try_open_locked(
                    entry_price, amount, direction, instrument_class, mode, allocation
                )
        except CycleLockTimeout:
            logger.warning("Open skipped: cycle lock busy", amount=str(amount), direction=direction.value)
            return None

    async def open_hedge(
        self,
        entry_price: Decimal,
        amount: Decimal,
        instrument_class: InstrumentClass,
        mode: TradeMode,
        favorable_direction: Direction = Direction.LONG,
    ) -> List[Position]:
        """
        Open the paired hedge for an accepted signal.

        Futures: favorable leg (``favorable_fraction`` of amount) in
        ``favorable_direction`` plus the unfavorable remainder in the
        opposite direction. Spot cannot be shorted, so a spot signal opens
        a single favorable long.
        """
        amount = to_decimal(amount)
        opened: List[Position] = []
        try:
            async with self.guard.cycle("open_hedge"):
                if instrument_class == InstrumentClass.SPOT:
                    position = await self._try_open_locked(
                        entry_price, amount, Direction.LONG, instrument_class, mode, Allocation.FAVORABLE
                    )
                    if position:
                        opened.append(position)
                    return opened

                favorable_amount = quantize(amount * self.config.risk.favorable_fraction)
                unfavorable_amount = amount - favorable_amount
                legs = (
                    (favorable_amount, favorable_direction, Allocation.FAVORABLE),
                    (unfavorable_amount, favorable_direction.opposite(), Allocation.UNFAVORABLE),
                )
                for leg_amount, leg_direction, allocation in legs:
                    position = await self._try_open_locked(
                        entry_price, leg_amount, leg_direction, instrument_class, mode, allocation
                    )
                    if position:
                        opened.append(position)
        except CycleLockTimeout:
            logger.warning("Hedge skipped: cycle lock busy", amount=str(amount))
            return opened

        if len(opened) == 1 and instrument_class == InstrumentClass.FUTURES:
            logger.warning(
                "Hedge incomplete: only one leg opened",
                position_id=opened[0].id,
                allocation=opened[0].allocation.value,
            )
        return opened

    async def _try_open_locked(
        self,
        entry_price: Decimal,
        amount: Decimal,
        direction: Direction,
        instrument_class: InstrumentClass,
        mode: TradeMode,
        allocation: Allocation,
    ) -> Optional[Position]:
        try:
            return await self._open_position_locked(
                entry_price, amount, direction, instrument_class, mode, allocation
            )
        except DataError as e:
            logger.warning(
                "Trade rejected",
                reason=str(e),
                error_type=type(e).__name__,
                amount=str(amount),
                entry_price=str(entry_price),
                direction=direction.value,
                instrument_class=instrument_class.value,
                mode=mode.value,
                allocation=allocation.value,
            )
            return None
        except GatewayError as e:
            logger.error(
                "Entry order failed, position not opened",
                error=str(e),
                amount=str(amount),
                direction=direction.value,
                mode=mode.value,
            )
            return None

    async def _open_position_locked(
        self,
        entry_price: Decimal,
        amount: Decimal,
        direction: Direction,
        instrument_class: InstrumentClass,
        mode: TradeMode,
        allocation: Allocation,
    ) -> Position:
        """
        Size, validate, debit and register a position. Caller holds the guard.

        Raises:
            ValidationError: non-positive price/amount, or a spot short
            InsufficientBalanceError: total cost exceeds the mode's balance
            GatewayError: real-mode entry order failed (nothing was mutated)
        """
        entry_price = to_decimal(entry_price)
        amount = to_decimal(amount)
        if entry_price <= ZERO or amount <= ZERO:
            raise ValidationError(f"Entry price and amount must be positive (price={entry_price}, amount={amount})")
        if instrument_class == InstrumentClass.SPOT and direction != Direction.LONG:
            raise ValidationError("Spot positions can only be long")

        fee_rate = await self._resolve_fee_rate(instrument_class)
        notional = entry_price * amount
        entry_fee = notional * fee_rate

        if instrument_class == InstrumentClass.FUTURES:
            leverage = self.config.risk.leverage
            principal = safe_divide(notional, leverage, notional)
            wallet_quantity = ZERO
        else:
            leverage = ONE
            principal = notional
            wallet_quantity = amount
        total_cost = principal + entry_fee

        available = self.ledger.available(mode)
        if total_cost > available:
            raise InsufficientBalanceError(
                f"Insufficient {mode.value} balance: cost {fmt(total_cost)} > available {fmt(available)}"
            )
        if wallet_quantity > self.ledger.wallet:
            raise InsufficientBalanceError(
                f"Insufficient wallet quantity: {fmt(wallet_quantity, 8)} > {fmt(self.ledger.wallet, 8)}"
            )

        if mode == TradeMode.REAL:
            receipt = await self.gateway.submit_market_order(
                entry_side(direction), self.symbol, amount, instrument_class
            )
            logger.info(
                "Entry order submitted",
                order_id=receipt.order_id,
                side=receipt.side.value,
                quantity=str(receipt.quantity),
                status=receipt.status,
            )

        self.ledger.debit(mode, total_cost, wallet_quantity)

        stop_loss, take_profit = risk_levels(
            entry_price, direction, self.config.risk.stop_loss_pct, self.config.risk.take_profit_pct
        )
        position = Position(
            id=generate_trade_id(),
            symbol=self.symbol,
            entry_price=entry_price,
            amount=amount,
            stop_loss=stop_loss,
            take_profit=take_profit,
            direction=direction,
            instrument_class=instrument_class,
            mode=mode,
            allocation=allocation,
            leverage=leverage,
            fee_rate=fee_rate,
            entry_fee=entry_fee,
            locked_capital=total_cost,
        )
        self.active_positions[position.id] = position

        logger.info(
            "Position opened",
            position_id=position.id,
            symbol=self.symbol,
            direction=direction.value,
            instrument_class=instrument_class.value,
            mode=mode.value,
            allocation=allocation.value,
            entry_price=fmt(entry_price),
            amount=str(amount),
            leverage=str(leverage),
            stop_loss=fmt(stop_loss),
            take_profit=fmt(take_profit),
            entry_fee=fmt(entry_fee, 4),
            total_cost=fmt(total_cost),
            balance=fmt(self.ledger.available(mode)),
        )
        return position

    async def _resolve_fee_rate(self, instrument_class: InstrumentClass) -> Decimal:
        """Taker fee from the gateway, falling back to configured rates."""
        try:
            rates = await self.gateway.get_fee(self.symbol, instrument_class)
            return to_decimal(rates.taker)
        except Exception as e:
            fallback = (
                self.config.execution.futures_taker_fee
                if instrument_class == InstrumentClass.FUTURES
                else self.config.execution.spot_taker_fee
            )
            logger.warning(
                "Fee lookup failed, using fallback rate",
                instrument_class=instrument_class.value,
                fallback=str(fallback),
                error=str(e),
            )
            return fallback

    # ============ MONITORING ============

    async def monitor_once(self) -> List[SettledTrade]:
        """
        One pass of exit evaluation over a snapshot of the active set.

        A busy lock skips the pass. Per-position failures are logged and
        the pass continues; ``LedgerInvariantError`` propagates.

        Returns:
            Trades settled during this pass
        """
        settled: List[SettledTrade] = []
        try:
            async with self.guard.cycle("monitor"):
                for position in list(self.active_positions.values()):
                    if position.id not in self.active_positions:
                        continue
                    try:
                        trade = await self._evaluate_position_locked(position)
                    except LedgerInvariantError:
                        raise
                    except Exception as e:
                        logger.error(
                            "Position evaluation failed",
                            position_id=position.id,
                            symbol=position.symbol,
                            error=str(e),
                            exc_info=True,
                        )
                        continue
                    if trade:
                        settled.append(trade)
        except CycleLockTimeout:
            logger.warning("Monitor pass skipped: cycle lock busy", active_positions=len(self.active_positions))
        return settled

    async def _evaluate_position_locked(self, position: Position) -> Optional[SettledTrade]:
        price = to_decimal(await self.gateway.get_latest_price(position.symbol, self.interval))
        action = self.position_manager.evaluate(position, price)

        if action.should_close:
            logger.info(
                "Exit condition met",
                position_id=position.id,
                reason=action.reason.value,
                price=fmt(price),
                stop_loss=fmt(position.stop_loss),
                take_profit=fmt(position.take_profit),
                trailing_stop=fmt(action.trailing_stop),
            )
            return await self._close_position_locked(position, price, action.reason)

        logger.debug(
            "Position open",
            position_id=position.id,
            direction=position.direction.value,
            price=fmt(price),
            unrealized_profit=fmt(action.unrealized_profit),
            peak_profit=fmt(position.peak_profit),
            trailing_stop=fmt(action.trailing_stop),
        )
        return None

    # ============ SETTLEMENT ============

    async def close_position(
        self,
        position_id: str,
        exit_price: Optional[Decimal] = None,
        reason: ExitReason = ExitReason.MANUAL,
    ) -> Optional[SettledTrade]:
        """
        Close an active position by id at ``exit_price`` (or the latest price).

        Returns:
            The settled trade, or None if the position is not active, the
            latest price is unavailable or the cycle lock is busy
        """
        try:
            async with self.guard.cycle("close_position"):
                position = self.active_positions.get(position_id)
                if position is None:
                    logger.warning("Close ignored: position not active", position_id=position_id)
                    return None
                if exit_price is None:
                    try:
                        exit_price = await self.gateway.get_latest_price(position.symbol, self.interval)
                    except GatewayError as e:
                        logger.warning("Close skipped: latest price unavailable", position_id=position_id, error=str(e))
                        return None
                return await self._close_position_locked(position, to_decimal(exit_price), reason)
        except CycleLockTimeout:
            logger.warning("Close skipped: cycle lock busy", position_id=position_id)
            return None

    async def _close_position_locked(
        self,
        position: Position,
        exit_price: Decimal,
        reason: ExitReason,
    ) -> Optional[SettledTrade]:
        """
        Settle a position. Caller holds the guard.

        Order: close order (real mode), fees and PnL, durable history
        record, ledger credit, removal from the active set, ledger check,
        then reallocation of a losing unfavorable leg.

        Raises:
            LedgerInvariantError: a balance went negative after the credit
        """
        if self.active_positions.get(position.id) is not position:
            logger.warning("Position already closed", position_id=position.id)
            return None

        if position.mode == TradeMode.REAL:
            try:
                receipt = await self.gateway.submit_market_order(
                    exit_side(position.direction), position.symbol, position.amount, position.instrument_class
                )
                logger.info("Exit order submitted", position_id=position.id, order_id=receipt.order_id)
            except Exception as e:
                logger.error(
                    "Exit order failed, settling locally",
                    position_id=position.id,
                    symbol=position.symbol,
                    amount=str(position.amount),
                    error=str(e),
                )

        fee_rate = await self._resolve_fee_rate(position.instrument_class)
        exit_fee = exit_price * position.amount * fee_rate
        if position.direction == Direction.LONG:
            gross_pnl = (exit_price - position.entry_price) * position.amount * position.leverage
        else:
            gross_pnl = (position.entry_price - exit_price) * position.amount * position.leverage
        net_pnl = gross_pnl - position.entry_fee - exit_fee
        outcome = Outcome.WIN if net_pnl >= ZERO else Outcome.LOSS

        will_reallocate = (
            net_pnl < ZERO
            and position.allocation == Allocation.UNFAVORABLE
            and not position.is_reallocated
        )

        trade = SettledTrade(
            position_id=position.id,
            symbol=position.symbol,
            direction=position.direction,
            instrument_class=position.instrument_class,
            mode=position.mode,
            allocation=position.allocation,
            is_reallocated=position.is_reallocated or will_reallocate,
            entry_price=position.entry_price,
            exit_price=exit_price,
            amount=position.amount,
            leverage=position.leverage,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            entry_fee=position.entry_fee,
            exit_fee=exit_fee,
            gross_pnl=gross_pnl,
            net_pnl=net_pnl,
            outcome=outcome,
            exit_reason=reason,
            entry_time=position.start_time,
            exit_time=datetime.now(timezone.utc),
        )

        try:
            await self.history.record_settled_trade(trade)
        except Exception as e:
            logger.error(
                "Failed to record settled trade",
                position_id=position.id,
                net_pnl=str(net_pnl),
                outcome=outcome.value,
                error=str(e),
            )

        wallet_quantity = position.amount if position.instrument_class == InstrumentClass.SPOT else ZERO
        self.ledger.credit(position.mode, net_pnl + position.locked_capital, wallet_quantity)
        self.ledger.record_pnl(position.mode, position.instrument_class, net_pnl)
        del self.active_positions[position.id]

        logger.info(
            "Position closed",
            position_id=position.id,
            direction=position.direction.value,
            instrument_class=position.instrument_class.value,
            mode=position.mode.value,
            allocation=position.allocation.value,
            reason=reason.value,
            outcome=outcome.value,
            entry_price=fmt(position.entry_price),
            exit_price=fmt(exit_price),
            gross_pnl=fmt(gross_pnl, 4),
            exit_fee=fmt(exit_fee, 4),
            net_pnl=fmt(net_pnl, 4),
            **self.ledger.snapshot(),
        )

        self.ledger.assert_non_negative()

        if will_reallocate:
            position.is_reallocated = True
            logger.info(
                "Reallocating losing unfavorable leg",
                position_id=position.id,
                direction=position.direction.opposite().value,
                amount=str(position.amount),
                entry_price=fmt(exit_price),
            )
            replacement = await self._try_open_locked(
                exit_price,
                position.amount,
                position.direction.opposite(),
                position.instrument_class,
                position.mode,
                Allocation.FAVORABLE,
            )
            if replacement is None:
                logger.warning(
                    "Reallocation not opened, capital stays in the ledger",
                    position_id=position.id,
                    amount=str(position.amount),
                    mode=position.mode.value,
                )

        if not self.active_positions:
            self.log_pnl_summary()
            if self.on_cycle_complete:
                self.on_cycle_complete()

        return trade

    # ============ BALANCES & STATUS ============

    async def refresh_balances(self) -> bool:
        """
        Re-read the real quote balance; seed simulated and wallet balances once.

        Returns:
            True if the real balance was refreshed
        """
        exchange = self.config.exchange
        try:
            real_balance = to_decimal(await self.gateway.get_balance(exchange.quote_asset))
        except Exception as e:
            logger.error("Balance refresh failed", asset=exchange.quote_asset, error=str(e))
            return False

        wallet_quantity = ZERO
        if not self.ledger.seeded:
            try:
                wallet_quantity = to_decimal(await self.gateway.get_balance(exchange.base_asset))
            except Exception as e:
                logger.warning("Wallet balance unavailable, seeding zero", asset=exchange.base_asset, error=str(e))

        try:
            async with self.guard.cycle("refresh_balances"):
                if not self.ledger.seed(real_balance, wallet_quantity, self.config.paper.starting_balance):
                    self.ledger.update_real(real_balance)
        except CycleLockTimeout:
            logger.warning("Balance refresh skipped: cycle lock busy")
            return False
        logger.info("Balances refreshed", **self.ledger.snapshot())
        return True

    def log_pnl_summary(self) -> None:
        logger.info("PNL_SUMMARY", active_positions=len(self.active_positions), **self.ledger.snapshot())

    def status(self) -> Dict:
        return {
            "balances": self.ledger.snapshot(),
            "active_positions": [p.snapshot() for p in self.active_positions.values()],
            "cycles": self.guard.get_cycle_stats(),
        }
