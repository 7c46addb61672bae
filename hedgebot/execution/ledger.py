"""
Balance ledger: real, simulated and wallet balances plus realized PnL.

The ledger is plain state; callers serialize access through the cycle
guard. Debits are checked before they are applied so a rejected debit
leaves every balance untouched.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional

from hedgebot.domain.models import InstrumentClass, TradeMode
from hedgebot.exceptions import InsufficientBalanceError, LedgerInvariantError
from hedgebot.monitoring.logger import get_logger
from hedgebot.utils.decimal_math import ZERO, fmt, to_decimal

logger = get_logger(__name__)


@dataclass
class PnLCounters:
    """Cumulative realized PnL per category."""
    real: Decimal = ZERO
    simulated: Decimal = ZERO
    spot: Decimal = ZERO


@dataclass
class BalanceLedger:
    """
    Process-wide balances.

    ``real`` and ``simulated`` are quote-currency balances. ``wallet`` is the
    base-asset quantity available for spot sells. The simulated and wallet
    balances are seeded once from the first observed exchange balances.
    """
    real: Decimal = ZERO
    simulated: Decimal = ZERO
    wallet: Decimal = ZERO
    pnl: PnLCounters = field(default_factory=PnLCounters)
    seeded: bool = False

    def seed(
        self,
        real_balance: Decimal,
        wallet_quantity: Decimal = ZERO,
        simulated_balance: Optional[Decimal] = None,
    ) -> bool:
        """
        One-time initialization of the simulated and wallet balances.

        Returns:
            True if this call seeded the ledger, False if already seeded
        """
        if self.seeded:
            return False
        self.real = to_decimal(real_balance)
        self.simulated = to_decimal(simulated_balance) if simulated_balance is not None else self.real
        self.wallet = to_decimal(wallet_quantity)
        self.seeded = True
        logger.info(
            "Ledger seeded",
            real=fmt(self.real),
            simulated=fmt(self.simulated),
            wallet=fmt(self.wallet, 8),
        )
        return True

    def update_real(self, balance: Decimal) -> None:
        """Replace the real balance with a fresh exchange reading."""
        self.real = to_decimal(balance)

    def available(self, mode: TradeMode) -> Decimal:
        return self.real if mode == TradeMode.REAL else self.simulated

    def debit(self, mode: TradeMode, amount: Decimal, wallet_quantity: Decimal = ZERO) -> None:
        """
        Debit the mode's balance (and the wallet for spot).

        Raises:
            InsufficientBalanceError: before any mutation, if either balance is short
        """
        available = self.available(mode)
        if amount > available:
            raise InsufficientBalanceError(
                f"Required {fmt(amount)} exceeds available {fmt(available)} ({mode.value})"
            )
        if wallet_quantity > self.wallet:
            raise InsufficientBalanceError(
                f"Required quantity {fmt(wallet_quantity, 8)} exceeds wallet {fmt(self.wallet, 8)}"
            )
        self._adjust(mode, -amount)
        self.wallet -= wallet_quantity

    def credit(self, mode: TradeMode, amount: Decimal, wallet_quantity: Decimal = ZERO) -> None:
        """Credit the mode's balance (and the wallet for spot)."""
        self._adjust(mode, amount)
        self.wallet += wallet_quantity

    def record_pnl(self, mode: TradeMode, instrument_class: InstrumentClass, net_pnl: Decimal) -> None:
        """Spot PnL goes to the spot counter; futures PnL to the mode's counter."""
        if instrument_class == InstrumentClass.SPOT:
            self.pnl.spot += net_pnl
        elif mode == TradeMode.REAL:
            self.pnl.real += net_pnl
        else:
            self.pnl.simulated += net_pnl

    def assert_non_negative(self) -> None:
        """
        Raises:
            LedgerInvariantError: if any balance is negative
        """
        for name in ("real", "simulated", "wallet"):
            value = getattr(self, name)
            if value < ZERO:
                logger.critical("LEDGER_UNDERFLOW", balance=name, value=str(value))
                raise LedgerInvariantError(f"{name} balance went negative: {value}")

    def snapshot(self) -> Dict[str, str]:
        return {
            "real": fmt(self.real),
            "simulated": fmt(self.simulated),
            "wallet": fmt(self.wallet, 8),
            "real_pnl": fmt(self.pnl.real),
            "simulated_pnl": fmt(self.pnl.simulated),
            "spot_pnl": fmt(self.pnl.spot),
        }

    def _adjust(self, mode: TradeMode, delta: Decimal) -> None:
        if mode == TradeMode.REAL:
            self.real += delta
        else:
            self.simulated += delta
