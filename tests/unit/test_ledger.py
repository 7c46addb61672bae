from decimal import Decimal

import pytest

from hedgebot.domain.models import InstrumentClass, TradeMode
from hedgebot.exceptions import InsufficientBalanceError, LedgerInvariantError
from hedgebot.execution.ledger import BalanceLedger


def test_seed_happens_once():
    ledger = BalanceLedger()

    assert ledger.seed(Decimal("500"), Decimal("3")) is True
    assert ledger.simulated == Decimal("500")
    assert ledger.wallet == Decimal("3")

    assert ledger.seed(Decimal("900"), Decimal("7")) is False
    assert ledger.real == Decimal("500")
    assert ledger.simulated == Decimal("500")


def test_seed_with_explicit_simulated_balance():
    ledger = BalanceLedger()
    ledger.seed(Decimal("500"), simulated_balance=Decimal("10000"))

    assert ledger.real == Decimal("500")
    assert ledger.simulated == Decimal("10000")


def test_update_real_leaves_simulated(ledger):
    ledger.update_real(Decimal("1234"))

    assert ledger.real == Decimal("1234")
    assert ledger.simulated == Decimal("10000")


def test_rejected_debit_mutates_nothing(ledger):
    with pytest.raises(InsufficientBalanceError):
        ledger.debit(TradeMode.SIMULATED, Decimal("10000.01"))
    with pytest.raises(InsufficientBalanceError):
        ledger.debit(TradeMode.REAL, Decimal("1"), wallet_quantity=Decimal("101"))

    assert ledger.real == Decimal("10000")
    assert ledger.simulated == Decimal("10000")
    assert ledger.wallet == Decimal("100")


def test_debit_and_credit_by_mode(ledger):
    ledger.debit(TradeMode.REAL, Decimal("100"), wallet_quantity=Decimal("1"))
    ledger.credit(TradeMode.SIMULATED, Decimal("5"))

    assert ledger.real == Decimal("9900")
    assert ledger.simulated == Decimal("10005")
    assert ledger.wallet == Decimal("99")


def test_record_pnl_routes_spot_to_spot_counter(ledger):
    ledger.record_pnl(TradeMode.REAL, InstrumentClass.SPOT, Decimal("3"))
    ledger.record_pnl(TradeMode.REAL, InstrumentClass.FUTURES, Decimal("-2"))
    ledger.record_pnl(TradeMode.SIMULATED, InstrumentClass.FUTURES, Decimal("7"))

    assert ledger.pnl.spot == Decimal("3")
    assert ledger.pnl.real == Decimal("-2")
    assert ledger.pnl.simulated == Decimal("7")


def test_assert_non_negative(ledger):
    ledger.assert_non_negative()

    ledger.credit(TradeMode.SIMULATED, Decimal("-10000.5"))
    with pytest.raises(LedgerInvariantError):
        ledger.assert_non_negative()


def test_snapshot_is_plain_strings(ledger):
    snapshot = ledger.snapshot()

    assert snapshot["real"] == "10000.00"
    assert snapshot["wallet"] == "100.00000000"
    assert set(snapshot) == {"real", "simulated", "wallet", "real_pnl", "simulated_pnl", "spot_pnl"}
