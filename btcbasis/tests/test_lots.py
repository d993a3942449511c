"""
Tests for btcbasis/services/lots.py: consumption order per method,
same-day tie-break, partial lots, over-disposal clamp and holding periods.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from btcbasis.constants import HOLDING_LONG, HOLDING_SHORT
from btcbasis.schemas.calculation import CostMethod, DiagnosticCode
from btcbasis.services.lots import LotLedger, holding_period
from btcbasis.services.normalizer import EventKind, NormalizedEvent

BASE = datetime(2023, 1, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def acquire(day: int, btc: str, cost: str) -> NormalizedEvent:
    return NormalizedEvent(
        date=BASE + timedelta(days=day),
        kind=EventKind.ACQUIRE,
        btc_amount=Decimal(btc),
        fiat_cost=Decimal(cost),
    )


def dispose(day: int, btc: str, proceeds: str) -> NormalizedEvent:
    return NormalizedEvent(
        date=BASE + timedelta(days=day),
        kind=EventKind.DISPOSE,
        btc_amount=Decimal(btc),
        fiat_proceeds=Decimal(proceeds),
    )


def three_lots():
    """Lots bought at 10k, 30k and 20k per BTC."""
    return [
        acquire(0, "1", "10000"),
        acquire(1, "1", "30000"),
        acquire(2, "1", "20000"),
    ]


# =============================================================================
# CONSUMPTION ORDER
# =============================================================================

class TestConsumptionOrder:

    @pytest.mark.parametrize("method, expected_basis", [
        (CostMethod.FIFO, Decimal("10000")),
        (CostMethod.LIFO, Decimal("20000")),
        (CostMethod.HIFO, Decimal("30000")),
        (CostMethod.AVERAGE, Decimal("20000")),
    ])
    def test_first_slice_per_method(self, method, expected_basis):
        """A one-lot disposal consumes the lot each method prefers."""
        ledger = LotLedger(method).replay(three_lots())
        slices = ledger.dispose(dispose(3, "1", "40000"))
        assert len(slices) == 1
        assert slices[0].disposal_basis == expected_basis
        assert slices[0].realized_gain == Decimal("40000") - expected_basis

    def test_fifo_spans_lots(self):
        """1.5 BTC under FIFO takes all of lot 0 and half of lot 1."""
        ledger = LotLedger(CostMethod.FIFO).replay(three_lots())
        slices = ledger.dispose(dispose(3, "1.5", "60000"))
        assert [s.lot_sequence for s in slices] == [0, 1]
        assert [s.disposed_btc for s in slices] == [Decimal("1"), Decimal("0.5")]
        assert sum(s.proceeds for s in slices) == Decimal("60000")
        assert ledger.lots[1].remaining_amount == Decimal("0.5")

    def test_hifo_walks_down_by_unit_cost(self):
        ledger = LotLedger(CostMethod.HIFO).replay(three_lots())
        slices = ledger.dispose(dispose(3, "2.5", "100000"))
        assert [s.lot_sequence for s in slices] == [1, 2, 0]

    def test_average_reprices_pool_on_acquire(self):
        ledger = LotLedger(CostMethod.AVERAGE).replay(three_lots())
        assert all(lot.unit_cost == Decimal("20000") for lot in ledger.lots)
        assert ledger.total_cost_basis == Decimal("60000")

    def test_average_unit_cost_unchanged_by_disposal(self):
        ledger = LotLedger(CostMethod.AVERAGE).replay(three_lots())
        ledger.dispose(dispose(3, "1.2", "30000"))
        assert ledger.remaining_btc == Decimal("1.8")
        assert ledger.total_cost_basis == Decimal("36000")
        assert all(lot.unit_cost == Decimal("20000") for lot in ledger.open_lots())

    def test_same_day_lots_use_insertion_order(self):
        """Identical acquisition timestamps: the first inserted lot goes first."""
        same_day = [acquire(0, "1", "100"), acquire(0, "1", "200"), acquire(0, "1", "300")]
        ledger = LotLedger(CostMethod.FIFO).replay(same_day)
        slices = ledger.dispose(dispose(1, "1", "500"))
        assert slices[0].lot_sequence == 0
        assert slices[0].disposal_basis == Decimal("100")

    def test_hifo_ties_use_insertion_order(self):
        ties = [acquire(0, "1", "200"), acquire(1, "1", "200")]
        ledger = LotLedger(CostMethod.HIFO).replay(ties)
        slices = ledger.dispose(dispose(2, "1", "300"))
        assert slices[0].lot_sequence == 0

    def test_neutral_events_are_ignored(self):
        neutral = NormalizedEvent(date=BASE, kind=EventKind.NEUTRAL)
        ledger = LotLedger(CostMethod.FIFO).replay([neutral])
        assert ledger.lots == []
        assert ledger.remaining_btc == Decimal("0")


# =============================================================================
# PARTIAL LOTS AND OVER-DISPOSAL
# =============================================================================

class TestCoverage:

    def test_partial_lot_consumption(self):
        ledger = LotLedger(CostMethod.FIFO).replay([acquire(0, "2", "10000")])
        ledger.dispose(dispose(1, "0.5", "5000"))
        assert ledger.realized_gains == Decimal("2500")
        assert ledger.lots[0].remaining_amount == Decimal("1.5")
        assert ledger.total_cost_basis == Decimal("7500")

    def test_over_disposal_is_clamped_and_flagged(self):
        ledger = LotLedger(CostMethod.FIFO).replay([acquire(0, "1", "10000")])
        slices = ledger.dispose(dispose(1, "1.5", "60000"))

        assert all(lot.remaining_amount >= 0 for lot in ledger.lots)
        assert ledger.remaining_btc == Decimal("0")
        assert ledger.uncovered_btc == Decimal("0.5")

        covered, uncovered = slices
        assert covered.realized_gain == Decimal("30000")
        assert uncovered.lot_sequence is None
        assert uncovered.disposal_basis == Decimal("0")
        assert uncovered.realized_gain == Decimal("20000")

        assert len(ledger.diagnostics) == 1
        diag = ledger.diagnostics[0]
        assert diag.code == DiagnosticCode.INSUFFICIENT_LOT_COVERAGE
        assert diag.btc_amount == Decimal("0.5")

    def test_disposal_with_no_lots(self):
        ledger = LotLedger(CostMethod.LIFO)
        ledger.dispose(dispose(0, "1", "0"))
        assert ledger.lots == []
        assert ledger.realized_gains == Decimal("0")
        assert ledger.uncovered_btc == Decimal("1")


# =============================================================================
# HOLDING PERIOD
# =============================================================================

class TestHoldingPeriod:

    @pytest.mark.parametrize("days, expected", [
        (0, HOLDING_SHORT),
        (364, HOLDING_SHORT),
        (365, HOLDING_LONG),
        (366, HOLDING_LONG),
    ])
    def test_threshold(self, days, expected):
        assert holding_period(BASE, BASE + timedelta(days=days)) == expected

    def test_slices_carry_holding_period(self):
        ledger = LotLedger(CostMethod.FIFO).replay([acquire(0, "1", "100"), acquire(300, "1", "100")])
        slices = ledger.dispose(dispose(400, "2", "400"))
        assert [s.holding_period for s in slices] == [HOLDING_LONG, HOLDING_SHORT]
