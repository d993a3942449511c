"""
btcbasis/services/lots.py

In-memory lot ledger used by every cost-basis method.

Each ACQUIRE opens a Lot; each DISPOSE consumes open lots in the order the
method dictates and records one LotDisposal per consumed slice:
 - FIFO: oldest acquired_date first
 - LIFO: newest acquired_date first
 - HIFO: highest unit_cost first
 - AVERAGE: every open lot is re-priced to the pool's weighted unit cost on
   each acquisition, then consumed oldest first. Gains are identical to
   D * (sale price - average cost); the oldest-first order only attributes
   holding periods.
Equal sort keys fall back to the insertion sequence, so same-day imports are
deterministic.

A disposal larger than the open lots is clamped: the shortfall is booked as
proceeds with zero basis and reported as INSUFFICIENT_LOT_COVERAGE. No lot
ever goes negative.

The ledger is private to one calculation. It is never cached or shared.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from btcbasis.constants import (
    HOLDING_LONG,
    HOLDING_SHORT,
    LONG_TERM_HOLDING_DAYS,
    ZERO,
)
from btcbasis.schemas.calculation import CostMethod, Diagnostic, DiagnosticCode
from btcbasis.services.normalizer import EventKind, NormalizedEvent

logger = logging.getLogger(__name__)


def holding_period(acquired_date: datetime, disposal_date: datetime) -> str:
    """
    LONG if held at least LONG_TERM_HOLDING_DAYS, otherwise SHORT.
    """
    days_held = (disposal_date - acquired_date).days
    return HOLDING_LONG if days_held >= LONG_TERM_HOLDING_DAYS else HOLDING_SHORT


@dataclass
class Lot:
    sequence: int
    acquired_date: datetime
    original_amount: Decimal
    remaining_amount: Decimal
    unit_cost: Decimal

    @property
    def remaining_cost(self) -> Decimal:
        return self.remaining_amount * self.unit_cost


@dataclass(frozen=True)
class LotDisposal:
    """
    One slice of a disposal matched against one lot. lot_sequence is None for
    the uncovered shortfall of an over-disposal.
    """
    lot_sequence: Optional[int]
    acquired_date: Optional[datetime]
    disposal_date: datetime
    disposed_btc: Decimal
    disposal_basis: Decimal
    proceeds: Decimal
    realized_gain: Decimal
    holding_period: str


@dataclass
class LotLedger:
    method: CostMethod
    lots: List[Lot] = field(default_factory=list)
    disposals: List[LotDisposal] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    realized_gains: Decimal = ZERO
    uncovered_btc: Decimal = ZERO
    _next_sequence: int = 0

    # --------------------------------------------------------------------------
    # Event application
    # --------------------------------------------------------------------------
    def apply(self, event: NormalizedEvent) -> None:
        if event.kind == EventKind.ACQUIRE:
            self.acquire(event)
        elif event.kind == EventKind.DISPOSE:
            self.dispose(event)

    def replay(self, events) -> "LotLedger":
        for event in events:
            self.apply(event)
        return self

    def acquire(self, event: NormalizedEvent) -> Lot:
        amount = event.btc_amount
        unit_cost = event.fiat_cost / amount

        if self.method == CostMethod.AVERAGE:
            pool_amount = self.remaining_btc + amount
            pool_cost = self.total_cost_basis + event.fiat_cost
            unit_cost = pool_cost / pool_amount
            for lot in self.open_lots():
                lot.unit_cost = unit_cost

        lot = Lot(
            sequence=self._next_sequence,
            acquired_date=event.date,
            original_amount=amount,
            remaining_amount=amount,
            unit_cost=unit_cost,
        )
        self._next_sequence += 1
        self.lots.append(lot)
        logger.debug(
            f"[{self.method.value}] Lot {lot.sequence} opened: {amount} BTC @ {unit_cost}"
        )
        return lot

    def dispose(self, event: NormalizedEvent) -> List[LotDisposal]:
        amount = event.btc_amount
        unit_sale_price = event.fiat_proceeds / amount
        remaining_outflow = amount
        proceeds_left = event.fiat_proceeds
        slices = []

        for lot in self._consumption_order():
            if remaining_outflow <= 0:
                break

            can_use = min(lot.remaining_amount, remaining_outflow)
            remaining_outflow -= can_use
            lot.remaining_amount -= can_use

            # the last slice takes what is left so proceeds sum exactly
            if remaining_outflow == 0:
                slice_proceeds = proceeds_left
            else:
                slice_proceeds = can_use * unit_sale_price
            proceeds_left -= slice_proceeds

            basis = can_use * lot.unit_cost
            slices.append(LotDisposal(
                lot_sequence=lot.sequence,
                acquired_date=lot.acquired_date,
                disposal_date=event.date,
                disposed_btc=can_use,
                disposal_basis=basis,
                proceeds=slice_proceeds,
                realized_gain=slice_proceeds - basis,
                holding_period=holding_period(lot.acquired_date, event.date),
            ))

        if remaining_outflow > 0:
            slices.append(self._uncovered(event, remaining_outflow, proceeds_left))

        for disp in slices:
            self.realized_gains += disp.realized_gain
        self.disposals.extend(slices)
        return slices

    def _uncovered(self, event: NormalizedEvent, shortfall: Decimal, proceeds: Decimal) -> LotDisposal:
        self.uncovered_btc += shortfall
        message = (
            f"Disposal of {event.btc_amount} BTC on {event.date.date().isoformat()} "
            f"exceeds recorded holdings by {shortfall} BTC; the shortfall is "
            f"treated as zero-basis gain."
        )
        logger.warning(f"[{self.method.value}] {message}")
        self.diagnostics.append(Diagnostic(
            code=DiagnosticCode.INSUFFICIENT_LOT_COVERAGE,
            message=message,
            row_index=event.row_index,
            date=event.date,
            btc_amount=shortfall,
        ))
        # unknown acquisition date: reported as short term
        return LotDisposal(
            lot_sequence=None,
            acquired_date=None,
            disposal_date=event.date,
            disposed_btc=shortfall,
            disposal_basis=ZERO,
            proceeds=proceeds,
            realized_gain=proceeds,
            holding_period=HOLDING_SHORT,
        )

    # --------------------------------------------------------------------------
    # Queries
    # --------------------------------------------------------------------------
    def open_lots(self) -> List[Lot]:
        """Lots with BTC left, in insertion order."""
        return [lot for lot in self.lots if lot.remaining_amount > 0]

    def _consumption_order(self) -> List[Lot]:
        open_lots = self.open_lots()
        if self.method == CostMethod.LIFO:
            return sorted(open_lots, key=lambda l: (l.acquired_date, l.sequence), reverse=True)
        if self.method == CostMethod.HIFO:
            return sorted(open_lots, key=lambda l: (-l.unit_cost, l.sequence))
        # FIFO, and AVERAGE for holding-period attribution
        return sorted(open_lots, key=lambda l: (l.acquired_date, l.sequence))

    @property
    def remaining_btc(self) -> Decimal:
        return sum((lot.remaining_amount for lot in self.lots), ZERO)

    @property
    def total_cost_basis(self) -> Decimal:
        return sum((lot.remaining_cost for lot in self.open_lots()), ZERO)
