"""
btcbasis/services/cost_basis.py

Cost Basis Calculator: the single orchestration path from raw transaction
rows to a CostBasisResult.

    rows -> normalize() -> LotLedger(method).replay() -> CostBasisResult

Every call rebuilds the ledger from the full history; nothing is cached
between calls, so the same inputs always yield the same output. Pass 'as_of'
to pin the holding-period split of held lots (it defaults to now).

The current price is an argument, never fetched here. A missing or
non-positive price raises NoPriceAvailable; valuation outputs are meaningless
without it.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from btcbasis.constants import (
    HOLDING_LONG,
    LONG_TERM_TAX_RATE,
    SHORT_TERM_TAX_RATE,
    ZERO,
)
from btcbasis.exceptions import MissingUserError, NoPriceAvailable
from btcbasis.schemas.calculation import CostBasisResult, CostMethod, MethodComparison
from btcbasis.services.lots import LotLedger, holding_period
from btcbasis.services.normalizer import NormalizationResult, normalize, parse_date
from btcbasis.utils.money import btc, percent, usd

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------
def calculate(
    user_id: Optional[str],
    method,
    transactions: Iterable,
    current_price,
    as_of: Optional[datetime] = None,
) -> CostBasisResult:
    """
    Replays the user's full history through one matching method.

    Raises:
        MissingUserError: no user id given.
        NoPriceAvailable: current_price is missing or not positive.
        ValueError: unknown method label.
    """
    if not user_id:
        raise MissingUserError()
    price = require_price(current_price)
    method = CostMethod.parse(method)
    as_of = resolve_as_of(as_of)

    normalized = normalize(transactions)
    result = _build_result(method, normalized, price, as_of)
    logger.info(
        f"[{method.value}] user={user_id} remaining={result.remaining_btc} BTC "
        f"basis={result.total_cost_basis} realized={result.realized_gains} "
        f"diagnostics={len(result.diagnostics)}"
    )
    return result


def compare_methods(
    user_id: Optional[str],
    transactions: Iterable,
    current_price,
    as_of: Optional[datetime] = None,
) -> MethodComparison:
    """
    Runs FIFO, LIFO, HIFO and AVERAGE over the same normalized stream, each
    with its own ledger.
    """
    if not user_id:
        raise MissingUserError()
    price = require_price(current_price)
    as_of = resolve_as_of(as_of)

    normalized = normalize(transactions)
    results = {
        method: _build_result(method, normalized, price, as_of)
        for method in CostMethod
    }
    logger.info(f"Compared {len(results)} methods for user={user_id}")
    return MethodComparison(current_price=usd(price), results=results)


def require_price(current_price) -> Decimal:
    if current_price is None:
        raise NoPriceAvailable()
    try:
        price = Decimal(str(current_price))
    except (InvalidOperation, ValueError):
        raise NoPriceAvailable(f"Invalid Bitcoin price: {current_price!r}")
    if not price.is_finite() or price <= 0:
        raise NoPriceAvailable(f"Invalid Bitcoin price: {current_price!r}")
    return price


def resolve_as_of(as_of: Optional[datetime]) -> datetime:
    if as_of is None:
        return datetime.now(timezone.utc)
    return parse_date(as_of)


# ------------------------------------------------------------------------------
# Internal Helpers
# ------------------------------------------------------------------------------
def _build_result(
    method: CostMethod,
    normalized: NormalizationResult,
    price: Decimal,
    as_of: datetime,
) -> CostBasisResult:
    ledger = LotLedger(method).replay(normalized.events)

    remaining = ledger.remaining_btc
    total_cost = ledger.total_cost_basis
    unrealized = remaining * price - total_cost

    average_cost = total_cost / remaining if remaining > 0 else ZERO
    unrealized_pct = unrealized / total_cost * 100 if total_cost > 0 else ZERO

    # Held lots split against as_of; liability only on lots sitting on a gain
    short_btc = long_btc = ZERO
    short_liability = long_liability = ZERO
    for lot in ledger.open_lots():
        lot_gain = lot.remaining_amount * price - lot.remaining_cost
        if holding_period(lot.acquired_date, as_of) == HOLDING_LONG:
            long_btc += lot.remaining_amount
            if lot_gain > 0:
                long_liability += lot_gain * LONG_TERM_TAX_RATE
        else:
            short_btc += lot.remaining_amount
            if lot_gain > 0:
                short_liability += lot_gain * SHORT_TERM_TAX_RATE

    realized_short = realized_long = ZERO
    for disp in ledger.disposals:
        if disp.holding_period == HOLDING_LONG:
            realized_long += disp.realized_gain
        else:
            realized_short += disp.realized_gain

    return CostBasisResult(
        method=method,
        total_cost_basis=usd(total_cost),
        average_cost=usd(average_cost),
        unrealized_gain=usd(unrealized),
        unrealized_gain_percent=percent(unrealized_pct),
        realized_gains=usd(ledger.realized_gains),
        remaining_btc=btc(remaining),
        potential_tax_liability_short_term=usd(short_liability),
        potential_tax_liability_long_term=usd(long_liability),
        realized_short_term_gains=usd(realized_short),
        realized_long_term_gains=usd(realized_long),
        short_term_btc=btc(short_btc),
        long_term_btc=btc(long_btc),
        uncovered_btc=btc(ledger.uncovered_btc),
        diagnostics=list(normalized.diagnostics) + list(ledger.diagnostics),
    )
