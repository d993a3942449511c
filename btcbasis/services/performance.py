"""
btcbasis/services/performance.py

Period/Performance Aggregator.

Monthly series
--------------
aggregate() buckets the normalized history into one MonthlyPoint per calendar
month, from the month of the first event through the month of 'as_of':
 - months without events are forward-filled from the previous state
 - cost_basis comes from a private lot-ledger walk (FIFO unless told otherwise)
 - btc_price is the month's close when 'monthly_closes' has it, otherwise the
   last price seen on an event; the current month always uses current_price
 - portfolio_value = max(0, cumulative_btc) * btc_price

monthly_series() adds trailing simple moving averages over portfolio_value
(a 3-month one and a dynamic one that shrinks for short histories). Slots
where the window is not yet full are None.

Performance metrics
-------------------
performance_summary() derives cumulative returns, CAGR windows, max drawdown,
HODL time, buy-price stats, HODL age buckets, short/long-term holdings and
DCA vs lump-sum from the same normalized events.
"""

import logging
from calendar import monthrange
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from btcbasis.constants import (
    HODL_AGE_BUCKETS,
    HOLDING_LONG,
    MAX_DYNAMIC_MOVING_AVERAGE,
    SHORT_MOVING_AVERAGE,
    ZERO,
)
from btcbasis.schemas.calculation import (
    AllTimeHigh,
    CostMethod,
    DCAPerformance,
    HodlAgeBucket,
    HoldingsClassification,
    MaxDrawdown,
    MonthlyPoint,
    MonthlySeries,
    PerformanceSummary,
    ReturnWindow,
)
from btcbasis.services.cost_basis import require_price, resolve_as_of
from btcbasis.services.lots import LotLedger, holding_period
from btcbasis.services.normalizer import EventKind, NormalizedEvent, normalize
from btcbasis.utils.money import btc, percent, usd, usd_or_none

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = Decimal("365.25")
CAGR_FLOOR = Decimal("-99.99")
CAGR_CEILING = Decimal("9999.99")
DCA_LOOKBACK_MONTHS = 6

# (label, months back); YTD is handled separately
RETURN_WINDOWS = [("1M", 1), ("3M", 3), ("YTD", None), ("1Y", 12), ("3Y", 36), ("5Y", 60)]
CAGR_YEARS = [2, 3, 4, 5, 6, 7, 8]


@dataclass(frozen=True)
class HistoryPoint:
    date: datetime
    btc: Decimal
    price: Decimal
    investment: Decimal

    @property
    def value(self) -> Decimal:
        return max(ZERO, self.btc) * self.price


# ------------------------------------------------------------------------------
# Date Helpers
# ------------------------------------------------------------------------------
def month_key(dt: datetime) -> str:
    return f"{dt.year:04d}-{dt.month:02d}"


def iter_months(start: datetime, end: datetime) -> Iterable[str]:
    """Yields 'YYYY-MM' for every month from start through end, inclusive."""
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        yield f"{year:04d}-{month:02d}"
        month += 1
        if month > 12:
            year, month = year + 1, 1


def shift_months(dt: datetime, months: int) -> datetime:
    """Moves dt back by 'months', clamping the day to the target month."""
    total = dt.year * 12 + (dt.month - 1) - months
    year, month0 = divmod(total, 12)
    day = min(dt.day, monthrange(year, month0 + 1)[1])
    return dt.replace(year=year, month=month0 + 1, day=day)


def _years_between(start: datetime, end: datetime) -> Decimal:
    seconds = Decimal(str((end - start).total_seconds()))
    return seconds / Decimal(86400) / DAYS_PER_YEAR


def _events_until(transactions, as_of: datetime):
    normalized = normalize(transactions)
    events = [ev for ev in normalized.events if ev.date <= as_of]
    return events, normalized.diagnostics

# ------------------------------------------------------------------------------
# Moving Averages
# ------------------------------------------------------------------------------
def moving_average(values: List[Decimal], window: int) -> List[Optional[Decimal]]:
    """
    Trailing simple mean. Positions before the window fills are None.
    """
    if window < 1:
        raise ValueError("Moving-average window must be at least 1.")
    averages = []
    for i in range(len(values)):
        if i + 1 < window:
            averages.append(None)
            continue
        chunk = values[i + 1 - window:i + 1]
        averages.append(sum(chunk, ZERO) / window)
    return averages


def dynamic_window(n: int) -> int:
    """Half the series length, between 1 and MAX_DYNAMIC_MOVING_AVERAGE."""
    return max(1, min(MAX_DYNAMIC_MOVING_AVERAGE, n // 2))

# ------------------------------------------------------------------------------
# Monthly Aggregation
# ------------------------------------------------------------------------------
def aggregate(
    transactions,
    current_price,
    as_of: Optional[datetime] = None,
    monthly_closes: Optional[Dict[str, Decimal]] = None,
    method=CostMethod.FIFO,
) -> List[MonthlyPoint]:
    points, _diagnostics = _aggregate(transactions, current_price, as_of, monthly_closes, method)
    return points


def monthly_series(
    transactions,
    current_price,
    as_of: Optional[datetime] = None,
    monthly_closes: Optional[Dict[str, Decimal]] = None,
    method=CostMethod.FIFO,
) -> MonthlySeries:
    points, diagnostics = _aggregate(transactions, current_price, as_of, monthly_closes, method)
    values = [p.portfolio_value for p in points]
    window = dynamic_window(len(values))

    return MonthlySeries(
        points=points,
        moving_average_short=[usd_or_none(v) for v in moving_average(values, SHORT_MOVING_AVERAGE)],
        moving_average_dynamic=[usd_or_none(v) for v in moving_average(values, window)],
        dynamic_window=window,
        diagnostics=diagnostics,
    )


def _aggregate(transactions, current_price, as_of, monthly_closes, method) -> Tuple[List[MonthlyPoint], list]:
    price = require_price(current_price)
    as_of = resolve_as_of(as_of)
    method = CostMethod.parse(method)
    closes = {key: Decimal(str(value)) for key, value in (monthly_closes or {}).items()}

    events, diagnostics = _events_until(transactions, as_of)
    if not events:
        return [], list(diagnostics)

    ledger = LotLedger(method)
    current_key = month_key(as_of)
    cumulative_btc = ZERO
    last_price: Optional[Decimal] = None
    points = []
    idx = 0

    for key in iter_months(events[0].date, as_of):
        while idx < len(events) and month_key(events[idx].date) == key:
            event = events[idx]
            ledger.apply(event)
            cumulative_btc += event.signed_btc
            if event.unit_price is not None:
                last_price = event.unit_price
            idx += 1

        is_current = key == current_key
        if is_current:
            month_price = price
        elif key in closes:
            month_price = closes[key]
        elif last_price is not None:
            month_price = last_price
        else:
            # no price seen yet: value at spot rather than report zero
            month_price = price

        points.append(MonthlyPoint(
            month=key,
            portfolio_value=usd(max(ZERO, cumulative_btc) * month_price),
            cost_basis=usd(ledger.total_cost_basis),
            cumulative_btc=btc(cumulative_btc),
            btc_price=usd(month_price),
            is_current_month=is_current,
        ))

    logger.debug(f"Aggregated {len(events)} events into {len(points)} monthly points")
    return points, list(diagnostics) + list(ledger.diagnostics)

# ------------------------------------------------------------------------------
# Portfolio History
# ------------------------------------------------------------------------------
def portfolio_history(
    events: List[NormalizedEvent],
    current_price: Decimal,
    as_of: datetime,
) -> List[HistoryPoint]:
    """
    One point per event (BTC held, price at the event, fiat invested so far)
    plus a final point at as_of valued at current_price.
    """
    points = []
    held = ZERO
    invested = ZERO
    last_price = current_price

    for event in events:
        held += event.signed_btc
        if event.kind == EventKind.ACQUIRE:
            invested += event.fiat_cost
        if event.unit_price is not None:
            last_price = event.unit_price
        points.append(HistoryPoint(date=event.date, btc=held, price=last_price, investment=invested))

    if points:
        points.append(HistoryPoint(date=as_of, btc=held, price=current_price, investment=invested))
    return points


def _state_at(history: List[HistoryPoint], target: datetime) -> Optional[HistoryPoint]:
    state = None
    for point in history:
        if point.date > target:
            break
        state = point
    return state


def compound_annual_growth(end_value: Decimal, start_value: Decimal, years: Decimal) -> Optional[Decimal]:
    """
    (end / start) ** (1 / years) - 1, as a percent clamped to
    [CAGR_FLOOR, CAGR_CEILING]. None when undefined.
    """
    if start_value <= 0 or end_value <= 0 or years <= 0:
        return None
    growth = ((end_value / start_value) ** (Decimal(1) / years) - 1) * 100
    return min(max(growth, CAGR_FLOOR), CAGR_CEILING)


def max_drawdown(history: List[HistoryPoint]) -> MaxDrawdown:
    """
    Largest peak-to-trough fall in portfolio value, peak preceding trough.
    """
    best = MaxDrawdown()
    peak: Optional[HistoryPoint] = None

    for point in history:
        if peak is None or point.value > peak.value:
            peak = point
            continue
        if peak.value <= 0:
            continue
        drawdown = (peak.value - point.value) / peak.value * 100
        if drawdown > best.percent:
            best = MaxDrawdown(
                percent=drawdown,
                from_date=peak.date,
                to_date=point.date,
                portfolio_peak=peak.value,
                portfolio_low=point.value,
            )

    return MaxDrawdown(
        percent=percent(best.percent),
        from_date=best.from_date,
        to_date=best.to_date,
        portfolio_peak=usd(best.portfolio_peak),
        portfolio_low=usd(best.portfolio_low),
    )


def hodl_time_days(events: List[NormalizedEvent], as_of: datetime) -> int:
    """Days since the last disposal, or since the first acquisition."""
    disposals = [ev for ev in events if ev.kind == EventKind.DISPOSE]
    if disposals:
        return (as_of - disposals[-1].date).days
    acquisitions = [ev for ev in events if ev.kind == EventKind.ACQUIRE]
    if acquisitions:
        return (as_of - acquisitions[0].date).days
    return 0

# ------------------------------------------------------------------------------
# Holdings
# ------------------------------------------------------------------------------
def hodl_age_distribution(transactions, as_of: Optional[datetime] = None) -> List[HodlAgeBucket]:
    """
    BTC still held (FIFO lots) bucketed by how long it has been held.
    """
    as_of = resolve_as_of(as_of)
    events, _diagnostics = _events_until(transactions, as_of)
    return _age_buckets(LotLedger(CostMethod.FIFO).replay(events), as_of)


def _age_buckets(ledger: LotLedger, as_of: datetime) -> List[HodlAgeBucket]:
    totals = {label: ZERO for label, _low, _high in HODL_AGE_BUCKETS}
    for lot in ledger.open_lots():
        years = Decimal((as_of - lot.acquired_date).days) / Decimal(365)
        for label, low, high in HODL_AGE_BUCKETS:
            if years >= low and (high is None or years < high):
                totals[label] += lot.remaining_amount
                break
    return [HodlAgeBucket(age_range=label, btc_amount=btc(totals[label])) for label, _l, _h in HODL_AGE_BUCKETS]


def holdings_classification(
    transactions,
    as_of: Optional[datetime] = None,
    method=CostMethod.FIFO,
) -> HoldingsClassification:
    as_of = resolve_as_of(as_of)
    events, _diagnostics = _events_until(transactions, as_of)
    return _classify(LotLedger(CostMethod.parse(method)).replay(events), as_of)


def _classify(ledger: LotLedger, as_of: datetime) -> HoldingsClassification:
    short_term = long_term = ZERO
    for lot in ledger.open_lots():
        if holding_period(lot.acquired_date, as_of) == HOLDING_LONG:
            long_term += lot.remaining_amount
        else:
            short_term += lot.remaining_amount
    return HoldingsClassification(short_term=btc(short_term), long_term=btc(long_term))


def dca_performance(transactions, current_price, as_of: Optional[datetime] = None) -> DCAPerformance:
    price = require_price(current_price)
    as_of = resolve_as_of(as_of)
    events, _diagnostics = _events_until(transactions, as_of)
    return _dca(events, price, as_of)


def _dca(events: List[NormalizedEvent], price: Decimal, as_of: datetime) -> DCAPerformance:
    """
    Return of the trailing buys versus investing the same total at the
    first of those buys.
    """
    since = shift_months(as_of, DCA_LOOKBACK_MONTHS)
    buys = [
        ev for ev in events
        if ev.kind == EventKind.ACQUIRE and ev.source_type.lower() == "buy" and ev.date >= since
    ]
    invested = sum((ev.fiat_cost for ev in buys), ZERO)
    if not buys or invested <= 0:
        return DCAPerformance()

    bought = sum((ev.btc_amount for ev in buys), ZERO)
    dca_return = (bought * price - invested) / invested * 100

    lump_return = ZERO
    first_price = buys[0].unit_price
    if first_price:
        lump_btc = invested / first_price
        lump_return = (lump_btc * price - invested) / invested * 100

    return DCAPerformance(
        dca_return=percent(dca_return),
        lump_sum_return=percent(lump_return),
        outperformance=percent(dca_return - lump_return),
    )

# ------------------------------------------------------------------------------
# Summary
# ------------------------------------------------------------------------------
def performance_summary(
    transactions,
    current_price,
    as_of: Optional[datetime] = None,
    ath: Optional[AllTimeHigh] = None,
) -> PerformanceSummary:
    price = require_price(current_price)
    as_of = resolve_as_of(as_of)
    events, diagnostics = _events_until(transactions, as_of)
    ath = ath or AllTimeHigh()

    windows = {label: ReturnWindow() for label, _months in RETURN_WINDOWS}
    cagr = {"total": None}
    cagr.update({f"{years}Y": None for years in [1] + CAGR_YEARS})

    history = portfolio_history(events, price, as_of)
    if not history:
        windows["total"] = ReturnWindow(percent=ZERO, dollar=ZERO)
        return PerformanceSummary(
            current_price=usd(price),
            cumulative=windows,
            compound_growth=cagr,
            all_time_high=ath,
            hodl_age_distribution=_age_buckets(LotLedger(CostMethod.FIFO), as_of),
            diagnostics=list(diagnostics),
        )

    now = history[-1]
    current_value = now.value
    invested = now.investment
    first = history[0]

    # Cumulative returns; None where history is shorter than the window
    total_pct = (current_value - invested) / invested * 100 if invested > 0 else ZERO
    windows["total"] = ReturnWindow(percent=percent(total_pct), dollar=usd(current_value - invested))
    for label, months in RETURN_WINDOWS:
        if months is None:
            start = as_of.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        else:
            start = shift_months(as_of, months)
        state = _state_at(history, start)
        if first.date > start or state is None:
            continue
        pct = (current_value - state.value) / state.investment * 100 if state.investment > 0 else ZERO
        windows[label] = ReturnWindow(percent=percent(pct), dollar=usd(current_value - state.value))

    # Annualized growth
    total_years = _years_between(first.date, as_of)
    if total_years >= Decimal("0.5"):
        cagr["total"] = compound_annual_growth(current_value, first.value, total_years)
    cagr["1Y"] = windows["1Y"].percent
    for years in CAGR_YEARS:
        state = _state_at(history, shift_months(as_of, years * 12))
        if state is None or state.value <= 0:
            continue
        actual_years = _years_between(state.date, as_of)
        if actual_years >= Decimal("0.9"):
            cagr[f"{years}Y"] = compound_annual_growth(current_value, state.value, actual_years)
    cagr = {key: (percent(value) if value is not None else None) for key, value in cagr.items()}

    buy_prices = [
        ev.unit_price for ev in events
        if ev.kind == EventKind.ACQUIRE and ev.source_type.lower() == "buy" and ev.unit_price
    ]
    average_buy = invested / now.btc if invested > 0 and now.btc > 0 else ZERO

    fifo = LotLedger(CostMethod.FIFO).replay(events)
    summary = PerformanceSummary(
        current_price=usd(price),
        current_value=usd(current_value),
        total_invested=usd(invested),
        cumulative=windows,
        compound_growth=cagr,
        max_drawdown=max_drawdown(history),
        all_time_high=ath,
        hodl_time_days=hodl_time_days(events, as_of),
        average_buy_price=usd(average_buy),
        lowest_buy_price=usd(min(buy_prices)) if buy_prices else ZERO,
        highest_buy_price=usd(max(buy_prices)) if buy_prices else ZERO,
        hodl_age_distribution=_age_buckets(fifo, as_of),
        holdings=_classify(fifo, as_of),
        dca=_dca(events, price, as_of),
        diagnostics=list(diagnostics) + list(fifo.diagnostics),
    )
    logger.info(
        f"Performance: value={summary.current_value} invested={summary.total_invested} "
        f"drawdown={summary.max_drawdown.percent}%"
    )
    return summary
