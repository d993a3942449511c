"""
btcbasis/routers/calculation.py

API endpoints for cost-basis and portfolio calculations:
  - Cost basis for one method (FIFO, LIFO, HIFO, AVERAGE)
  - All four methods side by side
  - Monthly portfolio series with moving averages
  - Performance summary (returns, CAGR, drawdown, HODL metrics)

Every request loads the user's full history and replays it; nothing is
cached between requests. The spot price comes from the 'price' query
parameter when given, else a fresh cached spot price, else a live fetch.

The underlying logic lives in btcbasis/services/cost_basis.py and
btcbasis/services/performance.py. Decimals are converted to floats here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from btcbasis.constants import SPOT_PRICE_MAX_AGE_SECONDS
from btcbasis.database import get_db
from btcbasis.schemas.calculation import CostMethod
from btcbasis.services import bitcoin
from btcbasis.services.cost_basis import calculate, compare_methods
from btcbasis.services.performance import monthly_series, performance_summary
from btcbasis.services.transaction import get_raw_transactions
from btcbasis.utils.money import convert_decimal

# main.py sets the final prefix ("/api/calculations") and tags.
router = APIRouter(tags=["calculations"])


async def resolve_price(price: Optional[Decimal], db: Session) -> Decimal:
    """
    Explicit price first, then a cached spot price that is still fresh, then
    a live fetch (which raises NoPriceAvailable when every provider fails).
    """
    if price is not None:
        return price
    cached = bitcoin.get_latest_spot_price(db, max_age_seconds=SPOT_PRICE_MAX_AGE_SECONDS)
    if cached is not None:
        return cached
    quote = await bitcoin.get_current_quote()
    bitcoin.save_spot_price(db, quote.price, source=quote.source)
    return quote.price


def _parse_method(method: str) -> CostMethod:
    try:
        return CostMethod.parse(method)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/cost-basis")
async def api_get_cost_basis(
    user_id: Optional[str] = Query(None),
    method: str = Query("FIFO"),
    price: Optional[Decimal] = Query(None, description="Spot price override (USD)"),
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
) -> Dict:
    """
    Cost basis, unrealized/realized gains and estimated liability for one
    method. Row-level problems come back in 'diagnostics'.
    """
    cost_method = _parse_method(method)
    transactions = get_raw_transactions(db, user_id)
    current_price = await resolve_price(price, db)
    result = calculate(user_id, cost_method, transactions, current_price, as_of=as_of)
    return convert_decimal(result.model_dump())


@router.get("/cost-basis/compare")
async def api_compare_methods(
    user_id: Optional[str] = Query(None),
    price: Optional[Decimal] = Query(None),
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
) -> Dict:
    transactions = get_raw_transactions(db, user_id)
    current_price = await resolve_price(price, db)
    comparison = compare_methods(user_id, transactions, current_price, as_of=as_of)
    return {
        "current_price": float(comparison.current_price),
        "results": {
            method.value: convert_decimal(result.model_dump())
            for method, result in comparison.results.items()
        },
    }


@router.get("/monthly")
async def api_get_monthly_series(
    user_id: Optional[str] = Query(None),
    method: str = Query("FIFO"),
    price: Optional[Decimal] = Query(None),
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
) -> Dict:
    """
    One point per month from the first transaction to now, valued at the
    stored month-end closes where available.
    """
    cost_method = _parse_method(method)
    transactions = get_raw_transactions(db, user_id)
    current_price = await resolve_price(price, db)
    series = monthly_series(
        transactions,
        current_price,
        as_of=as_of,
        monthly_closes=bitcoin.get_monthly_closes(db),
        method=cost_method,
    )
    return convert_decimal(series.model_dump())


@router.get("/performance")
async def api_get_performance(
    user_id: Optional[str] = Query(None),
    price: Optional[Decimal] = Query(None),
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
) -> Dict:
    transactions = get_raw_transactions(db, user_id)
    current_price = await resolve_price(price, db)
    summary = performance_summary(transactions, current_price, as_of=as_of)
    return convert_decimal(summary.model_dump())
