from decimal import Decimal

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from btcbasis.database import get_db
from btcbasis.services import bitcoin

router = APIRouter(
    tags=["Bitcoin"]
)


@router.get("/price", summary="Get current Bitcoin price in USD")
async def get_current_bitcoin_price(db: Session = Depends(get_db)):
    """
    Endpoint to retrieve the current Bitcoin price (USD).
    Leverages fallback logic in services/bitcoin.py and caches the result
    for the calculation endpoints. Raises HTTP 502 if all providers fail.
    """
    quote = await bitcoin.get_current_quote()
    bitcoin.save_spot_price(db, quote.price, source=quote.source)
    return {"USD": float(quote.price)}


@router.get("/price/history", summary="Get historical Bitcoin price (one date)")
async def get_historical_bitcoin_price(date: str = Query(..., description="YYYY-MM-DD")):
    """
    Endpoint to retrieve Bitcoin price (USD) for a specific date.
    """
    price = await bitcoin.get_historical_price(date)
    return {"USD": float(price)}


@router.put("/price/monthly/{month}", summary="Store a month-end closing price")
def put_monthly_close(
    month: str = Path(..., description="YYYY-MM"),
    close_usd: Decimal = Query(..., gt=0),
    db: Session = Depends(get_db),
):
    """
    Month-end closes value past months of the monthly series.
    """
    row = bitcoin.upsert_monthly_close(db, month, close_usd)
    return {"month": row.month, "close_usd": float(row.close_usd)}
