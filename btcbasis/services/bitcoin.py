"""
btcbasis/services/bitcoin.py

Bitcoin price source.

Current and historical USD prices are fetched with failover:
CoinGecko -> Kraken -> CoinDesk. The first provider that answers with a
parseable price wins; if all fail, NoPriceAvailable is raised (HTTP 502 at
the API). Prices are returned as Decimal; get_current_quote() also names the
provider.

Fetched spot prices are cached in the 'spot_prices' table so calculation
endpoints can value holdings without a network call while the cached row is
younger than SPOT_PRICE_MAX_AGE_SECONDS. Month-end closes for
the monthly series live in 'monthly_closes'.
"""

import os
import logging
import httpx
from datetime import datetime, date as date_cls, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, NamedTuple, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from btcbasis.exceptions import NoPriceAvailable
from btcbasis.models.price import MonthlyClose, SpotPrice

logger = logging.getLogger(__name__)

# API endpoints for primary and backup services
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd"
COINGECKO_HISTORY_URL = "https://api.coingecko.com/api/v3/coins/bitcoin/history?date={date}"  # date in DD-MM-YYYY format
KRAKEN_TICKER_URL = "https://api.kraken.com/0/public/Ticker?pair=XBTUSD"
KRAKEN_OHLC_URL = "https://api.kraken.com/0/public/OHLC?pair=XBTUSD&interval=1440&since={since}"
COINDESK_CURRENT_URL = "https://api.coindesk.com/v1/bpi/currentprice/USD.json"
COINDESK_HISTORICAL_URL = "https://api.coindesk.com/v1/bpi/historical/close.json?start={date}&end={date}"

PRICE_TIMEOUT_SECONDS = float(os.getenv("PRICE_TIMEOUT_SECONDS", "10"))


class PriceQuote(NamedTuple):
    price: Decimal
    source: str

# ------------------------------------------------------------------------------
# Response parsers (raise KeyError/ValueError/TypeError on unexpected shapes)
# ------------------------------------------------------------------------------
def _parse_coingecko_current(data) -> Decimal:
    # {"bitcoin": {"usd": <price>}}
    return Decimal(str(data["bitcoin"]["usd"]))


def _parse_kraken_ticker(data) -> Decimal:
    if data.get("error"):
        raise ValueError(f"Kraken error: {data['error']}")
    result = data["result"]
    pair = next(iter(result))  # e.g. "XXBTZUSD"
    return Decimal(result[pair]["c"][0])  # last trade price


def _parse_coindesk_current(data) -> Decimal:
    return Decimal(str(data["bpi"]["USD"]["rate_float"]))


def _parse_coingecko_history(data) -> Decimal:
    return Decimal(str(data["market_data"]["current_price"]["usd"]))


def _kraken_ohlc_parser(timestamp: int):
    def parse(data) -> Decimal:
        if data.get("error"):
            raise ValueError(f"Kraken error: {data['error']}")
        result = data["result"]
        pair = next(k for k in result if k != "last")
        ohlc_data = result[pair]
        # [time, open, high, low, close, vwap, volume, count]; open at 00:00 UTC
        for entry in ohlc_data:
            if int(entry[0]) == timestamp:
                return Decimal(entry[1])
        return Decimal(ohlc_data[0][1])
    return parse


def _coindesk_history_parser(day: str):
    def parse(data) -> Decimal:
        return Decimal(str(data["bpi"][day]))
    return parse

# ------------------------------------------------------------------------------
# Failover
# ------------------------------------------------------------------------------
async def _first_price(client: httpx.AsyncClient, attempts) -> Optional[PriceQuote]:
    """
    Tries each (name, url, parser) in order and returns the first positive
    price with the provider that gave it, or None when every provider fails.
    """
    for name, url, parser in attempts:
        try:
            resp = await client.get(url)
            resp.raise_for_status()
            price = parser(resp.json())
        except httpx.HTTPError as e:
            logger.warning(f"{name} request failed: {e}")
            continue
        except (KeyError, IndexError, TypeError, ValueError, StopIteration, InvalidOperation) as e:
            logger.warning(f"{name} returned an unexpected payload: {e!r}")
            continue
        if price > 0:
            logger.debug(f"{name} price: {price}")
            return PriceQuote(price, name)
    return None


async def get_current_quote(client: Optional[httpx.AsyncClient] = None) -> PriceQuote:
    """Fetch the current Bitcoin price in USD, with failover to Kraken and CoinDesk."""
    attempts = [
        ("coingecko", COINGECKO_PRICE_URL, _parse_coingecko_current),
        ("kraken", KRAKEN_TICKER_URL, _parse_kraken_ticker),
        ("coindesk", COINDESK_CURRENT_URL, _parse_coindesk_current),
    ]
    if client is not None:
        quote = await _first_price(client, attempts)
    else:
        async with httpx.AsyncClient(timeout=PRICE_TIMEOUT_SECONDS) as own_client:
            quote = await _first_price(own_client, attempts)

    if quote is None:
        raise NoPriceAvailable(
            "Unable to retrieve current Bitcoin price from CoinGecko, Kraken, or backup API."
        )
    return quote


async def get_current_price(client: Optional[httpx.AsyncClient] = None) -> Decimal:
    return (await get_current_quote(client)).price


async def get_historical_price(date: str, client: Optional[httpx.AsyncClient] = None) -> Decimal:
    """Fetch the historical Bitcoin price (USD) for a given date (YYYY-MM-DD), with failover."""
    try:
        target_date = datetime.strptime(date, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD.")
    if target_date > date_cls.today():
        raise HTTPException(status_code=400, detail="Date cannot be in the future.")

    coingecko_date = target_date.strftime("%d-%m-%Y")  # CoinGecko requires DD-MM-YYYY
    coindesk_date = target_date.strftime("%Y-%m-%d")
    dt_start = datetime.combine(target_date, datetime.min.time()).replace(tzinfo=timezone.utc)
    timestamp = int(dt_start.timestamp())

    attempts = [
        ("coingecko", COINGECKO_HISTORY_URL.format(date=coingecko_date), _parse_coingecko_history),
        ("kraken", KRAKEN_OHLC_URL.format(since=timestamp), _kraken_ohlc_parser(timestamp)),
        ("coindesk", COINDESK_HISTORICAL_URL.format(date=coindesk_date), _coindesk_history_parser(coindesk_date)),
    ]
    if client is not None:
        quote = await _first_price(client, attempts)
    else:
        async with httpx.AsyncClient(timeout=PRICE_TIMEOUT_SECONDS) as own_client:
            quote = await _first_price(own_client, attempts)

    if quote is None:
        raise NoPriceAvailable(
            "Unable to retrieve Bitcoin price for the given date from CoinGecko, Kraken, or backup API."
        )
    return quote.price

# ------------------------------------------------------------------------------
# Cached prices
# ------------------------------------------------------------------------------
def save_spot_price(db: Session, price: Decimal, source: Optional[str] = None) -> SpotPrice:
    row = SpotPrice(price_usd=price, source=source, updated_at=datetime.now(timezone.utc))
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_latest_spot_price(db: Session, max_age_seconds: Optional[int] = None) -> Optional[Decimal]:
    """
    Newest cached spot price, or None when nothing has been cached yet.
    With max_age_seconds, a row older than that also returns None.
    """
    row = (
        db.query(SpotPrice)
        .order_by(SpotPrice.id.desc())
        .first()
    )
    if row is None:
        return None
    if max_age_seconds is not None:
        age = datetime.now(timezone.utc) - row.updated_at
        if age > timedelta(seconds=max_age_seconds):
            logger.info(f"Cached spot price from {row.updated_at.isoformat()} is stale")
            return None
    return Decimal(row.price_usd)


def upsert_monthly_close(db: Session, month: str, close_usd: Decimal) -> MonthlyClose:
    try:
        datetime.strptime(month, "%Y-%m")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid month format. Use YYYY-MM.")

    row = db.query(MonthlyClose).filter(MonthlyClose.month == month).first()
    if row:
        row.close_usd = close_usd
    else:
        row = MonthlyClose(month=month, close_usd=close_usd)
        db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_monthly_closes(db: Session) -> Dict[str, Decimal]:
    return {row.month: Decimal(row.close_usd) for row in db.query(MonthlyClose).all()}
