"""
btcbasis/utils/money.py

Rounding at the engine boundary and Decimal -> float conversion for JSON.
Internal arithmetic stays unrounded Decimal; only results are quantized.
"""

from decimal import Decimal, ROUND_HALF_DOWN
from typing import Optional

from btcbasis.constants import BTC_QUANT, PERCENT_QUANT, USD_QUANT


def usd(value: Decimal) -> Decimal:
    return Decimal(value).quantize(USD_QUANT, rounding=ROUND_HALF_DOWN)


def btc(value: Decimal) -> Decimal:
    return Decimal(value).quantize(BTC_QUANT, rounding=ROUND_HALF_DOWN)


def percent(value: Decimal) -> Decimal:
    return Decimal(value).quantize(PERCENT_QUANT, rounding=ROUND_HALF_DOWN)


def usd_or_none(value: Optional[Decimal]) -> Optional[Decimal]:
    return None if value is None else usd(value)


def convert_decimal(item):
    """
    Recursively converts Decimals (inside dicts and lists) to float.
    """
    if isinstance(item, Decimal):
        return float(item)
    if isinstance(item, dict):
        return {key: convert_decimal(value) for key, value in item.items()}
    if isinstance(item, list):
        return [convert_decimal(subitem) for subitem in item]
    return item
