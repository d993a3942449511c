"""
Shared constants for btcbasis: precision, holding-period threshold,
cost-basis method names and the flat tax-rate approximation.

Tax rates can be overridden from the environment (.env at project root) so a
deployment can match its own jurisdiction without a code change.
"""

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

# Precision used when results leave the engine
USD_QUANT = Decimal("0.01")
BTC_QUANT = Decimal("0.00000001")
PERCENT_QUANT = Decimal("0.01")

ZERO = Decimal("0")

# Holding period (days) at or beyond which a lot is LONG term
LONG_TERM_HOLDING_DAYS = 365

HOLDING_SHORT = "SHORT"
HOLDING_LONG = "LONG"

# Flat-rate approximation for potential liability (not tax advice)
SHORT_TERM_TAX_RATE = Decimal(os.getenv("BTCBASIS_SHORT_TERM_RATE", "0.37"))
LONG_TERM_TAX_RATE = Decimal(os.getenv("BTCBASIS_LONG_TERM_RATE", "0.20"))

TAX_DISCLAIMER = (
    "Estimated liability uses flat short/long-term rates and is for "
    "informational purposes only. It is not tax advice."
)

# Cached spot prices older than this are refetched before valuing holdings
SPOT_PRICE_MAX_AGE_SECONDS = int(os.getenv("SPOT_PRICE_MAX_AGE_SECONDS", "300"))

# Currency tags
BTC = "BTC"
DEFAULT_FIAT = "USD"

# Moving-average windows for the monthly series
SHORT_MOVING_AVERAGE = 3
MAX_DYNAMIC_MOVING_AVERAGE = 6

# HODL age buckets: (label, lower bound in years, upper bound in years)
HODL_AGE_BUCKETS = [
    ("< 1 Year", 0, 1),
    ("1-2 Years", 1, 2),
    ("2-3 Years", 2, 3),
    ("3-5 Years", 3, 5),
    ("5+ Years", 5, None),
]
