"""
btcbasis/schemas/calculation.py

Output schemas of the cost-basis engine and the period aggregator.

- CostMethod: lot-matching policy selector (FIFO, LIFO, HIFO, AVERAGE)
- Diagnostic: non-blocking row-level warning (malformed row, coverage gap)
- CostBasisResult: per-method snapshot
- MonthlyPoint / MonthlySeries: time-bucketed portfolio values
- PerformanceSummary and friends: returns, CAGR, drawdown, HODL metrics

All money/BTC fields are Decimal; routers convert to float for JSON.
"""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
from decimal import Decimal

from btcbasis.constants import TAX_DISCLAIMER, ZERO


# -------------------------------------------------
# ENUMS
# -------------------------------------------------

class CostMethod(str, Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"
    HIFO = "HIFO"
    AVERAGE = "AVERAGE"

    @classmethod
    def parse(cls, value) -> "CostMethod":
        """
        Accepts enum members and loose labels such as 'fifo' or 'Average Cost'.
        """
        if isinstance(value, cls):
            return value
        label = str(value or "").strip().upper().replace("_", " ")
        if label in ("AVERAGE", "AVERAGE COST", "AVG", "ACB"):
            return cls.AVERAGE
        try:
            return cls(label)
        except ValueError:
            raise ValueError(f"Unknown cost basis method: {value}")


class DiagnosticCode(str, Enum):
    MALFORMED_INPUT = "MALFORMED_INPUT"
    INSUFFICIENT_LOT_COVERAGE = "INSUFFICIENT_LOT_COVERAGE"

# -------------------------------------------------
# DIAGNOSTICS
# -------------------------------------------------

class Diagnostic(BaseModel):
    """
    A row-level issue surfaced next to the result instead of being raised.
    """
    code: DiagnosticCode
    message: str
    row_index: Optional[int] = None
    date: Optional[datetime] = None
    btc_amount: Optional[Decimal] = Field(
        default=None,
        description="For coverage gaps: BTC disposed without a matching lot."
    )

# -------------------------------------------------
# COST BASIS
# -------------------------------------------------

class CostBasisResult(BaseModel):
    """
    Snapshot for one matching method. Rebuilt from the full history each call.
    """
    method: CostMethod

    total_cost_basis: Decimal = ZERO
    average_cost: Decimal = ZERO
    unrealized_gain: Decimal = ZERO
    unrealized_gain_percent: Decimal = ZERO
    realized_gains: Decimal = ZERO
    remaining_btc: Decimal = ZERO

    potential_tax_liability_short_term: Decimal = ZERO
    potential_tax_liability_long_term: Decimal = ZERO

    realized_short_term_gains: Decimal = ZERO
    realized_long_term_gains: Decimal = ZERO
    short_term_btc: Decimal = ZERO
    long_term_btc: Decimal = ZERO
    uncovered_btc: Decimal = Field(
        default=ZERO,
        description="BTC disposed beyond recorded acquisitions (zero basis)."
    )

    diagnostics: List[Diagnostic] = Field(default_factory=list)
    disclaimer: str = TAX_DISCLAIMER


class MethodComparison(BaseModel):
    """
    The same history replayed through every method with independent ledgers.
    """
    current_price: Decimal
    results: Dict[CostMethod, CostBasisResult]

# -------------------------------------------------
# PERIOD AGGREGATES
# -------------------------------------------------

class MonthlyPoint(BaseModel):
    month: str  # YYYY-MM
    portfolio_value: Decimal
    cost_basis: Decimal
    cumulative_btc: Decimal
    btc_price: Decimal
    is_current_month: bool = False


class MonthlySeries(BaseModel):
    """
    Monthly points plus trailing moving averages over portfolio_value.
    Moving averages hold None where the window is incomplete.
    """
    points: List[MonthlyPoint] = Field(default_factory=list)
    moving_average_short: List[Optional[Decimal]] = Field(default_factory=list)
    moving_average_dynamic: List[Optional[Decimal]] = Field(default_factory=list)
    dynamic_window: int = 1
    diagnostics: List[Diagnostic] = Field(default_factory=list)

# -------------------------------------------------
# PERFORMANCE
# -------------------------------------------------

class ReturnWindow(BaseModel):
    percent: Optional[Decimal] = None
    dollar: Optional[Decimal] = None


class MaxDrawdown(BaseModel):
    percent: Decimal = ZERO
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    portfolio_peak: Decimal = ZERO
    portfolio_low: Decimal = ZERO


class HodlAgeBucket(BaseModel):
    age_range: str
    btc_amount: Decimal


class HoldingsClassification(BaseModel):
    short_term: Decimal = ZERO
    long_term: Decimal = ZERO


class DCAPerformance(BaseModel):
    dca_return: Decimal = ZERO
    lump_sum_return: Decimal = ZERO
    outperformance: Decimal = ZERO


class AllTimeHigh(BaseModel):
    price: Decimal = ZERO
    date: Optional[str] = None


class PerformanceSummary(BaseModel):
    """
    Return and risk metrics derived from the portfolio history.
    """
    current_price: Decimal
    current_value: Decimal = ZERO
    total_invested: Decimal = ZERO
    cumulative: Dict[str, ReturnWindow] = Field(default_factory=dict)
    compound_growth: Dict[str, Optional[Decimal]] = Field(default_factory=dict)
    max_drawdown: MaxDrawdown = Field(default_factory=MaxDrawdown)
    all_time_high: AllTimeHigh = Field(default_factory=AllTimeHigh)
    hodl_time_days: int = 0
    average_buy_price: Decimal = ZERO
    lowest_buy_price: Decimal = ZERO
    highest_buy_price: Decimal = ZERO
    hodl_age_distribution: List[HodlAgeBucket] = Field(default_factory=list)
    holdings: HoldingsClassification = Field(default_factory=HoldingsClassification)
    dca: DCAPerformance = Field(default_factory=DCAPerformance)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
