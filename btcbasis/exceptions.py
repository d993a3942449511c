"""
btcbasis/exceptions.py

Errors that abort a whole calculation. Row-level problems (bad dates,
negative amounts, disposals beyond recorded holdings) are NOT raised; they
are returned as Diagnostic entries alongside the result.
"""


class CostBasisError(Exception):
    """Base class for calculation failures."""


class NoPriceAvailable(CostBasisError):
    """
    Raised when no spot price can be obtained. Valuation outputs
    (unrealized gain, today's portfolio value) cannot be produced without it,
    and a silent zero would understate holdings.
    """

    def __init__(self, detail: str = "No Bitcoin price available."):
        super().__init__(detail)
        self.detail = detail


class MissingUserError(CostBasisError):
    """Raised when a calculation is requested without a user id."""

    def __init__(self, detail: str = "User ID is required."):
        super().__init__(detail)
        self.detail = detail
