# btcbasis/models/__init__.py

"""
Centralizes model imports so every table is registered on Base.metadata
before create_tables() runs.
"""

from btcbasis.database import Base

# Transaction history (unified and legacy)
from .transaction import Transaction, Order

# Cached prices
from .price import SpotPrice, MonthlyClose
