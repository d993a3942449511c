"""
price.py

Cached Bitcoin prices:
- SpotPrice: last fetched spot prices, newest row wins
- MonthlyClose: one closing price per month, keyed 'YYYY-MM', used to value
  past months of the monthly series
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Numeric

from btcbasis.database import Base, UTCDateTime


class SpotPrice(Base):
    __tablename__ = "spot_prices"

    id = Column(Integer, primary_key=True, index=True)
    price_usd = Column(Numeric(18, 2), nullable=False)
    source = Column(String, nullable=True, doc="Provider that answered, e.g. 'coingecko'.")
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self):
        return f"<SpotPrice(price_usd={self.price_usd}, source={self.source}, updated_at={self.updated_at})>"


class MonthlyClose(Base):
    __tablename__ = "monthly_closes"

    month = Column(String(7), primary_key=True, doc="YYYY-MM")
    close_usd = Column(Numeric(18, 2), nullable=False)

    def __repr__(self):
        return f"<MonthlyClose(month={self.month}, close_usd={self.close_usd})>"
