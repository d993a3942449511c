"""
transaction.py

Transaction-history tables read by the cost-basis engine:
1) Transaction: the unified 'transactions' table
   (buy / sell / deposit / withdrawal / interest, sent and received legs)
2) Order: the legacy 'orders' table (Buy / Sell / Send / Receive)

Rows are stored as entered. No lots or gains are persisted: every calculation
replays the full history, so editing or deleting a row can never leave
derived data stale.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Numeric, Text

from btcbasis.database import Base, UTCDateTime


def _utcnow():
    return datetime.now(timezone.utc)

# ------------------------------------------------------------------------
# TRANSACTION (unified schema)
# ------------------------------------------------------------------------

class Transaction(Base):
    """
    One user-entered transaction. Only legs whose currency is 'BTC' move
    the BTC balance; fiat legs give the cost or the proceeds.
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String, nullable=False, index=True)

    type = Column(String, nullable=False, doc="buy, sell, deposit, withdrawal or interest")

    date = Column(
        UTCDateTime,
        nullable=False,
        index=True,
        doc="When the transaction actually occurred."
    )

    sent_amount = Column(Numeric(18, 8), nullable=True)
    sent_currency = Column(String, nullable=True)
    received_amount = Column(Numeric(18, 8), nullable=True)
    received_currency = Column(String, nullable=True)

    fee_amount = Column(Numeric(18, 8), nullable=True)
    fee_currency = Column(String, nullable=True)

    price = Column(
        Numeric(18, 2),
        nullable=True,
        doc="BTC price in fiat at transaction time."
    )
    received_cost_basis = Column(
        Numeric(18, 2),
        nullable=True,
        doc="Known fiat basis of BTC transferred in."
    )

    comment = Column(Text, nullable=True)

    # Audit fields
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=True)

    def __repr__(self):
        return (
            f"<Transaction(id={self.id}, user={self.user_id}, type={self.type}, "
            f"date={self.date}, sent={self.sent_amount} {self.sent_currency}, "
            f"received={self.received_amount} {self.received_currency})>"
        )

# ------------------------------------------------------------------------
# ORDER (legacy schema)
# ------------------------------------------------------------------------

class Order(Base):
    """
    Legacy order row. Buy: buy_amount fiat -> received_amount BTC.
    Sell: sell_amount BTC -> received_amount fiat. Send/Receive move BTC
    with an optional network_fee in BTC. Older exports name the same legs
    buy_fiat_amount, received_btc_amount, sell_btc_amount and
    received_fiat_amount.
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)

    type = Column(String, nullable=False, doc="Buy, Sell, Send or Receive")
    date = Column(UTCDateTime, nullable=False, index=True)

    buy_amount = Column(Numeric(18, 8), nullable=True)
    buy_currency = Column(String, nullable=True)
    sell_amount = Column(Numeric(18, 8), nullable=True)
    sell_currency = Column(String, nullable=True)
    received_amount = Column(Numeric(18, 8), nullable=True)
    received_currency = Column(String, nullable=True)
    sent_amount = Column(Numeric(18, 8), nullable=True)
    sent_currency = Column(String, nullable=True)

    buy_fiat_amount = Column(Numeric(18, 2), nullable=True)
    received_btc_amount = Column(Numeric(18, 8), nullable=True)
    sell_btc_amount = Column(Numeric(18, 8), nullable=True)
    received_fiat_amount = Column(Numeric(18, 2), nullable=True)

    service_fee = Column(Numeric(18, 8), nullable=True)
    service_fee_currency = Column(String, nullable=True)
    network_fee = Column(Numeric(18, 8), nullable=True, doc="Always BTC.")

    price = Column(Numeric(18, 2), nullable=True)

    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<Order(id={self.id}, user={self.user_id}, type={self.type}, date={self.date})>"
