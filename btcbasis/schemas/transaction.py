"""
btcbasis/schemas/transaction.py

Pydantic (v2) schemas for transaction rows.

- RawTransaction: the input contract of the cost-basis core. It accepts both
  the unified schema (buy/sell/deposit/withdrawal/interest with sent/received
  legs) and the legacy orders schema (Buy/Sell/Send/Receive with
  buy_amount/sell_amount/service_fee columns). Values are kept raw on purpose:
  the normalizer decides what is malformed and reports it as a diagnostic
  instead of failing the whole request.
- TransactionCreate / TransactionRead: persistence schemas for the unified
  'transactions' table.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Union
from datetime import datetime, timezone
from decimal import Decimal

# -------------------------------------------------
# TRANSACTION TYPE ENUMS
# -------------------------------------------------

class TxType(str, Enum):
    BUY = "buy"
    SELL = "sell"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    INTEREST = "interest"


class LegacyTxType(str, Enum):
    BUY = "Buy"
    SELL = "Sell"
    SEND = "Send"
    RECEIVE = "Receive"

# -------------------------------------------------
# CUSTOM VALIDATORS
# -------------------------------------------------
# BTC up to 8 decimals, fiat up to 2.

def validate_btc_decimal(value: Decimal) -> Decimal:
    """
    Enforces max 8 decimal places for BTC amounts and max 18 total digits.
    """
    s = str(value)
    if '.' in s:
        integer_part, frac_part = s.split('.', 1)
        if len(frac_part) > 8:
            raise ValueError("BTC amount cannot exceed 8 decimal places.")
        if len(integer_part.replace('-', '')) > 10:
            raise ValueError("BTC amount cannot exceed 18 total digits.")
    return value


def validate_usd_decimal(value: Decimal) -> Decimal:
    """
    Enforces max 2 decimal places for fiat amounts and max 18 total digits.
    """
    s = str(value)
    if '.' in s:
        integer_part, frac_part = s.split('.', 1)
        if len(frac_part) > 2:
            raise ValueError("Fiat amount cannot exceed 2 decimal places.")
        if len(integer_part.replace('-', '')) > 16:
            raise ValueError("Fiat amount cannot exceed 18 total digits.")
    return value


def _force_utc(v: datetime | None) -> datetime | None:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)

# -------------------------------------------------
# CORE INPUT CONTRACT
# -------------------------------------------------

class RawTransaction(BaseModel):
    """
    One transaction row as it comes out of the history source.

    'date' stays a string (or datetime when read from the ORM) so an
    unparseable value reaches the normalizer and becomes a diagnostic.
    """
    date: Optional[Union[datetime, str]] = None
    type: Optional[str] = None

    sent_amount: Optional[Decimal] = None
    sent_currency: Optional[str] = None
    received_amount: Optional[Decimal] = None
    received_currency: Optional[str] = None
    fee_amount: Optional[Decimal] = None
    fee_currency: Optional[str] = None
    price: Optional[Decimal] = None

    # Unified schema: explicit basis for transferred-in coins
    received_cost_basis: Optional[Decimal] = None

    # Legacy 'orders' columns
    buy_amount: Optional[Decimal] = None
    buy_currency: Optional[str] = None
    sell_amount: Optional[Decimal] = None
    sell_currency: Optional[str] = None
    service_fee: Optional[Decimal] = None
    service_fee_currency: Optional[str] = None
    network_fee: Optional[Decimal] = None

    # Older legacy exports
    buy_fiat_amount: Optional[Decimal] = None
    received_btc_amount: Optional[Decimal] = None
    sell_btc_amount: Optional[Decimal] = None
    received_fiat_amount: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True, extra="ignore")

# -------------------------------------------------
# PERSISTENCE SCHEMAS
# -------------------------------------------------

class TransactionBase(BaseModel):
    """
    Shared fields for a unified transaction row.
    """
    type: TxType
    date: datetime

    sent_amount: Optional[Decimal] = None
    sent_currency: Optional[str] = None
    received_amount: Optional[Decimal] = None
    received_currency: Optional[str] = None
    fee_amount: Optional[Decimal] = None
    fee_currency: Optional[str] = None
    price: Optional[Decimal] = Field(
        default=None,
        description="BTC price in fiat at transaction time."
    )
    received_cost_basis: Optional[Decimal] = Field(
        default=None,
        description="Known fiat basis for BTC received by deposit."
    )
    comment: Optional[str] = None

    @field_validator("date")
    def force_utc_date(cls, v: datetime | None) -> datetime | None:
        return _force_utc(v)

    @field_validator("sent_amount", "received_amount", "fee_amount")
    def validate_amounts(cls, v: Decimal | None) -> Decimal | None:
        if v is None:
            return v
        if v < 0:
            raise ValueError("Amounts must be non-negative.")
        return validate_btc_decimal(v)

    @field_validator("price", "received_cost_basis")
    def validate_fiat_fields(cls, v: Decimal | None) -> Decimal | None:
        if v is None:
            return v
        if v < 0:
            raise ValueError("Fiat values must be non-negative.")
        return validate_usd_decimal(v)


class TransactionCreate(TransactionBase):
    """
    Schema for creating a transaction row for a user.
    """
    user_id: str


class TransactionRead(TransactionBase):
    """
    Schema for reading transactions back from the database.
    """
    id: int
    user_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
