"""
btcbasis/services/normalizer.py

Transaction Normalizer: converts raw history rows into one canonical event
type consumed by the lot ledger and the period aggregator.

Two input shapes are accepted and mapped to the same NormalizedEvent:
 - unified 'transactions' rows: buy / sell / deposit / withdrawal / interest,
   with sent_* / received_* legs and a single fee_* pair
 - legacy 'orders' rows: Buy / Sell / Send / Receive, with buy_amount,
   sell_amount, service_fee and network_fee columns (older exports use
   buy_fiat_amount, received_btc_amount, sell_btc_amount and
   received_fiat_amount for the same legs)

Rules:
 - Only legs tagged 'BTC' feed btc_amount. A row whose BTC leg is missing or
   zero is dropped silently (exchanges export empty rows).
 - Rows that are explicitly fiat-only become NEUTRAL events.
 - Fees are added to the cost of an acquisition (a BTC fee valued at the
   row price). On a disposal a BTC fee leaves the wallet with the amount
   moved, while fiat fees are deducted from sale proceeds.
 - Unparseable dates, negative amounts, unknown types and rows that cannot be
   valued are reported as MALFORMED_INPUT diagnostics and excluded. Nothing is
   coerced to zero.
 - Output is sorted ascending by date with a stable sort, so same-timestamp
   rows keep their original order.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import ValidationError

from btcbasis.constants import BTC, ZERO
from btcbasis.schemas.calculation import Diagnostic, DiagnosticCode
from btcbasis.schemas.transaction import RawTransaction

logger = logging.getLogger(__name__)

ACQUIRE_TYPES = ("buy", "deposit", "interest", "receive")
DISPOSE_TYPES = ("sell", "withdrawal", "send")


class EventKind(str, Enum):
    ACQUIRE = "ACQUIRE"
    DISPOSE = "DISPOSE"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class NormalizedEvent:
    """
    One canonical event. Exactly one kind per event; ACQUIRE and DISPOSE
    always carry a strictly positive btc_amount.
    """
    date: datetime
    kind: EventKind
    btc_amount: Decimal = ZERO
    fiat_cost: Decimal = ZERO
    fiat_proceeds: Decimal = ZERO
    unit_price: Optional[Decimal] = None
    fee_fiat: Optional[Decimal] = None
    row_index: int = 0
    source_type: str = ""

    @property
    def signed_btc(self) -> Decimal:
        if self.kind == EventKind.ACQUIRE:
            return self.btc_amount
        if self.kind == EventKind.DISPOSE:
            return -self.btc_amount
        return ZERO


@dataclass
class NormalizationResult:
    events: List[NormalizedEvent] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


class MalformedRow(ValueError):
    """A single row that must be excluded and reported."""


# ------------------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------------------
def normalize(raw_rows: Iterable) -> NormalizationResult:
    """
    Normalize raw rows (RawTransaction, dicts or ORM objects) into a
    date-ascending list of NormalizedEvent plus diagnostics.

    The caller's rows are never mutated.
    """
    result = NormalizationResult()

    for index, raw in enumerate(raw_rows or []):
        try:
            row = _coerce_row(raw)
            event = _normalize_row(row, index)
        except MalformedRow as e:
            logger.warning(f"Excluding row {index}: {e}")
            result.diagnostics.append(Diagnostic(
                code=DiagnosticCode.MALFORMED_INPUT,
                message=str(e),
                row_index=index,
            ))
            continue

        if event is None:
            logger.debug(f"Dropping row {index}: no BTC amount for its type")
            continue
        result.events.append(event)

    # list.sort is stable: identical timestamps keep insertion order
    result.events.sort(key=lambda ev: ev.date)
    logger.debug(
        f"Normalized {len(result.events)} events with "
        f"{len(result.diagnostics)} diagnostics"
    )
    return result


def parse_date(value) -> datetime:
    """
    Parse an ISO-8601 string (or datetime) into an offset-aware UTC datetime.
    Raises MalformedRow if the value is missing or unparseable.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MalformedRow("Missing transaction date.")

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise MalformedRow(f"Unparseable transaction date: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ------------------------------------------------------------------------------
# Internal Helpers
# ------------------------------------------------------------------------------
def _coerce_row(raw) -> RawTransaction:
    if isinstance(raw, RawTransaction):
        return raw
    try:
        if isinstance(raw, dict):
            return RawTransaction.model_validate(raw)
        return RawTransaction.model_validate(raw, from_attributes=True)
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise MalformedRow(f"Invalid field values: {fields or e}")


def _num(value, name: str) -> Optional[Decimal]:
    """
    Return a non-negative Decimal, None for missing values, or raise.
    """
    if value is None:
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise MalformedRow(f"{name} is not a number: {value!r}")
    if not number.is_finite():
        raise MalformedRow(f"{name} is not finite: {value!r}")
    if number < 0:
        raise MalformedRow(f"{name} cannot be negative: {value}")
    return number


def _cur(value, default: Optional[str] = None) -> Optional[str]:
    if value is None or not str(value).strip():
        return default
    return str(value).strip().upper()


def _positive(value: Optional[Decimal]) -> bool:
    return value is not None and value > 0


def _normalize_row(row: RawTransaction, index: int) -> Optional[NormalizedEvent]:
    raw_type = (row.type or "").strip()
    tx_type = raw_type.lower()
    if tx_type not in ACQUIRE_TYPES + DISPOSE_TYPES:
        raise MalformedRow(f"Unsupported transaction type: {row.type!r}")

    date = parse_date(row.date)
    price = _num(row.price, "price")
    if price is not None and price == 0:
        price = None

    if tx_type in ACQUIRE_TYPES:
        return _acquisition(row, tx_type, raw_type, date, price, index)
    return _disposal(row, tx_type, raw_type, date, price, index)


def _fees(row: RawTransaction) -> tuple:
    """
    Returns (fiat_fee, btc_fee) for the row. Legacy service_fee defaults to
    fiat, legacy network_fee is BTC.
    """
    fiat_fee = ZERO
    btc_fee = ZERO

    fee_amount = _num(row.fee_amount, "fee_amount")
    if _positive(fee_amount):
        if _cur(row.fee_currency, "USD") == BTC:
            btc_fee += fee_amount
        else:
            fiat_fee += fee_amount

    service_fee = _num(row.service_fee, "service_fee")
    if _positive(service_fee):
        if _cur(row.service_fee_currency, "USD") == BTC:
            btc_fee += service_fee
        else:
            fiat_fee += service_fee

    network_fee = _num(row.network_fee, "network_fee")
    if _positive(network_fee):
        btc_fee += network_fee

    return fiat_fee, btc_fee


def _btc_fee_value(btc_fee: Decimal, price: Optional[Decimal]) -> Decimal:
    if btc_fee > 0 and price is not None:
        return btc_fee * price
    return ZERO


def _first_fiat(*candidates) -> Optional[Decimal]:
    """First (amount, currency) pair whose amount is set and not in BTC."""
    for amount, currency in candidates:
        if amount is not None and _cur(currency, "USD") != BTC:
            return amount
    return None


def _neutral(date, price, index, raw_type) -> NormalizedEvent:
    return NormalizedEvent(
        date=date,
        kind=EventKind.NEUTRAL,
        unit_price=price,
        row_index=index,
        source_type=raw_type,
    )


def _acquisition(row, tx_type, raw_type, date, price, index) -> Optional[NormalizedEvent]:
    received = _num(row.received_amount, "received_amount")
    received_cur = _cur(row.received_currency, BTC)
    if received is None:
        received = _num(row.received_btc_amount, "received_btc_amount")
        received_cur = BTC

    if received_cur != BTC:
        # fiat-only deposit or a non-BTC purchase
        return _neutral(date, price, index, raw_type)
    if not _positive(received):
        return None

    fiat_fee, btc_fee = _fees(row)
    fee_value = fiat_fee + _btc_fee_value(btc_fee, price)

    if tx_type == "buy":
        spent = _first_fiat(
            (_num(row.sent_amount, "sent_amount"), row.sent_currency),
            (_num(row.buy_amount, "buy_amount"), row.buy_currency),
            (_num(row.buy_fiat_amount, "buy_fiat_amount"), row.buy_currency),
        )
        if spent is None:
            if price is None:
                raise MalformedRow("Buy has neither a fiat amount nor a price.")
            spent = received * price
        cost = spent + fee_value
    elif tx_type == "interest":
        # income: zero basis, the full value is gain when later disposed
        cost = ZERO
    else:
        basis = _num(row.received_cost_basis, "received_cost_basis")
        if basis is not None:
            cost = basis
        elif price is not None:
            cost = received * price
        else:
            raise MalformedRow("Deposit has neither a cost basis nor a price.")

    unit_price = price
    if unit_price is None and cost > 0:
        unit_price = cost / received

    return NormalizedEvent(
        date=date,
        kind=EventKind.ACQUIRE,
        btc_amount=received,
        fiat_cost=cost,
        unit_price=unit_price,
        fee_fiat=fee_value if fee_value > 0 else None,
        row_index=index,
        source_type=raw_type,
    )


def _disposal(row, tx_type, raw_type, date, price, index) -> Optional[NormalizedEvent]:
    sent = _num(row.sent_amount, "sent_amount")
    sent_cur = _cur(row.sent_currency, BTC)
    legacy_sell = _num(row.sell_amount, "sell_amount")
    legacy_sell_btc = _num(row.sell_btc_amount, "sell_btc_amount")

    btc_out = None
    if _positive(sent) and sent_cur == BTC:
        btc_out = sent
    elif legacy_sell is not None and _cur(row.sell_currency, BTC) == BTC:
        btc_out = legacy_sell
    elif legacy_sell_btc is not None:
        btc_out = legacy_sell_btc

    if btc_out is None and sent is not None and sent_cur != BTC:
        # fiat withdrawal
        return _neutral(date, price, index, raw_type)
    if not _positive(btc_out):
        return None

    # A BTC fee always leaves the wallet on top of the amount moved; only
    # fiat fees reduce proceeds.
    fiat_fee, btc_fee = _fees(row)
    fee_value = fiat_fee + _btc_fee_value(btc_fee, price)

    if tx_type == "sell":
        gross = _first_fiat(
            (_num(row.received_amount, "received_amount"), row.received_currency),
            (_num(row.received_fiat_amount, "received_fiat_amount"), None),
        )
        if gross is None:
            if price is None:
                raise MalformedRow("Sell has neither fiat proceeds nor a price.")
            gross = btc_out * price
        proceeds = gross - fiat_fee
        if proceeds < 0:
            proceeds = ZERO
        unit_price = price
        if unit_price is None and proceeds > 0:
            unit_price = proceeds / btc_out
        btc_out = btc_out + btc_fee
    else:
        # withdrawal / send: valued at spot, fee included
        if price is None:
            raise MalformedRow("Withdrawal cannot be valued without a price.")
        btc_out = btc_out + btc_fee
        proceeds = btc_out * price
        unit_price = price

    return NormalizedEvent(
        date=date,
        kind=EventKind.DISPOSE,
        btc_amount=btc_out,
        fiat_proceeds=proceeds,
        unit_price=unit_price,
        fee_fiat=fee_value if fee_value > 0 else None,
        row_index=index,
        source_type=raw_type,
    )
