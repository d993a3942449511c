"""
btcbasis/services/transaction.py

Transaction-history source for the cost-basis engine.

 - CRUD for the unified 'transactions' table
 - Insert helper for the legacy 'orders' table
 - get_raw_transactions(): merges both tables for one user into the
   RawTransaction rows that normalize() consumes

No derived data (lots, gains) is written here. The engine replays the whole
history on every request, so creating or deleting a row needs no re-lot step.
"""

import logging
from typing import List

from fastapi import HTTPException
from sqlalchemy.orm import Session

from btcbasis.constants import BTC
from btcbasis.exceptions import MissingUserError
from btcbasis.models.transaction import Order, Transaction
from btcbasis.schemas.transaction import RawTransaction, TransactionCreate

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# Public Functions (CRUD + retrieval)
# ------------------------------------------------------------------------------
def get_all_transactions(db: Session, user_id: str) -> List[Transaction]:
    """
    Return a user's Transactions, ordered descending by date.
    """
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
        .all()
    )


def get_transaction_by_id(db: Session, transaction_id: int):
    """
    Retrieve a single Transaction by its ID (returns None if not found).
    """
    return db.query(Transaction).filter(Transaction.id == transaction_id).first()


def create_transaction_record(tx_data: TransactionCreate, db: Session) -> Transaction:
    """
    Validates type-specific legs and inserts one unified Transaction.
    """
    data = tx_data.model_dump()
    data["type"] = tx_data.type.value
    _enforce_transaction_type_rules(data)

    new_tx = Transaction(**data)
    db.add(new_tx)
    db.commit()
    db.refresh(new_tx)
    logger.info(f"Created transaction {new_tx.id} ({new_tx.type}) for user={new_tx.user_id}")
    return new_tx


def delete_transaction_record(transaction_id: int, db: Session) -> bool:
    tx = get_transaction_by_id(db, transaction_id)
    if not tx:
        return False
    db.delete(tx)
    db.commit()
    logger.info(f"Deleted transaction {transaction_id}")
    return True


def create_order_record(order_data: dict, db: Session) -> Order:
    """
    Inserts one legacy order row as given.
    """
    order = Order(**order_data)
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def get_raw_transactions(db: Session, user_id: str) -> List[RawTransaction]:
    """
    All history rows for a user, unified and legacy, as RawTransaction models
    ordered by date. Same-date rows keep table order (unified first).
    """
    if not user_id:
        raise MissingUserError()

    unified = (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.date.asc(), Transaction.id.asc())
        .all()
    )
    legacy = (
        db.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.date.asc(), Order.id.asc())
        .all()
    )

    rows = [RawTransaction.model_validate(tx) for tx in unified]
    rows += [RawTransaction.model_validate(order) for order in legacy]
    rows.sort(key=lambda row: row.date)
    logger.debug(f"Loaded {len(unified)} transactions and {len(legacy)} orders for user={user_id}")
    return rows

# ------------------------------------------------------------------------------
# Internal Helpers
# ------------------------------------------------------------------------------
def _enforce_transaction_type_rules(tx_data: dict):
    """
    Each type needs the leg it moves:
      - buy / deposit / interest => received_amount
      - sell / withdrawal => sent_amount
      - buy / sell => the other leg must not be BTC
    """
    tx_type = tx_data.get("type")
    tx_type = getattr(tx_type, "value", tx_type)

    sent_cur = (tx_data.get("sent_currency") or "").upper()
    received_cur = (tx_data.get("received_currency") or "").upper()

    if tx_type in ("buy", "deposit", "interest"):
        if not tx_data.get("received_amount"):
            raise HTTPException(400, f"{tx_type} => received_amount is required.")
    elif tx_type in ("sell", "withdrawal"):
        if not tx_data.get("sent_amount"):
            raise HTTPException(400, f"{tx_type} => sent_amount is required.")
    else:
        raise HTTPException(400, f"Unknown transaction type: {tx_type}")

    if tx_type == "buy" and sent_cur == BTC:
        raise HTTPException(400, "buy => sent_currency must be fiat.")
    if tx_type == "sell" and received_cur == BTC:
        raise HTTPException(400, "sell => received_currency must be fiat.")
