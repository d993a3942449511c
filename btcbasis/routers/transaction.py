"""
btcbasis/routers/transaction.py

Router for the unified transaction history. Rows are stored as entered;
nothing derived is written, so create and delete are plain inserts/deletes
and the next calculation simply replays the new history.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
from sqlalchemy.orm import Session

from btcbasis.schemas.transaction import TransactionCreate, TransactionRead
from btcbasis.services import transaction as tx_service
from btcbasis.database import get_db

router = APIRouter(tags=["transactions"])


@router.get("/", response_model=List[TransactionRead])
def list_transactions(user_id: str = Query(...), db: Session = Depends(get_db)):
    """
    List a user's transactions, newest first.
    """
    return tx_service.get_all_transactions(db, user_id)


@router.post("/", response_model=TransactionRead, status_code=201)
def create_transaction(tx: TransactionCreate, db: Session = Depends(get_db)):
    """
    Create one transaction. The type decides which leg is required:
    buy/deposit/interest need received_amount, sell/withdrawal need
    sent_amount. Violations return 400.
    """
    return tx_service.create_transaction_record(tx, db)


@router.delete("/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    success = tx_service.delete_transaction_record(transaction_id, db)
    if not success:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return
