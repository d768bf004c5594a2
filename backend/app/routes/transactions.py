from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List
import logging

from backend.database import get_db
from ..models import Transaction, Account, User
from ..schemas import Transaction as TransactionSchema, TransactionCreate, TransactionUpdate
from ..auth import get_current_user
from ..bank_integration.categorization import get_categorizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _get_owned_transaction(db: Session, transaction_id: int, user: User) -> Transaction:
    transaction = db.query(Transaction).join(
        Account, Transaction.account_id == Account.id
    ).filter(
        Transaction.id == transaction_id,
        Account.user_id == user.id
    ).first()
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.get("/", response_model=List[TransactionSchema])
def get_transactions(
    limit: int = Query(50, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Caller's transactions across all accounts, newest first."""
    return db.query(Transaction).join(
        Account, Transaction.account_id == Account.id
    ).filter(
        Account.user_id == current_user.id
    ).order_by(Transaction.date.desc(), Transaction.id.desc()).limit(limit).all()


@router.get("/categories", response_model=List[str])
def get_categories(db: Session = Depends(get_db)):
    return get_categorizer(db).get_categories()


@router.post("/", response_model=TransactionSchema)
def create_transaction(
    transaction: TransactionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a manual transaction; the categorizer fills in the category unless one is given."""
    account = db.query(Account).filter(
        Account.id == transaction.account_id,
        Account.user_id == current_user.id
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")

    if transaction.category:
        category, confidence = transaction.category, 1.0
    else:
        category, confidence = get_categorizer(db).categorize(transaction.description, transaction.amount)

    db_transaction = Transaction(
        account_id=account.id,
        amount=transaction.amount,
        description=transaction.description,
        date=transaction.date,
        category=category,
        category_confidence=confidence,
        is_manually_overridden=bool(transaction.category),
        transaction_metadata=transaction.transaction_metadata
    )
    db.add(db_transaction)
    db.commit()
    db.refresh(db_transaction)
    return db_transaction


@router.get("/{transaction_id}", response_model=TransactionSchema)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_owned_transaction(db, transaction_id, current_user)


@router.put("/{transaction_id}", response_model=TransactionSchema)
def update_transaction(
    transaction_id: int,
    transaction_update: TransactionUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Update a transaction.

    A category change is a manual override: it is pinned with full confidence
    and taught to the categorizer so similar descriptions follow it.
    """
    transaction = _get_owned_transaction(db, transaction_id, current_user)
    update_data = transaction_update.model_dump(exclude_unset=True)

    new_category = update_data.pop('category', None)
    for field, value in update_data.items():
        setattr(transaction, field, value)

    if new_category and new_category != transaction.category:
        transaction.category = new_category
        transaction.category_confidence = 1.0
        transaction.is_manually_overridden = True
        get_categorizer(db).learn_from_override(transaction.description, new_category)
        logger.info(f"Learned category override '{new_category}' from transaction {transaction.id}")

    db.commit()
    db.refresh(transaction)
    return transaction


@router.delete("/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    transaction = _get_owned_transaction(db, transaction_id, current_user)
    db.delete(transaction)
    db.commit()
    return {"message": "Transaction deleted successfully"}
