from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from backend.database import get_db
from ..models import Account, User
from ..schemas import Account as AccountSchema, AccountCreate, AccountUpdate
from ..auth import get_current_user

router = APIRouter(prefix="/accounts", tags=["accounts"])


def _get_owned_account(db: Session, account_id: int, user: User) -> Account:
    account = db.query(Account).filter(
        Account.id == account_id,
        Account.user_id == user.id
    ).first()
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.get("/", response_model=List[AccountSchema])
def get_accounts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Active accounts, newest first."""
    return db.query(Account).filter(
        Account.user_id == current_user.id,
        Account.is_active == True
    ).order_by(Account.created_at.desc(), Account.id.desc()).all()


@router.post("/", response_model=AccountSchema)
def create_account(
    account: AccountCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a manual (not bank-linked) account."""
    db_account = Account(
        user_id=current_user.id,
        name=account.name,
        type=account.type,
        balance=account.balance,
        currency=account.currency,
        institution_name=account.institution_name,
        account_number=account.account_number,
        is_active=True
    )
    db.add(db_account)
    db.commit()
    db.refresh(db_account)
    return db_account


@router.get("/{account_id}", response_model=AccountSchema)
def get_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_owned_account(db, account_id, current_user)


@router.put("/{account_id}", response_model=AccountSchema)
def update_account(
    account_id: int,
    account_update: AccountUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    account = _get_owned_account(db, account_id, current_user)

    for field, value in account_update.model_dump(exclude_unset=True).items():
        setattr(account, field, value)

    db.commit()
    db.refresh(account)
    return account


@router.delete("/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    account = _get_owned_account(db, account_id, current_user)

    # Soft delete; transactions stay as history
    account.is_active = False
    db.commit()

    return {"message": "Account deleted successfully"}
