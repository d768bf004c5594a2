from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from backend.database import get_db
from ..models import Account, Transaction, User
from ..schemas import SpendingTotal, CategoryBreakdown
from ..auth import get_current_user
from ..bank_integration.categorization import UNCATEGORIZED
from ..bank_integration.metrics import category_spending
from ..bank_integration.connections import as_utc_naive

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/spending", response_model=SpendingTotal)
def get_spending(
    category: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    spending = category_spending(db, current_user.id, category, start_date, end_date)
    return {"spending": spending}


@router.get("/categories", response_model=List[CategoryBreakdown])
def get_category_breakdown(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Spending per category, largest first"""
    query = db.query(
        Transaction.category,
        func.coalesce(func.sum(Transaction.amount), 0).label('total'),
        func.count(Transaction.id).label('count')
    ).join(
        Account, Transaction.account_id == Account.id
    ).filter(
        Account.user_id == current_user.id,
        Transaction.amount < 0
    )
    if start_date:
        query = query.filter(Transaction.date >= as_utc_naive(start_date))
    if end_date:
        query = query.filter(Transaction.date <= as_utc_naive(end_date))

    rows = query.group_by(Transaction.category).all()

    breakdown = [
        CategoryBreakdown(
            category=row.category or UNCATEGORIZED,
            total=abs(Decimal(str(row.total))).quantize(Decimal("0.01")),
            count=row.count
        )
        for row in rows
    ]
    breakdown.sort(key=lambda item: item.total, reverse=True)
    return breakdown
