from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
from datetime import datetime

from backend.database import get_db
from ..models import User, Budget
from ..schemas import (
    Budget as BudgetSchema,
    BudgetCreate,
    BudgetUpdate,
    BudgetWithSpend
)
from ..auth import get_current_user
from ..bank_integration.metrics import budget_spend, budget_end_date

router = APIRouter(prefix="/budgets", tags=["budgets"])


def _get_owned_budget(db: Session, budget_id: int, user: User) -> Budget:
    budget = db.query(Budget).filter(
        Budget.id == budget_id,
        Budget.user_id == user.id
    ).first()
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget


def _with_spend(db: Session, budget: Budget) -> BudgetWithSpend:
    spend = budget_spend(db, budget)
    return BudgetWithSpend(
        **BudgetSchema.model_validate(budget).model_dump(),
        spent=spend['spent'],
        remaining=spend['remaining'],
        percentageUsed=spend['percentage_used']
    )


@router.get("/", response_model=List[BudgetWithSpend])
def list_budgets(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Active budgets with spend to date"""
    budgets = db.query(Budget).filter(
        Budget.user_id == current_user.id,
        Budget.is_active == True
    ).order_by(Budget.created_at.desc(), Budget.id.desc()).all()

    return [_with_spend(db, budget) for budget in budgets]


@router.post("/", response_model=BudgetSchema)
def create_budget(
    budget: BudgetCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a budget starting now and running for one period"""
    start_date = datetime.utcnow()
    db_budget = Budget(
        user_id=current_user.id,
        category=budget.category,
        amount=budget.amount,
        period=budget.period,
        start_date=start_date,
        end_date=budget_end_date(start_date, budget.period),
        is_active=True
    )

    db.add(db_budget)
    db.commit()
    db.refresh(db_budget)

    return db_budget


@router.get("/{budget_id}", response_model=BudgetWithSpend)
def get_budget(
    budget_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return _with_spend(db, _get_owned_budget(db, budget_id, current_user))


@router.put("/{budget_id}", response_model=BudgetSchema)
def update_budget(
    budget_id: int,
    budget_update: BudgetUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    budget = _get_owned_budget(db, budget_id, current_user)
    update_data = budget_update.model_dump(exclude_unset=True)

    for field, value in update_data.items():
        setattr(budget, field, value)

    # A new period re-derives the window unless an end date was given
    if 'period' in update_data and 'end_date' not in update_data:
        budget.end_date = budget_end_date(budget.start_date, budget.period)

    db.commit()
    db.refresh(budget)
    return budget


@router.delete("/{budget_id}")
def delete_budget(
    budget_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    budget = _get_owned_budget(db, budget_id, current_user)
    budget.is_active = False
    db.commit()

    return {"message": "Budget deleted"}
