from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from backend.database import get_db
from ..models import User
from ..schemas import NetWorthOverview, NetWorthSnapshot
from ..auth import get_current_user
from ..bank_integration.metrics import (
    calculate_net_worth, latest_net_worth, net_worth_history, backfill_net_worth
)

router = APIRouter(prefix="/net-worth", tags=["net-worth"])


@router.get("/", response_model=NetWorthOverview)
def get_net_worth(
    days: int = Query(90, ge=1, le=3650),
    backfill: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Current net worth and history.

    With backfill=true the history is reconstructed day by day from
    transactions instead of read from stored snapshots.
    """
    current = latest_net_worth(db, current_user.id)
    if current is None:
        current = calculate_net_worth(db, current_user.id)

    if backfill:
        history = backfill_net_worth(db, current_user.id, days=days)
    else:
        history = net_worth_history(db, current_user.id, days=days)

    return {"current": current, "history": history}


@router.get("/latest", response_model=NetWorthSnapshot)
def get_latest(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    snapshot = latest_net_worth(db, current_user.id)
    if not snapshot:
        raise HTTPException(status_code=404, detail="No net worth data")
    return snapshot


@router.post("/calculate", response_model=NetWorthSnapshot)
def calculate(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Persist a fresh snapshot from current account balances"""
    return calculate_net_worth(db, current_user.id)
