"""
Derived Metrics

Read-time and snapshot summaries computed from stored accounts and transactions:
- Budget spend to date
- Net worth snapshots (and an optional reconstructed daily history)
- Goal progress and time remaining
"""

import math
import logging
from decimal import Decimal
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.app.models import Account, Transaction, Budget, Goal, NetWorthHistory, BudgetPeriod
from .connections import as_utc_naive

logger = logging.getLogger(__name__)

LIABILITY_ACCOUNT_TYPES = {"credit_card", "credit"}

BUDGET_PERIOD_DAYS = {
    BudgetPeriod.WEEKLY: 7,
    BudgetPeriod.MONTHLY: 30,
    BudgetPeriod.YEARLY: 365,
}

ZERO = Decimal("0")


def budget_end_date(start_date: datetime, period: BudgetPeriod) -> datetime:
    return start_date + timedelta(days=BUDGET_PERIOD_DAYS[period])


def category_spending(
    db: Session,
    user_id: str,
    category: Optional[str],
    start_date: Optional[datetime],
    end_date: Optional[datetime]
) -> Decimal:
    """
    Sum of debits (sign-flipped) for a user, optionally limited to one category and a window.
    """
    query = db.query(func.coalesce(func.sum(Transaction.amount), 0)).join(
        Account, Transaction.account_id == Account.id
    ).filter(
        Account.user_id == user_id,
        Transaction.amount < 0
    )
    if category:
        query = query.filter(Transaction.category == category)
    if start_date:
        query = query.filter(Transaction.date >= as_utc_naive(start_date))
    if end_date:
        query = query.filter(Transaction.date <= as_utc_naive(end_date))

    total = Decimal(str(query.scalar() or 0))
    return abs(total).quantize(Decimal("0.01"))


def budget_spend(db: Session, budget: Budget, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Spend against a budget within its active window.

    An open-ended budget runs until now. percentage_used is the raw ratio
    and can exceed 100 for over-budget detection.

    Returns:
        {'spent': Decimal, 'remaining': Decimal, 'percentage_used': float}
    """
    end_date = budget.end_date or now or datetime.utcnow()
    spent = category_spending(db, budget.user_id, budget.category, budget.start_date, end_date)

    amount = Decimal(str(budget.amount))
    percentage_used = float(spent / amount * 100) if amount else 0.0

    return {
        'spent': spent,
        'remaining': amount - spent,
        'percentage_used': percentage_used
    }


def net_worth_totals(accounts: List[Account]) -> Dict[str, Decimal]:
    """
    Split balances into assets and liabilities.

    Credit-type accounts and any account with a negative balance are
    liabilities (counted by absolute value); everything else is an asset.
    """
    total_assets = ZERO
    total_liabilities = ZERO

    for account in accounts:
        balance = Decimal(str(account.balance or 0))
        if (account.type or "").lower() in LIABILITY_ACCOUNT_TYPES or balance < 0:
            total_liabilities += abs(balance)
        else:
            total_assets += balance

    return {
        'total_assets': total_assets,
        'total_liabilities': total_liabilities,
        'net_worth': total_assets - total_liabilities
    }


def calculate_net_worth(db: Session, user_id: str) -> NetWorthHistory:
    """Compute net worth from the user's active accounts and append a snapshot."""
    accounts = db.query(Account).filter(
        Account.user_id == user_id,
        Account.is_active == True
    ).all()

    totals = net_worth_totals(accounts)
    snapshot = NetWorthHistory(
        user_id=user_id,
        date=datetime.utcnow(),
        **totals
    )
    db.add(snapshot)
    db.commit()
    db.refresh(snapshot)

    logger.info(f"Net worth snapshot for user {user_id}: {totals['net_worth']}")
    return snapshot


def latest_net_worth(db: Session, user_id: str) -> Optional[NetWorthHistory]:
    return db.query(NetWorthHistory).filter(
        NetWorthHistory.user_id == user_id
    ).order_by(NetWorthHistory.date.desc(), NetWorthHistory.id.desc()).first()


def net_worth_history(db: Session, user_id: str, days: int = 30) -> List[NetWorthHistory]:
    cutoff = datetime.utcnow() - timedelta(days=days)
    return db.query(NetWorthHistory).filter(
        NetWorthHistory.user_id == user_id,
        NetWorthHistory.date >= cutoff
    ).order_by(NetWorthHistory.date.desc(), NetWorthHistory.id.desc()).all()


def backfill_net_worth(db: Session, user_id: str, days: int = 90) -> List[Dict[str, Any]]:
    """
    Reconstruct a daily net worth series from transaction history.

    Walks backwards from current balances, undoing each day's transactions.
    Approximate: assumes balances are fully explained by the recorded
    transactions. Oldest point first.
    """
    accounts = db.query(Account).filter(
        Account.user_id == user_id,
        Account.is_active == True
    ).all()
    net_worth = net_worth_totals(accounts)['net_worth']

    now = datetime.utcnow()
    start = now - timedelta(days=days)
    transactions = db.query(Transaction.date, Transaction.amount).join(
        Account, Transaction.account_id == Account.id
    ).filter(
        Account.user_id == user_id,
        Account.is_active == True,
        Transaction.date > start
    ).order_by(Transaction.date.desc()).all()

    series = []
    day_end = now
    index = 0
    for _ in range(days + 1):
        # Undo everything after the end of this day
        while index < len(transactions) and as_utc_naive(transactions[index].date) > day_end:
            net_worth -= Decimal(str(transactions[index].amount))
            index += 1

        series.append({
            'net_worth': net_worth,
            'total_assets': max(net_worth, ZERO),
            'total_liabilities': max(-net_worth, ZERO),
            'date': day_end
        })
        day_end = day_end - timedelta(days=1)

    series.reverse()
    return series


def time_remaining(target_date: Optional[datetime], now: Optional[datetime] = None) -> Optional[str]:
    """
    Human-readable time left until a goal's target date.

    Examples: "1 day", "12 days", "3 months", "2 years", "Overdue".
    """
    if target_date is None:
        return None

    now = now or datetime.utcnow()
    delta = as_utc_naive(target_date) - as_utc_naive(now)
    days = math.ceil(delta.total_seconds() / 86400)

    if days <= 0:
        return "Overdue"
    if days == 1:
        return "1 day"
    if days < 30:
        return f"{days} days"
    if days < 365:
        months = math.ceil(days / 30)
        return "1 month" if months == 1 else f"{months} months"
    years = math.ceil(days / 365)
    return "1 year" if years == 1 else f"{years} years"


def goal_progress(goal: Goal, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Returns:
        {'progress': float (0-100), 'remaining': Decimal, 'time_remaining': str | None}
    """
    target = Decimal(str(goal.target_amount))
    current = Decimal(str(goal.current_amount or 0))
    progress = float(current / target * 100) if target else 0.0

    return {
        'progress': min(progress, 100.0),
        'remaining': target - current,
        'time_remaining': time_remaining(goal.target_date, now)
    }
