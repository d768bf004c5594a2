"""Tests for budget, net worth and goal calculations."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from backend.app.models import Account, Budget, Goal, BudgetPeriod
from backend.app.bank_integration.metrics import (
    budget_spend, budget_end_date, category_spending, net_worth_totals,
    calculate_net_worth, latest_net_worth, net_worth_history, backfill_net_worth,
    time_remaining, goal_progress
)
from conftest import USER_ID

NOW = datetime(2024, 6, 1, 12, 0)


def make_budget(db_session, amount, category="Dining", start=None, end=None):
    budget = Budget(
        user_id=USER_ID,
        category=category,
        amount=Decimal(str(amount)),
        period=BudgetPeriod.MONTHLY,
        start_date=start or NOW - timedelta(days=10),
        end_date=end,
        is_active=True
    )
    db_session.add(budget)
    db_session.commit()
    return budget


class TestBudgetSpend:
    """Tests for budget_spend."""

    def test_spend_within_window(self, db_session, make_transaction):
        budget = make_budget(db_session, 200, end=NOW + timedelta(days=20))
        make_transaction(-50, category="Dining", date=NOW - timedelta(days=2))
        make_transaction(-30, category="Dining", date=NOW - timedelta(days=1))

        spend = budget_spend(db_session, budget, now=NOW)

        assert spend["spent"] == Decimal("80.00")
        assert spend["remaining"] == Decimal("120.00")
        assert spend["percentage_used"] == 40.0

    def test_ignores_other_categories_credits_and_out_of_window(self, db_session, make_transaction):
        budget = make_budget(db_session, 200, end=NOW)
        make_transaction(-50, category="Dining", date=NOW - timedelta(days=2))
        make_transaction(-70, category="Groceries", date=NOW - timedelta(days=2))
        make_transaction(25, category="Dining", date=NOW - timedelta(days=2))
        make_transaction(-99, category="Dining", date=NOW - timedelta(days=30))

        assert budget_spend(db_session, budget, now=NOW)["spent"] == Decimal("50.00")

    def test_open_ended_budget_runs_until_now(self, db_session, make_transaction):
        budget = make_budget(db_session, 100, end=None)
        make_transaction(-10, category="Dining", date=NOW - timedelta(days=1))
        make_transaction(-10, category="Dining", date=NOW + timedelta(days=1))

        assert budget_spend(db_session, budget, now=NOW)["spent"] == Decimal("10.00")

    def test_over_budget_exceeds_hundred_percent(self, db_session, make_transaction):
        budget = make_budget(db_session, 50, end=NOW)
        make_transaction(-75, category="Dining", date=NOW - timedelta(days=1))

        spend = budget_spend(db_session, budget, now=NOW)

        assert spend["percentage_used"] == 150.0
        assert spend["remaining"] == Decimal("-25.00")

    def test_zero_amount_budget(self, db_session, make_transaction):
        budget = make_budget(db_session, 0, end=NOW)
        make_transaction(-5, category="Dining", date=NOW - timedelta(days=1))

        assert budget_spend(db_session, budget, now=NOW)["percentage_used"] == 0.0

    @pytest.mark.parametrize("period,days", [
        (BudgetPeriod.WEEKLY, 7),
        (BudgetPeriod.MONTHLY, 30),
        (BudgetPeriod.YEARLY, 365),
    ])
    def test_budget_end_date(self, period, days):
        assert budget_end_date(NOW, period) == NOW + timedelta(days=days)

    def test_category_spending_without_filters(self, db_session, make_transaction):
        make_transaction(-5, category="Dining")
        make_transaction(-7, category=None)
        make_transaction(100, category="Income")

        assert category_spending(db_session, USER_ID, None, None, None) == Decimal("12.00")


class TestNetWorth:
    """Tests for net worth snapshots."""

    def accounts(self, db_session):
        for name, type_, balance in [
            ("Current", "current", "1500.00"),
            ("Savings", "savings", "3000.00"),
            ("Card", "credit_card", "400.00"),
            ("Overdrawn", "current", "-100.00"),
        ]:
            db_session.add(Account(user_id=USER_ID, name=name, type=type_, balance=Decimal(balance), is_active=True))
        db_session.add(Account(user_id=USER_ID, name="Closed", type="savings", balance=Decimal("999"), is_active=False))
        db_session.commit()

    def test_totals_split_assets_and_liabilities(self):
        totals = net_worth_totals([
            Account(type="current", balance=Decimal("1500")),
            Account(type="credit_card", balance=Decimal("400")),
            Account(type="current", balance=Decimal("-100")),
        ])

        assert totals == {
            "total_assets": Decimal("1500"),
            "total_liabilities": Decimal("500"),
            "net_worth": Decimal("1000")
        }

    def test_calculate_persists_snapshot_of_active_accounts(self, db_session, sample_account):
        sample_account.is_active = False
        db_session.commit()
        self.accounts(db_session)

        snapshot = calculate_net_worth(db_session, USER_ID)

        assert snapshot.id is not None
        assert snapshot.total_assets == Decimal("4500.00")
        assert snapshot.total_liabilities == Decimal("500.00")
        assert snapshot.net_worth == Decimal("4000.00")
        assert latest_net_worth(db_session, USER_ID).id == snapshot.id

    def test_history_newest_first(self, db_session, sample_account):
        first = calculate_net_worth(db_session, USER_ID)
        second = calculate_net_worth(db_session, USER_ID)

        history = net_worth_history(db_session, USER_ID, days=30)

        assert [s.id for s in history] == [second.id, first.id]

    def test_backfill_walks_transactions_backwards(self, db_session, sample_account, make_transaction):
        now = datetime.utcnow()
        make_transaction(-100, date=now - timedelta(days=2, hours=1))
        make_transaction(200, date=now - timedelta(hours=1))

        series = backfill_net_worth(db_session, USER_ID, days=5)

        assert len(series) == 6
        assert series[-1]["net_worth"] == Decimal("500.00")
        assert series[-2]["net_worth"] == Decimal("300.00")
        assert series[0]["net_worth"] == Decimal("400.00")
        assert series[0]["date"] < series[-1]["date"]


class TestGoals:
    """Tests for goal progress and time remaining."""

    @pytest.mark.parametrize("delta,expected", [
        (timedelta(hours=12), "1 day"),
        (timedelta(days=1), "1 day"),
        (timedelta(days=12), "12 days"),
        (timedelta(days=30), "1 month"),
        (timedelta(days=75), "3 months"),
        (timedelta(days=365), "1 year"),
        (timedelta(days=800), "3 years"),
        (timedelta(days=0), "Overdue"),
        (timedelta(days=-3), "Overdue"),
    ])
    def test_time_remaining(self, delta, expected):
        assert time_remaining(NOW + delta, now=NOW) == expected

    def test_time_remaining_without_target(self):
        assert time_remaining(None) is None

    def test_goal_progress(self):
        goal = Goal(target_amount=Decimal("1000"), current_amount=Decimal("250"), target_date=NOW + timedelta(days=12))

        progress = goal_progress(goal, now=NOW)

        assert progress == {"progress": 25.0, "remaining": Decimal("750"), "time_remaining": "12 days"}

    def test_progress_capped_at_hundred(self):
        goal = Goal(target_amount=Decimal("100"), current_amount=Decimal("150"))

        assert goal_progress(goal, now=NOW)["progress"] == 100.0
