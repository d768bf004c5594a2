"""Tests for the scheduled background sync."""

import asyncio
import pytest
from sqlalchemy.orm import sessionmaker

from backend.app.models import Transaction
from backend.app.bank_integration import scheduler
from backend.app.bank_integration.connections import ConnectionManager
from conftest import USER_ID


class TestRunScheduledSync:
    """Tests for one scheduled pass."""

    def test_failing_connection_does_not_stop_others(self, db_session, provider, truelayer, connection):
        ConnectionManager(db_session).create(USER_ID, {"access_token": "x", "refresh_token": None, "expires_in": -10})
        truelayer.add_account("acc-1")
        truelayer.add_transaction("acc-1", "tx-1", -5, "COFFEE")
        session_factory = sessionmaker(bind=db_session.get_bind())

        summary = asyncio.run(scheduler.run_scheduled_sync(session_factory, provider=provider, days_back=7))

        assert summary == {"connections": 2, "succeeded": 1, "failed": 1}
        assert db_session.query(Transaction).count() == 1

    def test_no_connections(self, db_session, provider):
        session_factory = sessionmaker(bind=db_session.get_bind())

        summary = asyncio.run(scheduler.run_scheduled_sync(session_factory, provider=provider))

        assert summary == {"connections": 0, "succeeded": 0, "failed": 0}


class TestSyncForever:
    """Tests for the scheduler loop."""

    def test_loop_survives_a_failed_pass(self, monkeypatch):
        calls = []

        async def fake_pass(session_factory):
            calls.append(session_factory)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            raise asyncio.CancelledError()

        monkeypatch.setattr(scheduler, "run_scheduled_sync", fake_pass)

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(scheduler.sync_forever("factory", interval_hours=0))

        assert calls == ["factory", "factory"]
