"""Shared test fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
import httpx
from urllib.parse import parse_qsl
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient
from datetime import datetime
from decimal import Decimal

from backend.database import Base, get_db
from backend.main import app
from backend.app.models import Account, Transaction
from backend.app.bank_integration import categorization, service
from backend.app.bank_integration.categorization import TransactionCategorizer
from backend.app.bank_integration.connections import ConnectionManager
from backend.app.bank_integration.service import get_provider
from backend.app.bank_integration.providers.truelayer import TrueLayerProvider, TrueLayerEnvironment

USER_ID = "user-1234567890"


class FakeTrueLayer:
    """In-memory stand-in for the TrueLayer auth and Data APIs, served through httpx.MockTransport."""

    def __init__(self):
        self.accounts = []
        self.balances = {}
        self.transactions = {}
        self.failures = {}
        self.token_error = None
        self.token_requests = []
        self.data_requests = []

    def add_account(
        self,
        account_id,
        display_name="Current Account",
        account_type="TRANSACTION",
        balance="100.00",
        provider_name="Mock Bank",
        number="12345678"
    ):
        self.accounts.append({
            "account_id": account_id,
            "account_type": account_type,
            "display_name": display_name,
            "currency": "GBP",
            "account_number": {"number": number, "sort_code": "01-02-03"},
            "provider": {"display_name": provider_name}
        })
        self.balances[account_id] = {"currency": "GBP", "available": balance, "current": balance}
        self.transactions.setdefault(account_id, [])

    def add_transaction(
        self,
        account_id,
        transaction_id,
        amount,
        description,
        timestamp="2024-01-15T10:00:00Z",
        category=None,
        merchant_name=None
    ):
        self.transactions.setdefault(account_id, []).append({
            "transaction_id": transaction_id,
            "timestamp": timestamp,
            "description": description,
            "amount": amount,
            "currency": "GBP",
            "transaction_type": "DEBIT" if Decimal(str(amount)) < 0 else "CREDIT",
            "transaction_category": category,
            "merchant_name": merchant_name
        })

    def fail(self, path, status_code=500, body="upstream error"):
        self.failures[path] = (status_code, body)

    @property
    def exchange_count(self):
        return sum(1 for form in self.token_requests if form.get("grant_type") == "authorization_code")

    @property
    def refresh_count(self):
        return sum(1 for form in self.token_requests if form.get("grant_type") == "refresh_token")

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if path == "/connect/token":
            form = dict(parse_qsl(request.content.decode()))
            self.token_requests.append(form)
            if self.token_error:
                status_code, body = self.token_error
                return httpx.Response(status_code, text=body)
            n = len(self.token_requests)
            return httpx.Response(200, json={
                "access_token": f"access-token-{n}",
                "refresh_token": f"refresh-token-{n}",
                "token_type": "Bearer",
                "expires_in": 3600
            })

        self.data_requests.append(request)
        if path in self.failures:
            status_code, body = self.failures[path]
            return httpx.Response(status_code, text=body)

        parts = path.strip("/").split("/")
        if parts == ["data", "v1", "accounts"]:
            return httpx.Response(200, json={"results": self.accounts, "status": "Succeeded"})
        if len(parts) == 5 and parts[4] == "balance":
            return httpx.Response(200, json={"results": [self.balances[parts[3]]]})
        if len(parts) == 5 and parts[4] == "transactions":
            return httpx.Response(200, json={"results": self.transactions.get(parts[3], [])})

        return httpx.Response(404, text="not found")


@pytest.fixture(autouse=True)
def reset_process_state(monkeypatch):
    """Fresh categorizer and consumed-code memory for every test."""
    monkeypatch.setattr(categorization, "_categorizer", TransactionCategorizer())
    service.consumed_codes.clear()
    yield
    service.consumed_codes.clear()


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test using in-memory SQLite."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def truelayer():
    return FakeTrueLayer()


@pytest.fixture
def provider(truelayer):
    environment = TrueLayerEnvironment("test-client-id", "test-client-secret", is_live=False)
    return TrueLayerProvider(environment, transport=httpx.MockTransport(truelayer.handler))


@pytest.fixture(scope="function")
def client(db_session, provider):
    """Create a test client with database and aggregator overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider] = lambda: provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"X-User-ID": USER_ID}


@pytest.fixture
def connection(db_session):
    """An active connection with fresh tokens for USER_ID."""
    manager = ConnectionManager(db_session)
    manager.ensure_user(USER_ID)
    return manager.create(USER_ID, {
        "access_token": "access-token-0",
        "refresh_token": "refresh-token-0",
        "token_type": "Bearer",
        "expires_in": 3600
    })


@pytest.fixture
def sample_account(db_session):
    """A manual account for USER_ID."""
    ConnectionManager(db_session).ensure_user(USER_ID)
    account = Account(
        user_id=USER_ID,
        name="Test Current",
        type="current",
        balance=Decimal("500.00"),
        currency="GBP",
        is_active=True
    )
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture
def make_transaction(db_session, sample_account):
    """Factory for transactions on the sample account."""
    def _make(amount, description="Card payment", category=None, date=None, **kwargs):
        transaction = Transaction(
            account_id=sample_account.id,
            amount=Decimal(str(amount)),
            description=description,
            category=category,
            date=date or datetime.utcnow(),
            **kwargs
        )
        db_session.add(transaction)
        db_session.commit()
        db_session.refresh(transaction)
        return transaction
    return _make
