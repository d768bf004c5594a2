"""
Bank Integration Service

Reconciliation engine that handles:
- OAuth flow management (state tokens, single-use authorization codes)
- Connect completion (user provisioning, code exchange, initial sync)
- Transaction synchronization with idempotent upserts on external id
- Per-account failure isolation
"""

import time
import logging
from functools import lru_cache
from typing import Dict, Any, List, Optional, Set, Tuple
from datetime import datetime, timedelta, date, timezone
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.config import get_settings
from backend.app.models import BankConnection, Account, Transaction

from .providers.base import BaseBankProvider
from .providers.truelayer import TrueLayerProvider, TrueLayerEnvironment
from .connections import ConnectionManager
from .categorization import get_categorizer
from .errors import AggregatorError, AuthorizationCodeReusedError, TokenRefreshError

logger = logging.getLogger(__name__)

# Aggregator-sourced categories are high but not full confidence
SYNC_CATEGORY_CONFIDENCE = 0.8


@lru_cache()
def get_provider() -> BaseBankProvider:
    """
    Build the aggregator client for the configured environment (cached).

    Raises:
        ConfigurationError: If no credentials are configured
    """
    settings = get_settings()
    environment = TrueLayerEnvironment.from_settings(settings)
    return TrueLayerProvider(environment, timeout=settings.truelayer_timeout)


class ConsumedCodeRegistry:
    """
    Short-lived memory of authorization codes already submitted.

    Cleared wholesale once per interval; codes are only valid for minutes,
    so forgetting them after an hour is harmless.
    """

    def __init__(self, clear_interval_seconds: int = 3600):
        self.clear_interval_seconds = clear_interval_seconds
        self._codes: Set[str] = set()
        self._cleared_at = time.monotonic()

    def claim(self, code: str) -> bool:
        """Record the code. Returns False if it was already claimed."""
        if time.monotonic() - self._cleared_at >= self.clear_interval_seconds:
            self.clear()

        if code in self._codes:
            return False
        self._codes.add(code)
        return True

    def clear(self):
        self._codes.clear()
        self._cleared_at = time.monotonic()


consumed_codes = ConsumedCodeRegistry()


def mask_account_number(number: Optional[str]) -> str:
    if not number:
        return "Hidden"
    return f"****{number[-4:]}"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into a naive UTC datetime."""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class BankIntegrationService:
    """
    Main service for bank integration.

    Provides high-level operations for:
    - Starting OAuth flows
    - Completing a connection from an authorization code
    - Syncing one connection or all of a user's connections
    """

    def __init__(self, db: Session, provider: Optional[BaseBankProvider] = None):
        """
        Initialize service with database session.

        Args:
            db: SQLAlchemy database session
            provider: Aggregator client (defaults to the configured TrueLayer client)
        """
        self.db = db
        self.provider = provider or get_provider()
        self.connections = ConnectionManager(db)
        self.settings = get_settings()

    def start_oauth_flow(
        self,
        user_id: str,
        redirect_uri: Optional[str] = None,
        scopes: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        """
        Initiate OAuth flow for connecting a bank.

        Persists a state token for the callback to verify and builds the
        authorization URL.

        Returns:
            {
                'authorization_url': str,
                'state_token': str
            }

        Example:
            >>> result = service.start_oauth_flow("user-123")
            >>> # Redirect user to result['authorization_url']
        """
        self.connections.ensure_user(user_id)
        state_token = self.connections.create_oauth_state(
            user_id, ttl_minutes=self.settings.oauth_state_ttl_minutes
        )
        authorization_url = self.provider.get_authorization_url(
            state=state_token,
            redirect_uri=redirect_uri or self.settings.truelayer_redirect_uri,
            scopes=scopes
        )

        return {
            'authorization_url': authorization_url,
            'state_token': state_token
        }

    async def complete_connection(
        self,
        user_id: str,
        code: str,
        state: Optional[str] = None,
        redirect_uri: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code, persist the connection and run the initial sync.

        A code seen before is rejected before any aggregator call is made.

        Args:
            user_id: Caller identity (provisioned on first use)
            code: Authorization code forwarded by the client app
            state: Optional state token issued by start_oauth_flow
            redirect_uri: Must match the one used in authorization

        Returns:
            {
                'connection': BankConnection,
                'accounts_created': int,
                'transactions_created': int,
                'total_accounts': int,
                'failed_accounts': list
            }

        Raises:
            AuthorizationCodeReusedError: If the code was already submitted
            InvalidOAuthStateError: If state was given but not issued to this user
            TokenExchangeError: If the aggregator rejects the code
        """
        self.connections.ensure_user(user_id)

        if state:
            self.connections.verify_state_owner(state, user_id)

        if not consumed_codes.claim(code):
            logger.warning(f"Rejected reused authorization code {code[:6]}...")
            raise AuthorizationCodeReusedError("Authorization code has already been used")

        tokens = await self.provider.exchange_code_for_token(
            code=code,
            redirect_uri=redirect_uri or self.settings.truelayer_redirect_uri
        )
        logger.info(f"Token exchange successful for user {user_id}")

        connection = self.connections.create(user_id, tokens)
        result = await self.sync(connection, days_back=self.settings.manual_sync_days)
        result['connection'] = connection
        return result

    async def _access_token_for(self, connection: BankConnection, force_refresh: bool = False) -> str:
        """
        Return a usable access token, refreshing first if it has expired.

        Raises:
            TokenRefreshError: If refresh fails; the sync must not proceed
        """
        if not force_refresh and not self.connections.is_expired(connection):
            return self.connections.access_token(connection)

        refresh_token = self.connections.refresh_token(connection)
        if not refresh_token:
            raise TokenRefreshError(f"Connection {connection.id} has no refresh token")

        logger.info(f"Refreshing tokens for connection {connection.id}")
        tokens = await self.provider.refresh_access_token(refresh_token)
        self.connections.store_tokens(connection, tokens)
        return tokens['access_token']

    def _upsert_account(self, connection: BankConnection, remote) -> Tuple[Optional[Account], bool]:
        """
        Find the local account for an aggregator account, creating it if absent.

        Returns:
            (account, created). Account is None when the external id is
            already owned by another user.
        """
        account = self.db.query(Account).filter(
            Account.external_id == remote.account_id
        ).first()

        if account:
            if account.user_id != connection.user_id:
                logger.warning(
                    f"Account {remote.account_id} belongs to another user; skipping it for connection {connection.id}"
                )
                return None, False
            if account.connection_id != connection.id or not account.is_active:
                # Reconnected after a disconnect
                account.connection_id = connection.id
                account.is_active = True
                self.db.commit()
            return account, False

        account = Account(
            user_id=connection.user_id,
            connection_id=connection.id,
            external_id=remote.account_id,
            name=remote.display_name,
            type=remote.account_type.lower(),
            balance=0,
            currency=remote.currency,
            institution_name=remote.provider.display_name,
            account_number=mask_account_number(remote.account_number.number),
            is_active=True
        )
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent sync stored the same account first
            self.db.rollback()
            logger.warning(f"Concurrent insert detected for account {remote.account_id}; using the stored row")
            account = self.db.query(Account).filter(
                Account.external_id == remote.account_id
            ).first()
            if account is None or account.user_id != connection.user_id:
                return None, False
            return account, False

        self.db.refresh(account)
        return account, True

    def _categorize(self, remote_tx) -> str:
        """User-taught overrides win; otherwise the aggregator's category mapping."""
        learned = get_categorizer(self.db).find_override(remote_tx.description)
        if learned:
            return learned
        return self.provider.categorize_transaction(remote_tx)

    def _insert_new_transactions(self, account: Account, remote_transactions) -> int:
        """Insert-if-absent on external id. Stored transactions are never modified by sync."""
        created = 0
        seen: Set[str] = set()

        for remote_tx in remote_transactions:
            if remote_tx.transaction_id in seen:
                continue
            seen.add(remote_tx.transaction_id)

            existing = self.db.query(Transaction.id).filter(
                Transaction.external_id == remote_tx.transaction_id
            ).first()
            if existing:
                continue

            try:
                tx_date = parse_timestamp(remote_tx.timestamp)
            except ValueError:
                logger.warning(
                    f"Skipping transaction {remote_tx.transaction_id}: unparseable timestamp {remote_tx.timestamp!r}"
                )
                continue

            self.db.add(Transaction(
                account_id=account.id,
                external_id=remote_tx.transaction_id,
                amount=remote_tx.amount,
                description=remote_tx.description,
                date=tx_date,
                category=self._categorize(remote_tx),
                category_confidence=SYNC_CATEGORY_CONFIDENCE,
                is_manually_overridden=False,
                transaction_metadata={
                    'merchantName': remote_tx.merchant_name,
                    'transactionType': remote_tx.transaction_type,
                    'trueLayerCategory': remote_tx.transaction_category,
                }
            ))
            created += 1

        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent sync stored the same transactions first
            self.db.rollback()
            logger.warning(f"Concurrent insert detected for account {account.external_id}; will pick up on next sync")
            return 0

        return created

    async def sync(
        self,
        connection: BankConnection,
        days_back: Optional[int] = None,
        force_refresh: bool = False
    ) -> Dict[str, Any]:
        """
        Run one full sync pass for a connection.

        Main workflow:
        1. Refresh the token if expired (fatal on failure)
        2. List accounts (fatal on failure, no partial lists)
        3. Per account: upsert, update balance, insert new transactions.
           Balance and transaction failures are logged and isolated.
        4. Stamp the connection's last-synced time

        Args:
            connection: Active bank connection
            days_back: Trailing transaction window (default: manual window)
            force_refresh: Refresh tokens even if not yet expired

        Returns:
            {
                'accounts_created': int,
                'transactions_created': int,
                'total_accounts': int,
                'failed_accounts': [{'account_id', 'call', 'status_code', 'error'}]
            }

        Raises:
            TokenRefreshError: If the token is expired and cannot be refreshed
            AggregatorError: If listing accounts fails or is malformed
        """
        if days_back is None:
            days_back = self.settings.manual_sync_days

        access_token = await self._access_token_for(connection, force_refresh=force_refresh)

        remote_accounts = await self.provider.fetch_accounts(access_token)
        logger.info(f"Connection {connection.id}: {len(remote_accounts)} accounts from aggregator")

        from_date = date.today() - timedelta(days=days_back)
        to_date = date.today()

        accounts_created = 0
        transactions_created = 0
        failed_accounts = []

        for remote in remote_accounts:
            account, created = self._upsert_account(connection, remote)
            if account is None:
                continue
            if created:
                accounts_created += 1

            try:
                balance = await self.provider.fetch_balance(access_token, remote.account_id)
                account.balance = balance.current
                account.last_synced = datetime.utcnow()
                self.db.commit()
            except AggregatorError as e:
                logger.error(
                    f"Balance fetch failed for account {remote.account_id} "
                    f"(status={e.status_code}): {e}"
                )
                failed_accounts.append({
                    'account_id': remote.account_id,
                    'call': 'balance',
                    'status_code': e.status_code,
                    'error': str(e)
                })

            try:
                remote_transactions = await self.provider.fetch_transactions(
                    access_token, remote.account_id, from_date=from_date, to_date=to_date
                )
            except AggregatorError as e:
                logger.error(
                    f"Transaction fetch failed for account {remote.account_id} "
                    f"(status={e.status_code}): {e}"
                )
                failed_accounts.append({
                    'account_id': remote.account_id,
                    'call': 'transactions',
                    'status_code': e.status_code,
                    'error': str(e)
                })
                remote_transactions = []

            transactions_created += self._insert_new_transactions(account, remote_transactions)

        self.connections.mark_synced(connection)

        logger.info(
            f"Sync complete for connection {connection.id}: "
            f"accounts_created={accounts_created}, transactions_created={transactions_created}, "
            f"failed_calls={len(failed_accounts)}"
        )

        return {
            'accounts_created': accounts_created,
            'transactions_created': transactions_created,
            'total_accounts': len(remote_accounts),
            'failed_accounts': failed_accounts
        }

    async def sync_all(self, user_id: Optional[str] = None, days_back: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Sync every active connection (for one user, or all users).

        One connection's failure is logged and recorded without stopping
        the others.

        Returns:
            One result dict per connection with 'connection_id' and 'success'
        """
        results = []
        for connection in self.connections.list_active(user_id):
            try:
                result = await self.sync(connection, days_back=days_back)
                results.append({'connection_id': connection.id, 'success': True, **result})
            except Exception as e:
                self.db.rollback()
                logger.error(f"Sync failed for connection {connection.id}: {e}")
                results.append({'connection_id': connection.id, 'success': False, 'error': str(e)})
        return results
