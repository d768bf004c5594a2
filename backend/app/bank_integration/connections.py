"""
Connection Lifecycle Manager

State transitions over BankConnection rows and their cascading effect on Account:
- Creation after code exchange (tokens encrypted at rest)
- Token refresh and last-synced stamping
- Single and bulk deactivation (soft delete, cascading to accounts)
- Pending OAuth state tokens for callback verification
"""

import secrets
import logging
from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session

from backend.app.models import User, BankConnection, Account, OAuthState
from .encryption import TokenEncryption
from .errors import NotFoundError, InvalidOAuthStateError

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "accounts balance transactions"


def as_utc_naive(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC (stored timestamps are naive UTC)."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ConnectionManager:
    """
    CRUD and state transitions for bank connections.

    Connections are never hard-deleted; deactivation keeps them (and their
    accounts and transactions) as an audit trail.
    """

    def __init__(self, db: Session, encryption: Optional[TokenEncryption] = None):
        self.db = db
        self.encryption = encryption or TokenEncryption()

    def ensure_user(self, user_id: str) -> User:
        """
        Return the user row for a caller identity, creating it on first sight.

        Args:
            user_id: Stable caller identity

        Returns:
            Existing or newly provisioned User
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if user:
            return user

        logger.info(f"Provisioning user record for {user_id}")
        user = User(
            id=user_id,
            email=f"user-{user_id[-8:]}@placeholder.local",
            first_name="User",
            last_name=""
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def create(
        self,
        user_id: str,
        tokens: Dict[str, Any],
        scope: str = DEFAULT_SCOPE
    ) -> BankConnection:
        """
        Persist a new active connection from a token response.

        Args:
            user_id: Owning user
            tokens: Dict with access_token, refresh_token, token_type, expires_in
            scope: Granted capabilities, space-separated

        Returns:
            Created BankConnection
        """
        connection = BankConnection(
            user_id=user_id,
            access_token=self.encryption.encrypt(tokens['access_token']),
            refresh_token=self.encryption.encrypt(tokens.get('refresh_token')),
            token_type=tokens.get('token_type') or 'Bearer',
            expires_at=datetime.utcnow() + timedelta(seconds=tokens.get('expires_in', 3600)),
            scope=scope,
            is_active=True
        )
        self.db.add(connection)
        self.db.commit()
        self.db.refresh(connection)

        logger.info(f"Created bank connection {connection.id} for user {user_id}")
        return connection

    def get(self, connection_id: int, user_id: Optional[str] = None) -> BankConnection:
        """
        Raises:
            NotFoundError: If the id does not resolve (or belongs to another user)
        """
        query = self.db.query(BankConnection).filter(BankConnection.id == connection_id)
        if user_id is not None:
            query = query.filter(BankConnection.user_id == user_id)

        connection = query.first()
        if not connection:
            raise NotFoundError(f"Bank connection {connection_id} not found")
        return connection

    def get_active(self, user_id: str) -> Optional[BankConnection]:
        """Most recently created active connection for the user."""
        return self.db.query(BankConnection).filter(
            BankConnection.user_id == user_id,
            BankConnection.is_active == True
        ).order_by(BankConnection.created_at.desc(), BankConnection.id.desc()).first()

    def list_active(self, user_id: Optional[str] = None) -> List[BankConnection]:
        """All active connections for the user, or across all users when user_id is None."""
        query = self.db.query(BankConnection).filter(BankConnection.is_active == True)
        if user_id is not None:
            query = query.filter(BankConnection.user_id == user_id)
        return query.order_by(BankConnection.created_at.desc(), BankConnection.id.desc()).all()

    def update(self, connection_id: int, **fields) -> BankConnection:
        """Partial update of a connection's columns."""
        connection = self.get(connection_id)
        for field, value in fields.items():
            setattr(connection, field, value)
        self.db.commit()
        self.db.refresh(connection)
        return connection

    def store_tokens(self, connection: BankConnection, tokens: Dict[str, Any]) -> BankConnection:
        """
        Persist refreshed tokens and the new expiry.

        Keeps the existing refresh token when the aggregator does not rotate it.
        """
        fields = {
            'access_token': self.encryption.encrypt(tokens['access_token']),
            'expires_at': datetime.utcnow() + timedelta(seconds=tokens.get('expires_in', 3600)),
        }
        if tokens.get('refresh_token'):
            fields['refresh_token'] = self.encryption.encrypt(tokens['refresh_token'])
        if tokens.get('token_type'):
            fields['token_type'] = tokens['token_type']
        return self.update(connection.id, **fields)

    def mark_synced(self, connection: BankConnection) -> BankConnection:
        return self.update(connection.id, last_synced=datetime.utcnow())

    def is_expired(self, connection: BankConnection) -> bool:
        return as_utc_naive(connection.expires_at) <= datetime.utcnow()

    def access_token(self, connection: BankConnection) -> Optional[str]:
        return self.encryption.decrypt(connection.access_token)

    def refresh_token(self, connection: BankConnection) -> Optional[str]:
        return self.encryption.decrypt(connection.refresh_token)

    def deactivate_all(self, user_id: str) -> int:
        """
        Deactivate every connection for the user and every account they own.

        Transactions are left untouched as historical record.

        Returns:
            Number of connections deactivated
        """
        count = self.db.query(BankConnection).filter(
            BankConnection.user_id == user_id,
            BankConnection.is_active == True
        ).update({BankConnection.is_active: False}, synchronize_session=False)

        self.db.query(Account).filter(
            Account.user_id == user_id
        ).update({Account.is_active: False}, synchronize_session=False)

        self.db.commit()
        self.db.expire_all()

        logger.info(f"Deactivated {count} bank connections for user {user_id}")
        return count

    def deactivate_one(self, connection_id: int, user_id: Optional[str] = None) -> BankConnection:
        """
        Deactivate one connection and the accounts linked to it.

        Raises:
            NotFoundError: If the connection does not exist for the caller
        """
        connection = self.get(connection_id, user_id)
        connection.is_active = False

        self.db.query(Account).filter(
            Account.connection_id == connection.id
        ).update({Account.is_active: False}, synchronize_session=False)

        self.db.commit()
        self.db.expire_all()

        logger.info(f"Deactivated bank connection {connection_id}")
        return connection

    def create_oauth_state(self, user_id: str, ttl_minutes: int = 10) -> str:
        """
        Generate and persist a state token for one connect attempt.

        Returns:
            The state token to place in the authorization URL
        """
        state_token = secrets.token_urlsafe(32)
        self.db.add(OAuthState(
            state_token=state_token,
            user_id=user_id,
            expires_at=datetime.utcnow() + timedelta(minutes=ttl_minutes)
        ))
        self.db.commit()
        return state_token

    def consume_oauth_state(self, state_token: Optional[str]) -> OAuthState:
        """
        Validate a callback's state and mark it used.

        Raises:
            InvalidOAuthStateError: If missing, unknown, expired or already used
        """
        if not state_token:
            raise InvalidOAuthStateError("Missing state token")

        oauth_state = self.db.query(OAuthState).filter(
            OAuthState.state_token == state_token
        ).first()

        if not oauth_state:
            raise InvalidOAuthStateError("Invalid state token")

        if oauth_state.used_at:
            raise InvalidOAuthStateError("State token already used")

        if as_utc_naive(oauth_state.expires_at) < datetime.utcnow():
            raise InvalidOAuthStateError("State token expired")

        oauth_state.used_at = datetime.utcnow()
        self.db.commit()
        return oauth_state

    def verify_state_owner(self, state_token: str, user_id: str) -> None:
        """
        Raises:
            InvalidOAuthStateError: If the state was not issued to this user
        """
        oauth_state = self.db.query(OAuthState).filter(
            OAuthState.state_token == state_token,
            OAuthState.user_id == user_id
        ).first()
        if not oauth_state:
            raise InvalidOAuthStateError("State token does not belong to this user")
