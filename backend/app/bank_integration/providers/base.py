"""
Abstract base class for bank integration providers

Defines the common interface that the aggregator client implements, regardless of
which credential set and base URLs are active.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from datetime import date


class BaseBankProvider(ABC):
    """
    Abstract base class for bank data aggregators.

    Implementations perform all outbound protocol interaction with the
    aggregator and never touch local persistence.
    """

    def __init__(self, provider_config):
        """
        Initialize provider with its resolved environment.

        Args:
            provider_config: Environment object with credentials and base URLs
        """
        self.config = provider_config

    @abstractmethod
    def get_authorization_url(
        self,
        state: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None
    ) -> str:
        """
        Generate OAuth authorization URL for user to authorize bank access.

        Args:
            state: CSRF protection token
            redirect_uri: Where to redirect after authorization
            scopes: Requested capabilities (provider default when omitted)

        Returns:
            Full authorization URL to redirect user to
        """
        pass

    @abstractmethod
    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str
    ) -> Dict[str, Any]:
        """
        Exchange authorization code for access/refresh tokens.

        Args:
            code: Authorization code from OAuth callback
            redirect_uri: Must match the one used in authorization

        Returns:
            Dictionary with keys:
            - access_token: str
            - refresh_token: str (optional)
            - expires_in: int (seconds until expiry)
            - token_type: str (usually 'Bearer')
        """
        pass

    @abstractmethod
    async def refresh_access_token(
        self,
        refresh_token: str
    ) -> Dict[str, Any]:
        """
        Refresh an expired access token using refresh token.

        Args:
            refresh_token: The refresh token

        Returns:
            Dictionary with the same keys as exchange_code_for_token
        """
        pass

    @abstractmethod
    async def fetch_accounts(
        self,
        access_token: str
    ) -> List[Any]:
        """
        Fetch list of accounts available from the bank.

        Args:
            access_token: Valid OAuth access token

        Returns:
            List of validated account objects. Fails as a whole when any
            entry does not match the expected shape.
        """
        pass

    @abstractmethod
    async def fetch_balance(
        self,
        access_token: str,
        account_id: str
    ) -> Any:
        """
        Fetch the current balance of one account.

        Args:
            access_token: Valid OAuth access token
            account_id: Account identifier from provider

        Returns:
            Validated balance object (currency, available, current, overdraft)
        """
        pass

    @abstractmethod
    async def fetch_transactions(
        self,
        access_token: str,
        account_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[Any]:
        """
        Fetch transactions for an account within an optional date range.

        Args:
            access_token: Valid OAuth access token
            account_id: Account identifier from provider
            from_date: Start date (inclusive)
            to_date: End date (inclusive)

        Returns:
            List of validated transaction objects; empty when the
            provider reports no results.
        """
        pass

    @abstractmethod
    def categorize_transaction(self, transaction: Any) -> str:
        """
        Map a provider transaction to an internal category label.

        Never fails: absence of a usable signal resolves to a default label.
        """
        pass
