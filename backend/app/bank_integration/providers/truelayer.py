"""
TrueLayer Provider Implementation

TrueLayer is a UK Open Banking aggregator. Authorization uses a standard OAuth2
authorization-code grant with refresh tokens; account data is read from the
Data API under a bearer token.

Documentation: https://docs.truelayer.com/docs/data-api-basics
"""

import httpx
import logging
from typing import Dict, Any, List, Optional, Literal, Type
from datetime import date
from decimal import Decimal
from urllib.parse import urlencode
from pydantic import BaseModel, ValidationError

from .base import BaseBankProvider
from ..errors import (
    AggregatorError, ConfigurationError, ResponseValidationError,
    TokenExchangeError, TokenRefreshError
)

logger = logging.getLogger(__name__)

LIVE_AUTH_URL = "https://auth.truelayer.com"
LIVE_API_URL = "https://api.truelayer.com"
SANDBOX_AUTH_URL = "https://auth.truelayer-sandbox.com"
SANDBOX_API_URL = "https://api.truelayer-sandbox.com"

LIVE_PROVIDERS = "uk-ob-all uk-oauth-all"
SANDBOX_PROVIDERS = "uk-cs-mock uk-ob-all uk-oauth-all"

DEFAULT_SCOPES = [
    "info", "accounts", "balance", "cards", "transactions",
    "direct_debits", "standing_orders", "offline_access"
]

# TrueLayer transaction_category -> internal category
CATEGORY_MAP = {
    "GROCERIES": "Groceries",
    "TRANSPORT": "Transportation",
    "RESTAURANTS": "Dining Out",
    "ENTERTAINMENT": "Entertainment",
    "SHOPPING": "Shopping",
    "BILLS_AND_UTILITIES": "Bills & Utilities",
    "CASH_AND_ATM": "Cash & ATM",
    "GENERAL": "Other",
}

# (category, description keywords, merchant keywords), checked in order
KEYWORD_FALLBACK = [
    ("Groceries", ["tesco", "sainsbury", "asda", "morrisons"], ["tesco", "sainsbury"]),
    ("Transportation", ["tfl", "uber", "transport", "bus", "train", "petrol"], []),
    ("Dining Out", ["restaurant", "cafe", "takeaway", "delivery"], ["restaurant", "cafe"]),
    ("Entertainment", ["cinema", "netflix", "spotify", "entertainment"], []),
    ("Shopping", ["amazon", "shop", "store"], ["amazon"]),
    ("Bills & Utilities", ["direct debit", "standing order", "utility", "council tax", "insurance"], []),
]

DEFAULT_CATEGORY = "Other"


class TrueLayerAccountNumber(BaseModel):
    iban: Optional[str] = None
    number: Optional[str] = None
    sort_code: Optional[str] = None


class TrueLayerProviderInfo(BaseModel):
    display_name: str
    logo_uri: Optional[str] = None


class TrueLayerAccount(BaseModel):
    account_id: str
    account_type: str
    display_name: str
    currency: str
    account_number: TrueLayerAccountNumber
    provider: TrueLayerProviderInfo


class TrueLayerBalance(BaseModel):
    currency: str
    available: Decimal
    current: Decimal
    overdraft: Optional[Decimal] = None


class TrueLayerRunningBalance(BaseModel):
    currency: str
    amount: Decimal


class TrueLayerTransaction(BaseModel):
    transaction_id: str
    timestamp: str
    description: str
    amount: Decimal
    currency: str
    transaction_type: Literal["DEBIT", "CREDIT"]
    transaction_category: Optional[str] = None
    merchant_name: Optional[str] = None
    running_balance: Optional[TrueLayerRunningBalance] = None


class TrueLayerEnvironment:
    """
    Resolved credential set and base URLs (live or sandbox).

    Built once at startup from settings; every provider call goes through
    the same interface whichever environment is active.
    """

    def __init__(self, client_id: str, client_secret: str, is_live: bool):
        self.client_id = client_id
        self.client_secret = client_secret
        self.is_live = is_live
        self.auth_url = LIVE_AUTH_URL if is_live else SANDBOX_AUTH_URL
        self.api_base_url = LIVE_API_URL if is_live else SANDBOX_API_URL
        self.providers = LIVE_PROVIDERS if is_live else SANDBOX_PROVIDERS

    @property
    def token_url(self) -> str:
        return f"{self.auth_url}/connect/token"

    @classmethod
    def from_settings(cls, settings) -> "TrueLayerEnvironment":
        """
        Select live or sandbox mode and the matching credential pair.

        Live mode is chosen by TRUELAYER_ENV=live, TRUELAYER_USE_LIVE=true, or
        the presence of both live-specific credentials. Live mode prefers the
        live-specific pair and falls back to the generic pair; sandbox mode
        uses the generic pair.

        Raises:
            ConfigurationError: If no usable credential pair is configured
        """
        has_live_creds = bool(settings.truelayer_client_id_live and settings.truelayer_client_secret_live)
        has_generic_creds = bool(settings.truelayer_client_id and settings.truelayer_client_secret)
        is_live = (
            settings.truelayer_env.lower() == "live"
            or settings.truelayer_use_live
            or has_live_creds
        )

        live_pair = (settings.truelayer_client_id_live, settings.truelayer_client_secret_live)
        generic_pair = (settings.truelayer_client_id, settings.truelayer_client_secret)

        if is_live:
            if has_live_creds:
                client_id, client_secret = live_pair
            elif has_generic_creds:
                client_id, client_secret = generic_pair
            else:
                raise ConfigurationError(
                    "TrueLayer live credentials not found. Set TRUELAYER_CLIENT_ID/TRUELAYER_CLIENT_SECRET "
                    "or TRUELAYER_CLIENT_ID_LIVE/TRUELAYER_CLIENT_SECRET_LIVE."
                )
        else:
            if has_generic_creds:
                client_id, client_secret = generic_pair
            else:
                raise ConfigurationError(
                    "TrueLayer credentials not found. Set TRUELAYER_CLIENT_ID/TRUELAYER_CLIENT_SECRET "
                    "for sandbox or the LIVE equivalents."
                )

        environment = cls(client_id, client_secret, is_live)
        logger.info(
            f"TrueLayer environment: {'live' if is_live else 'sandbox'} "
            f"(auth={environment.auth_url}, credentials={'live-specific' if has_live_creds else 'generic'})"
        )
        return environment


class TrueLayerProvider(BaseBankProvider):
    """
    TrueLayer Data API integration.

    No retries are performed here; any non-2xx response, timeout or
    transport failure is raised as a typed AggregatorError and the caller
    decides whether it is fatal.
    """

    def __init__(
        self,
        provider_config: TrueLayerEnvironment,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize TrueLayer provider.

        Args:
            provider_config: Resolved live/sandbox environment
            timeout: Per-call timeout in seconds
            transport: Optional httpx transport (used to stub the API)
        """
        super().__init__(provider_config)
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def get_authorization_url(
        self,
        state: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None
    ) -> str:
        """
        Build the TrueLayer authorization URL.

        Args:
            state: CSRF protection token (persisted by the caller)
            redirect_uri: Pre-registered callback URL
            scopes: Requested scopes (DEFAULT_SCOPES when omitted)

        Returns:
            URL to redirect the user to
        """
        params = {
            'response_type': 'code',
            'client_id': self.config.client_id,
            'redirect_uri': redirect_uri,
            'scope': ' '.join(scopes or DEFAULT_SCOPES),
            'state': state,
            'providers': self.config.providers,
        }
        return f"{self.config.auth_url}/?{urlencode(params)}"

    async def _token_request(
        self,
        form: Dict[str, str],
        error_cls: Type[AggregatorError]
    ) -> Dict[str, Any]:
        """POST a form-encoded grant to the token endpoint."""
        data = {
            'client_id': self.config.client_id,
            'client_secret': self.config.client_secret,
            **form
        }
        grant_type = form['grant_type']

        try:
            async with self._client() as client:
                response = await client.post(
                    self.config.token_url,
                    data=data,
                    headers={'Accept': 'application/json'}
                )
        except httpx.HTTPError as e:
            logger.error(f"TrueLayer {grant_type} request failed: {e}")
            raise error_cls(f"TrueLayer {grant_type} request failed: {e}") from e

        if not response.is_success:
            logger.error(f"TrueLayer {grant_type} grant rejected: {response.status_code} {response.text}")
            raise error_cls(
                f"TrueLayer {grant_type} grant failed",
                status_code=response.status_code,
                body=response.text
            )

        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"TrueLayer {grant_type} response is not JSON: {response.text[:200]}")
            raise error_cls(
                f"TrueLayer {grant_type} response is not JSON",
                status_code=response.status_code,
                body=response.text
            ) from e
        if not isinstance(payload, dict) or not payload.get('access_token'):
            raise error_cls(
                f"TrueLayer {grant_type} response has no access_token",
                status_code=response.status_code,
                body=response.text
            )

        return {
            'access_token': payload['access_token'],
            'refresh_token': payload.get('refresh_token'),
            'token_type': payload.get('token_type', 'Bearer'),
            'expires_in': int(payload.get('expires_in', 3600)),
        }

    async def exchange_code_for_token(
        self,
        code: str,
        redirect_uri: str
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Authorization codes are single-use and short-lived; a rejected code
        surfaces as TokenExchangeError with is_invalid_grant set.

        Raises:
            TokenExchangeError: On any non-2xx response or transport failure
        """
        return await self._token_request(
            {
                'grant_type': 'authorization_code',
                'redirect_uri': redirect_uri,
                'code': code,
            },
            TokenExchangeError
        )

    async def refresh_access_token(
        self,
        refresh_token: str
    ) -> Dict[str, Any]:
        """
        Raises:
            TokenRefreshError: On any non-2xx response or transport failure
        """
        return await self._token_request(
            {
                'grant_type': 'refresh_token',
                'refresh_token': refresh_token,
            },
            TokenRefreshError
        )

    async def _get(
        self,
        access_token: str,
        path: str,
        params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """GET a Data API resource under a bearer token."""
        url = f"{self.config.api_base_url}{path}"
        try:
            async with self._client() as client:
                response = await client.get(
                    url,
                    params=params,
                    headers={
                        'Authorization': f'Bearer {access_token}',
                        'Accept': 'application/json'
                    }
                )
        except httpx.HTTPError as e:
            raise AggregatorError(f"GET {path} failed: {e}") from e

        if not response.is_success:
            raise AggregatorError(
                f"GET {path} failed",
                status_code=response.status_code,
                body=response.text
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ResponseValidationError(
                f"GET {path} returned a non-JSON body",
                status_code=response.status_code,
                body=response.text
            ) from e
        if not isinstance(data, dict):
            raise ResponseValidationError(
                f"GET {path} returned {type(data).__name__}, expected object",
                status_code=response.status_code,
                body=response.text
            )
        return data

    @staticmethod
    def _parse(model: Type[BaseModel], item: Any, what: str):
        try:
            return model.model_validate(item)
        except ValidationError as e:
            raise ResponseValidationError(f"Invalid {what} in TrueLayer response: {e}") from e

    async def fetch_accounts(self, access_token: str) -> List[TrueLayerAccount]:
        """
        Fetch and validate all accounts.

        Fail-fast: a single malformed entry fails the whole call so the
        engine never works from a partial account list.

        Raises:
            AggregatorError: On non-2xx response
            ResponseValidationError: If the results array is missing or any entry is malformed
        """
        data = await self._get(access_token, "/data/v1/accounts")
        results = data.get('results')
        if not isinstance(results, list):
            raise ResponseValidationError("TrueLayer accounts response has no results array")

        return [self._parse(TrueLayerAccount, item, "account") for item in results]

    async def fetch_balance(self, access_token: str, account_id: str) -> TrueLayerBalance:
        data = await self._get(access_token, f"/data/v1/accounts/{account_id}/balance")
        results = data.get('results')
        if not isinstance(results, list) or not results:
            raise ResponseValidationError(f"TrueLayer balance response for {account_id} has no results")

        return self._parse(TrueLayerBalance, results[0], "balance")

    async def fetch_transactions(
        self,
        access_token: str,
        account_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[TrueLayerTransaction]:
        """
        Fetch transactions for an account.

        An account with no activity may come back without a results array;
        that is an empty list, not a failure.
        """
        params = {}
        if from_date:
            params['from'] = from_date.isoformat()
        if to_date:
            params['to'] = to_date.isoformat()

        data = await self._get(
            access_token,
            f"/data/v1/accounts/{account_id}/transactions",
            params=params or None
        )

        results = data.get('results')
        if not isinstance(results, list):
            logger.info(f"No results array in transactions response for account {account_id}")
            return []

        return [self._parse(TrueLayerTransaction, item, "transaction") for item in results]

    def categorize_transaction(self, transaction: TrueLayerTransaction) -> str:
        """
        Map a TrueLayer transaction to an internal category.

        Uses TrueLayer's own category when present, otherwise scans the
        description and merchant name for known keywords.

        Example:
            >>> provider.categorize_transaction(tx)  # tx.transaction_category == "GROCERIES"
            'Groceries'
        """
        if transaction.transaction_category:
            return CATEGORY_MAP.get(transaction.transaction_category.upper(), DEFAULT_CATEGORY)

        description = transaction.description.lower()
        merchant_name = (transaction.merchant_name or '').lower()

        for category, description_keywords, merchant_keywords in KEYWORD_FALLBACK:
            if any(keyword in description for keyword in description_keywords):
                return category
            if any(keyword in merchant_name for keyword in merchant_keywords):
                return category

        return DEFAULT_CATEGORY
