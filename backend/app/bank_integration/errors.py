"""
Bank Integration Errors

Typed failures raised by the aggregator client and the reconciliation engine.
Routes translate these into HTTP responses.
"""

from typing import Optional


class BankIntegrationError(Exception):
    """Base class for all bank integration failures."""
    pass


class ConfigurationError(BankIntegrationError):
    """Raised when aggregator credentials are missing. Not recoverable at request time."""
    pass


class AggregatorError(BankIntegrationError):
    """
    Raised for any failed call to the aggregator.

    Carries the HTTP status (None for timeouts and transport failures) and the
    raw response body so callers can log or inspect it.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self):
        if self.status_code is not None:
            return f"{self.args[0]} (status {self.status_code})"
        return self.args[0]


class TokenExchangeError(AggregatorError):
    """Raised when an authorization code cannot be exchanged for tokens."""

    @property
    def is_invalid_grant(self) -> bool:
        """True when the aggregator rejected the code itself (used or expired)."""
        return bool(self.body) and "invalid_grant" in self.body


class TokenRefreshError(AggregatorError):
    """Raised when a refresh_token grant fails."""
    pass


class ResponseValidationError(AggregatorError):
    """Raised when an aggregator payload does not match the expected shape."""
    pass


class AuthorizationCodeReusedError(BankIntegrationError):
    """Raised when the same authorization code is submitted twice."""
    pass


class InvalidOAuthStateError(BankIntegrationError):
    """Raised when a callback state is unknown, expired or already used."""
    pass


class NotFoundError(BankIntegrationError):
    """Raised when a connection (or other entity) does not exist for the caller."""
    pass
