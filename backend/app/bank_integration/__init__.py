"""
Bank Integration Module

Open Banking sync and reconciliation: aggregator client, connection lifecycle,
transaction categorization and derived financial metrics.
"""

from .service import BankIntegrationService, get_provider
from .connections import ConnectionManager
from .categorization import TransactionCategorizer, get_categorizer
from .encryption import TokenEncryption

__all__ = [
    'BankIntegrationService', 'get_provider', 'ConnectionManager',
    'TransactionCategorizer', 'get_categorizer', 'TokenEncryption'
]
