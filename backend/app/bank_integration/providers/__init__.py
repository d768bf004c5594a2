"""
Bank Provider Implementations

Abstract base class and the TrueLayer implementation of the aggregator client.
"""

from .base import BaseBankProvider
from .truelayer import TrueLayerProvider, TrueLayerEnvironment

__all__ = ['BaseBankProvider', 'TrueLayerProvider', 'TrueLayerEnvironment']
