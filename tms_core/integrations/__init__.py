"""
External provider adapters.

- DATAdapter: load board postings, truck search, market rates
- MacroPointAdapter: tracking orders and location webhooks
- EPayAdapter: carrier payment settlement
- QuickBooksAdapter: accounting sync

Every public operation returns an IntegrationResult and never raises.
"""

from .base import CredentialCache, Credentials, OAuthAdapter, ProviderAdapter, first_present
from .dat import DATAdapter
from .epay import EPayAdapter
from .macropoint import MacroPointAdapter
from .quickbooks import QuickBooksAdapter

__all__ = [
    "CredentialCache",
    "Credentials",
    "DATAdapter",
    "EPayAdapter",
    "MacroPointAdapter",
    "OAuthAdapter",
    "ProviderAdapter",
    "QuickBooksAdapter",
    "first_present",
]
