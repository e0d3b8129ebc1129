"""Provider API adapters for HerbSync."""

from herbsync.adapters.external_apis.base import (
    ResilientProviderClient,
    find_best_match,
    parse_retry_after,
)
from herbsync.adapters.external_apis.perenual_client import PerenualClient
from herbsync.adapters.external_apis.trefle_client import TrefleClient

__all__ = [
    # Shared resilient core
    "ResilientProviderClient",
    "find_best_match",
    "parse_retry_after",
    # Providers
    "PerenualClient",
    "TrefleClient",
]
