"""Application ports (interfaces) for HerbSync.

Ports define contracts that adapters must implement.
Following hexagonal architecture (Ports & Adapters pattern).
"""

from herbsync.application.ports.notifications import NotifierPort
from herbsync.application.ports.provider_client import ProviderClientPort
from herbsync.application.ports.storage import (
    AlertLogPort,
    CheckpointStorePort,
    ContentStorePort,
    ProviderStateStorePort,
    RunLeasePort,
    RunLogPort,
)

__all__ = [
    # Provider API clients
    "ProviderClientPort",
    # Durable state
    "AlertLogPort",
    "CheckpointStorePort",
    "ContentStorePort",
    "ProviderStateStorePort",
    "RunLeasePort",
    "RunLogPort",
    # Delivery
    "NotifierPort",
]
