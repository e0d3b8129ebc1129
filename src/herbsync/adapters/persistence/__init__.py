"""Persistence adapters: in-memory and SQLAlchemy async stores."""

from herbsync.adapters.persistence.database import (
    Base,
    create_engine,
    create_session_factory,
    init_models,
)
from herbsync.adapters.persistence.memory import (
    InMemoryAlertLog,
    InMemoryCheckpointStore,
    InMemoryContentStore,
    InMemoryProviderStateStore,
    InMemoryRunLease,
    InMemoryRunLog,
)
from herbsync.adapters.persistence.sql_stores import (
    SqlAlertLog,
    SqlCheckpointStore,
    SqlContentStore,
    SqlProviderStateStore,
    SqlRunLease,
    SqlRunLog,
)

__all__ = [
    # In-memory
    "InMemoryAlertLog",
    "InMemoryCheckpointStore",
    "InMemoryContentStore",
    "InMemoryProviderStateStore",
    "InMemoryRunLease",
    "InMemoryRunLog",
    # SQLAlchemy
    "Base",
    "SqlAlertLog",
    "SqlCheckpointStore",
    "SqlContentStore",
    "SqlProviderStateStore",
    "SqlRunLease",
    "SqlRunLog",
    "create_engine",
    "create_session_factory",
    "init_models",
]
