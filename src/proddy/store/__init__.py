"""Storage interface and implementations (in-memory, SQLAlchemy)."""

from proddy.store.base import (
    AuditEvent,
    AuditFilter,
    AuthConfig,
    ConnectedAccount,
    ConnectionScope,
    Store,
)
from proddy.store.memory import DuplicateAuditEventError, InMemoryStore

__all__ = [
    "AuditEvent",
    "AuditFilter",
    "AuthConfig",
    "ConnectedAccount",
    "ConnectionScope",
    "DuplicateAuditEventError",
    "InMemoryStore",
    "Store",
]
