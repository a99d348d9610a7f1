"""Store interface consumed by the assistant core.

The document database is an external collaborator. The core needs only
key lookups for connections and auth configs, plus append/read for the
audit log. No query or collection semantics are assumed beyond that.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

ACTIVE_STATUS = "ACTIVE"


@dataclass(frozen=True)
class ConnectionScope:
    """Whose connection to look up: a member's own, or the workspace's."""

    workspace_id: str
    member_id: str | None = None

    @property
    def is_member_scope(self) -> bool:
        return self.member_id is not None

    def workspace_scope(self) -> ConnectionScope:
        return ConnectionScope(self.workspace_id, None)


@dataclass(frozen=True)
class ConnectedAccount:
    """An OAuth connection to a third-party toolkit."""

    id: str
    workspace_id: str
    toolkit: str
    status: str
    auth_config_id: str | None
    member_id: str | None = None
    entity_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status.upper() == ACTIVE_STATUS


@dataclass(frozen=True)
class AuthConfig:
    """Provider-side auth configuration tied to a connected account."""

    id: str
    toolkit: str
    provider_auth_config_id: str | None


@dataclass(frozen=True)
class AuditEvent:
    """One immutable record of an external tool invocation attempt."""

    workspace_id: str
    tool_name: str
    outcome: str
    execution_path: str
    member_id: str | None = None
    user_id: str | None = None
    toolkit: str | None = None
    arguments_snapshot: Any = None
    error: str | None = None
    tool_call_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class AuditFilter:
    workspace_id: str
    member_id: str | None = None
    tool_call_id: str | None = None
    limit: int = 50


@runtime_checkable
class Store(Protocol):
    async def get_connected_account(
        self, scope: ConnectionScope, toolkit: str,
    ) -> ConnectedAccount | None: ...

    async def get_auth_config(self, auth_config_id: str) -> AuthConfig | None: ...

    async def write_audit_event(self, event: AuditEvent) -> None: ...

    async def read_audit_events(self, audit_filter: AuditFilter) -> list[AuditEvent]: ...
