"""In-memory Store for development and tests."""

from __future__ import annotations

import asyncio

import structlog

from proddy.store.base import (
    AuditEvent,
    AuditFilter,
    AuthConfig,
    ConnectedAccount,
    ConnectionScope,
)

logger = structlog.get_logger()


class DuplicateAuditEventError(Exception):
    """An audit event with the same tool_call_id already exists."""


class InMemoryStore:
    """Dict-backed Store. Audit events are append-only."""

    def __init__(self) -> None:
        self._accounts: list[ConnectedAccount] = []
        self._auth_configs: dict[str, AuthConfig] = {}
        self._audit_events: list[AuditEvent] = []
        self._lock = asyncio.Lock()

    # ── Seeding helpers ──────────────────────────────────────────────

    def add_connected_account(self, account: ConnectedAccount) -> None:
        self._accounts.append(account)

    def add_auth_config(self, config: AuthConfig) -> None:
        self._auth_configs[config.id] = config

    @property
    def audit_events(self) -> tuple[AuditEvent, ...]:
        return tuple(self._audit_events)

    # ── Store protocol ───────────────────────────────────────────────

    async def get_connected_account(
        self, scope: ConnectionScope, toolkit: str,
    ) -> ConnectedAccount | None:
        toolkit = toolkit.lower()
        matches = [
            a for a in self._accounts
            if a.workspace_id == scope.workspace_id
            and a.toolkit.lower() == toolkit
            and a.member_id == scope.member_id
        ]
        if not matches:
            return None
        active = [a for a in matches if a.is_active]
        # Newest record wins, mirroring "keep the most recent connection".
        return (active or matches)[-1]

    async def get_auth_config(self, auth_config_id: str) -> AuthConfig | None:
        return self._auth_configs.get(auth_config_id)

    async def write_audit_event(self, event: AuditEvent) -> None:
        async with self._lock:
            if event.tool_call_id and any(
                e.tool_call_id == event.tool_call_id
                and e.workspace_id == event.workspace_id
                for e in self._audit_events
            ):
                raise DuplicateAuditEventError(event.tool_call_id)
            self._audit_events.append(event)

    async def read_audit_events(self, audit_filter: AuditFilter) -> list[AuditEvent]:
        events = [
            e for e in reversed(self._audit_events)
            if e.workspace_id == audit_filter.workspace_id
            and (audit_filter.member_id is None or e.member_id == audit_filter.member_id)
            and (audit_filter.tool_call_id is None or e.tool_call_id == audit_filter.tool_call_id)
        ]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return events[: audit_filter.limit]
