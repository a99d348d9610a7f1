"""SQLAlchemy-backed Store.

Production runs on PostgreSQL via asyncpg; any async dialect works. The
unique (workspace_id, tool_call_id) index backs the one-record-per-call
guarantee across processes.
"""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proddy.db.models import AuthConfigRow, ConnectedAccountRow, ToolAuditEventRow
from proddy.db.session import db_session, get_session_factory
from proddy.store.base import (
    ACTIVE_STATUS,
    AuditEvent,
    AuditFilter,
    AuthConfig,
    ConnectedAccount,
    ConnectionScope,
)
from proddy.store.memory import DuplicateAuditEventError

logger = structlog.get_logger()


def _account_from_row(row: ConnectedAccountRow) -> ConnectedAccount:
    return ConnectedAccount(
        id=row.id,
        workspace_id=row.workspace_id,
        member_id=row.member_id,
        toolkit=row.toolkit,
        status=row.status,
        auth_config_id=row.auth_config_id,
        entity_id=row.entity_id,
    )


def _event_from_row(row: ToolAuditEventRow) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        workspace_id=row.workspace_id,
        member_id=row.member_id,
        user_id=row.user_id,
        tool_name=row.tool_name,
        toolkit=row.toolkit,
        arguments_snapshot=row.arguments_snapshot,
        outcome=row.outcome,
        error=row.error,
        execution_path=row.execution_path,
        tool_call_id=row.tool_call_id,
        created_at=row.created_at,
    )


class SqlStore:
    """Store over the connected_accounts, auth_configs and audit tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory or get_session_factory()

    async def get_connected_account(
        self, scope: ConnectionScope, toolkit: str,
    ) -> ConnectedAccount | None:
        stmt = select(ConnectedAccountRow).where(
            ConnectedAccountRow.workspace_id == scope.workspace_id,
            ConnectedAccountRow.toolkit == toolkit.lower(),
        )
        if scope.member_id is None:
            stmt = stmt.where(ConnectedAccountRow.member_id.is_(None))
        else:
            stmt = stmt.where(ConnectedAccountRow.member_id == scope.member_id)

        async with db_session(self._factory) as db:
            rows = (await db.execute(
                stmt.order_by(ConnectedAccountRow.created_at.desc())
            )).scalars().all()

        if not rows:
            return None
        active = [r for r in rows if r.status.upper() == ACTIVE_STATUS]
        return _account_from_row((active or list(rows))[0])

    async def get_auth_config(self, auth_config_id: str) -> AuthConfig | None:
        async with db_session(self._factory) as db:
            row = await db.get(AuthConfigRow, auth_config_id)
        if row is None:
            return None
        return AuthConfig(
            id=row.id,
            toolkit=row.toolkit,
            provider_auth_config_id=row.provider_auth_config_id,
        )

    async def write_audit_event(self, event: AuditEvent) -> None:
        row = ToolAuditEventRow(
            id=event.id,
            workspace_id=event.workspace_id,
            member_id=event.member_id,
            user_id=event.user_id,
            tool_name=event.tool_name,
            toolkit=event.toolkit,
            arguments_snapshot=event.arguments_snapshot,
            outcome=event.outcome,
            error=event.error,
            execution_path=event.execution_path,
            tool_call_id=event.tool_call_id,
            created_at=event.created_at,
        )
        try:
            async with db_session(self._factory) as db:
                db.add(row)
        except IntegrityError as e:
            if event.tool_call_id:
                raise DuplicateAuditEventError(event.tool_call_id) from e
            raise

    async def read_audit_events(self, audit_filter: AuditFilter) -> list[AuditEvent]:
        stmt = select(ToolAuditEventRow).where(
            ToolAuditEventRow.workspace_id == audit_filter.workspace_id,
        )
        if audit_filter.member_id is not None:
            stmt = stmt.where(ToolAuditEventRow.member_id == audit_filter.member_id)
        if audit_filter.tool_call_id is not None:
            stmt = stmt.where(ToolAuditEventRow.tool_call_id == audit_filter.tool_call_id)
        stmt = stmt.order_by(ToolAuditEventRow.created_at.desc()).limit(audit_filter.limit)

        async with db_session(self._factory) as db:
            rows = (await db.execute(stmt)).scalars().all()
        return [_event_from_row(r) for r in rows]

    # ── Seeding helpers (dev scripts and tests) ──────────────────────

    async def add_connected_account(self, account: ConnectedAccount) -> None:
        async with db_session(self._factory) as db:
            db.add(ConnectedAccountRow(
                id=account.id,
                workspace_id=account.workspace_id,
                member_id=account.member_id,
                toolkit=account.toolkit.lower(),
                status=account.status,
                auth_config_id=account.auth_config_id,
                entity_id=account.entity_id,
            ))

    async def add_auth_config(self, config: AuthConfig) -> None:
        async with db_session(self._factory) as db:
            db.add(AuthConfigRow(
                id=config.id,
                toolkit=config.toolkit.lower(),
                provider_auth_config_id=config.provider_auth_config_id,
            ))
