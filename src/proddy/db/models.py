"""Database models for connections, auth configs and the tool audit log.

Design principles:
- Every table carries workspace_id for tenant isolation
- JSONB for the sanitized argument snapshot (plain JSON off PostgreSQL)
- The audit table is append-only: no updated_at, no soft delete
- At most one audit row per (workspace, tool_call_id)
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB as _JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class JSONPayload(TypeDecorator):
    """JSON column (JSONB on PostgreSQL) that tolerates datetime/Enum values."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(_JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return None
        return json.loads(json.dumps(value, default=self._json_default))

    @staticmethod
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return str(obj)


class Base(DeclarativeBase):
    """Base class with common utilities."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }

    def to_dict(self) -> dict[str, Any]:
        return {
            c.name: getattr(self, c.name)
            for c in self.__table__.columns
        }


def _new_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════════════════
# INTEGRATIONS
# ═══════════════════════════════════════════════════════════════════════════════

class ConnectedAccountRow(Base):
    """OAuth connection to a third-party toolkit, per member or per workspace."""

    __tablename__ = "connected_accounts"
    __table_args__ = (
        Index("ix_connected_accounts_scope", "workspace_id", "member_id", "toolkit"),
        Index("ix_connected_accounts_status", "workspace_id", "status"),
        {"comment": "Third-party app connections"},
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False)
    member_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True,
        comment="NULL for workspace-wide connections",
    )
    toolkit: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="gmail|github|slack|notion|clickup|linear",
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="INITIATED",
        comment="INITIATED|ACTIVE|FAILED|EXPIRED",
    )
    auth_config_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True,
        comment="Provider-side user id the connection belongs to",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AuthConfigRow(Base):
    """Provider auth configuration referenced by connected accounts."""

    __tablename__ = "auth_configs"
    __table_args__ = (
        Index("ix_auth_configs_toolkit", "toolkit"),
        {"comment": "Provider auth configurations"},
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    toolkit: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_auth_config_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True,
        comment="Auth config id on the tool provider's side",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# ═══════════════════════════════════════════════════════════════════════════════
# AUDIT
# ═══════════════════════════════════════════════════════════════════════════════

class ToolAuditEventRow(Base):
    """Immutable record of an external tool invocation attempt."""

    __tablename__ = "assistant_tool_audit_events"
    __table_args__ = (
        Index("ix_tool_audit_workspace_created", "workspace_id", "created_at"),
        Index("ix_tool_audit_workspace_member", "workspace_id", "member_id"),
        UniqueConstraint(
            "workspace_id", "tool_call_id", name="uq_tool_audit_workspace_call",
        ),
        {"comment": "Append-only audit trail of external tool calls"},
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    workspace_id: Mapped[str] = mapped_column(String(64), nullable=False)
    member_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    tool_name: Mapped[str] = mapped_column(String(200), nullable=False)
    toolkit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    arguments_snapshot: Mapped[Any] = mapped_column(
        JSONPayload, nullable=True,
        comment="Sanitized arguments; secrets replaced with [REDACTED]",
    )
    outcome: Mapped[str] = mapped_column(
        String(10), nullable=False, comment="success|error",
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_path: Mapped[str] = mapped_column(String(64), nullable=False)
    tool_call_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
