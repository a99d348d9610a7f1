"""Assistant core schema: connected accounts, auth configs, tool audit events.

Revision ID: b7e41c2d9a10
Revises:
Create Date: 2026-10-17 09:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision: str = "b7e41c2d9a10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Auth configs
    op.create_table(
        "auth_configs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("toolkit", sa.String(50), nullable=False),
        sa.Column("provider_auth_config_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        comment="Provider auth configurations",
    )
    op.create_index("ix_auth_configs_toolkit", "auth_configs", ["toolkit"])

    # Connected accounts
    op.create_table(
        "connected_accounts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("member_id", sa.String(64), nullable=True),
        sa.Column("toolkit", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="INITIATED"),
        sa.Column("auth_config_id", sa.String(64), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        comment="Third-party app connections",
    )
    op.create_index(
        "ix_connected_accounts_scope", "connected_accounts",
        ["workspace_id", "member_id", "toolkit"],
    )
    op.create_index(
        "ix_connected_accounts_status", "connected_accounts", ["workspace_id", "status"],
    )

    # Tool audit events (append-only)
    op.create_table(
        "assistant_tool_audit_events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("member_id", sa.String(64), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("tool_name", sa.String(200), nullable=False),
        sa.Column("toolkit", sa.String(50), nullable=True),
        sa.Column("arguments_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("outcome", sa.String(10), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("execution_path", sa.String(64), nullable=False),
        sa.Column("tool_call_id", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("workspace_id", "tool_call_id", name="uq_tool_audit_workspace_call"),
        sa.CheckConstraint("outcome IN ('success', 'error')", name="ck_tool_audit_outcome"),
        comment="Append-only audit trail of external tool calls",
    )
    op.create_index(
        "ix_tool_audit_workspace_created", "assistant_tool_audit_events",
        ["workspace_id", "created_at"],
    )
    op.create_index(
        "ix_tool_audit_workspace_member", "assistant_tool_audit_events",
        ["workspace_id", "member_id"],
    )


def downgrade() -> None:
    op.drop_table("assistant_tool_audit_events")
    op.drop_table("connected_accounts")
    op.drop_table("auth_configs")
