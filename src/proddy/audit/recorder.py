"""Audit recorder for external tool invocations.

One immutable record per external tool attempt, written after the attempt
resolves. Arguments and errors are sanitized before they reach the store.

Recording is best effort: a failed write is logged and swallowed so the
user still gets their answer. The recorder also refuses to write a second
record for a tool_call_id it has already seen.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any

import structlog

from proddy.audit.sanitize import parse_and_sanitize_arguments, sanitize_string
from proddy.config import settings
from proddy.core.types import CallOutcome
from proddy.store.base import AuditEvent, AuditFilter, Store

logger = structlog.get_logger()

_MAX_TRACKED_CALL_IDS = 10_000


@dataclass
class AuditEventInput:
    """What the orchestrator knows about one external tool attempt."""

    workspace_id: str
    tool_name: str
    outcome: CallOutcome | str
    arguments: Any = None
    error: str | None = None
    toolkit: str | None = None
    member_id: str | None = None
    user_id: str | None = None
    tool_call_id: str | None = None
    execution_path: str | None = None


def normalize_outcome(outcome: CallOutcome | str) -> str:
    value = outcome.value if isinstance(outcome, CallOutcome) else str(outcome)
    return CallOutcome.SUCCESS.value if value.lower() == "success" else CallOutcome.ERROR.value


class AuditRecorder:
    """Writes sanitized audit events through a Store."""

    def __init__(self, store: Store, max_tracked_call_ids: int = _MAX_TRACKED_CALL_IDS) -> None:
        self.store = store
        self._max_tracked = max_tracked_call_ids
        self._seen_call_ids: OrderedDict[tuple[str, str], None] = OrderedDict()

    def _claim_call_id(self, workspace_id: str, tool_call_id: str | None) -> bool:
        """Return False if this call id was already recorded."""
        if not tool_call_id:
            return True
        key = (workspace_id, tool_call_id)
        if key in self._seen_call_ids:
            return False
        self._seen_call_ids[key] = None
        while len(self._seen_call_ids) > self._max_tracked:
            self._seen_call_ids.popitem(last=False)
        return True

    def build_event(self, event: AuditEventInput) -> AuditEvent:
        return AuditEvent(
            workspace_id=event.workspace_id,
            member_id=event.member_id,
            user_id=event.user_id,
            tool_name=event.tool_name,
            toolkit=event.toolkit.upper() if event.toolkit else None,
            arguments_snapshot=parse_and_sanitize_arguments(event.arguments),
            outcome=normalize_outcome(event.outcome),
            error=sanitize_string(event.error) if event.error else None,
            execution_path=event.execution_path or settings.execution_path,
            tool_call_id=event.tool_call_id,
        )

    async def record(self, event: AuditEventInput) -> None:
        if not self._claim_call_id(event.workspace_id, event.tool_call_id):
            logger.warning(
                "audit_duplicate_skipped",
                workspace_id=event.workspace_id,
                tool_name=event.tool_name,
                tool_call_id=event.tool_call_id,
            )
            return

        try:
            record = self.build_event(event)
            await self.store.write_audit_event(record)
        except Exception as e:
            logger.error(
                "audit_write_failed",
                workspace_id=event.workspace_id,
                tool_name=event.tool_name,
                tool_call_id=event.tool_call_id,
                error=sanitize_string(str(e), 300),
            )
            return

        logger.info(
            "audit_event_recorded",
            workspace_id=record.workspace_id,
            tool_name=record.tool_name,
            toolkit=record.toolkit,
            outcome=record.outcome,
        )

    async def list_events(
        self,
        workspace_id: str,
        member_id: str | None = None,
        limit: int = 50,
    ) -> list[AuditEvent]:
        """Newest-first audit events for a workspace (optionally one member)."""
        return await self.store.read_audit_events(
            AuditFilter(workspace_id=workspace_id, member_id=member_id, limit=limit)
        )
