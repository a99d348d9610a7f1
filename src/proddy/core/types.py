"""Shared types for the assistant core.

Kept in a separate file to avoid circular imports between the
orchestrator, the registry and the LLM client.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

METADATA_SCHEMA_VERSION = "v1"


@dataclass(frozen=True)
class Identity:
    """The acting identity for one turn."""

    user_id: str | None = None
    member_id: str | None = None


@dataclass(frozen=True)
class ProposedCall:
    """A tool call proposed by the generation step.

    ``arguments`` is the decoded argument object; ``raw_arguments`` keeps
    the text the model produced so malformed JSON can still be audited.
    """

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None
    raw_arguments: str | None = None
    parse_error: str | None = None


@dataclass
class Generation:
    """Output of one text/tool generation step."""

    text: str
    proposed_calls: list[ProposedCall] = field(default_factory=list)
    usage: dict[str, int] | None = None


class BlockedReason(str, Enum):
    CONFIRMATION_REQUIRED = "confirmation_required"
    CANCELLED = "cancelled"


class CallOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ToolCallResult:
    """Result of executing one proposed call."""

    call_id: str | None
    tool_name: str
    outcome: CallOutcome
    result: Any = None
    error: str | None = None
    external: bool = False

    def to_llm_content(self) -> dict[str, Any]:
        if self.outcome == CallOutcome.SUCCESS:
            return {"status": "success", "result": self.result}
        return {"status": "error", "error": self.error}


@dataclass
class ResponseMetadata:
    """Structured metadata returned alongside the assistant's text."""

    execution_path: str
    intent: dict[str, Any]
    tools: dict[str, Any]
    unavailable_apps: list[str] = field(default_factory=list)
    fallback: dict[str, Any] = field(
        default_factory=lambda: {"attempted": False, "reason": None}
    )
    error: dict[str, Any] | None = None
    schema_version: str = METADATA_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TurnResult:
    """What ``handle_turn`` hands back to the HTTP/RPC layer."""

    response_text: str
    blocked: bool = False
    blocked_reason: BlockedReason | None = None
    metadata: ResponseMetadata | None = None
    tool_results: list[ToolCallResult] = field(default_factory=list)
