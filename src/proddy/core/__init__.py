"""Proddy core: orchestrator, confirmation policy, LLM client and prompts."""

from proddy.core.action_policy import (
    ConfirmationDecision,
    build_cancellation_message,
    build_confirmation_required_message,
    get_high_impact_tool_names,
    is_high_impact_tool_name,
    parse_confirmation_decision,
)
from proddy.core.types import Identity, ProposedCall, TurnResult

__all__ = [
    "ConfirmationDecision",
    "Identity",
    "ProposedCall",
    "TurnResult",
    "build_cancellation_message",
    "build_confirmation_required_message",
    "get_high_impact_tool_names",
    "is_high_impact_tool_name",
    "parse_confirmation_decision",
]
