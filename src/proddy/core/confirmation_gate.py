"""Confirmation Gate: decides whether a turn's proposed tool calls may run.

Sits between the generation step and execution. The decision is made for
the whole batch before anything executes:

1. No high-impact call proposed → execute.
2. High-impact calls and the user's message cancels → cancelled.
3. High-impact calls and the user's message confirms, and the previous
   assistant turn asked to confirm exactly these actions → execute.
4. Anything else → ask for confirmation.

Rule 3's binding to the previous turn can be switched off
(``require_prior_request=False``) to accept any confirmation phrase.

The gate is pure: it reads the proposal, the message and the history, and
returns a decision. It does not execute, store or audit anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

import structlog

from proddy.core.action_policy import (
    ConfirmationDecision,
    build_cancellation_message,
    build_confirmation_required_message,
    extract_pending_confirmation,
    get_high_impact_tool_names,
    parse_confirmation_decision,
)

logger = structlog.get_logger()


class GateAction(str, Enum):
    EXECUTE = "execute"
    CONFIRMATION_REQUIRED = "confirmation_required"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    high_impact_names: list[str] = field(default_factory=list)
    message: str | None = None

    @property
    def blocked(self) -> bool:
        return self.action != GateAction.EXECUTE


def last_assistant_message(history: Iterable[Any]) -> str | None:
    """Return the content of the most recent assistant message, if any."""
    last: str | None = None
    for msg in history or ():
        role = msg.get("role") if isinstance(msg, dict) else getattr(msg, "role", None)
        content = msg.get("content") if isinstance(msg, dict) else getattr(msg, "content", None)
        if role == "assistant" and isinstance(content, str):
            last = content
    return last


def evaluate_gate(
    proposed_calls: Iterable[Any],
    user_message: str,
    history: Iterable[Any] = (),
    *,
    require_prior_request: bool = True,
) -> GateDecision:
    """Decide whether the proposed batch may execute."""
    high_impact = get_high_impact_tool_names(proposed_calls)
    if not high_impact:
        return GateDecision(GateAction.EXECUTE)

    decision = parse_confirmation_decision(user_message)

    if decision == ConfirmationDecision.CANCEL:
        logger.info("confirmation_gate_cancelled", actions=high_impact)
        return GateDecision(
            GateAction.CANCELLED,
            high_impact,
            build_cancellation_message(high_impact),
        )

    if decision == ConfirmationDecision.CONFIRM:
        if not require_prior_request:
            logger.info("confirmation_gate_confirmed", actions=high_impact)
            return GateDecision(GateAction.EXECUTE, high_impact)

        pending = extract_pending_confirmation(last_assistant_message(history))
        if pending is not None and set(high_impact) <= set(pending):
            logger.info(
                "confirmation_gate_confirmed",
                actions=high_impact,
                pending=pending,
            )
            return GateDecision(GateAction.EXECUTE, high_impact)

        logger.info(
            "confirmation_gate_confirm_without_matching_request",
            actions=high_impact,
            pending=pending,
        )

    logger.info("confirmation_gate_action_gated", actions=high_impact)
    return GateDecision(
        GateAction.CONFIRMATION_REQUIRED,
        high_impact,
        build_confirmation_required_message(high_impact),
    )
