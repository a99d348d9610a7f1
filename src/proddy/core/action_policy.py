"""High-impact action policy for assistant tool calls.

A tool is *high impact* when its name carries a verb with irreversible or
externally visible side effects (sending, deleting, archiving, merging,
changing permissions). Anything matching is gated behind an explicit user
confirmation; everything else passes straight through.

The policy is a pure decision function. It never executes a tool and never
touches storage. Blocking execution and writing audit records belong to
the orchestrator.

Pattern tables are declarative so they can be tuned and tested in
isolation from control flow.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Iterable

import structlog

logger = structlog.get_logger()


class ConfirmationDecision(str, Enum):
    """What a user's reply says about a pending high-impact action."""
    CONFIRM = "confirm"
    CANCEL = "cancel"
    NONE = "none"


# ── Pattern tables ──────────────────────────────────────────────────
# Matched against the normalized tool name (separators → spaces, lowercase),
# so \b works on "send slack message" as well as "SEND_EMAIL".

HIGH_IMPACT_VERBS: tuple[str, ...] = (
    "send",
    "delete",
    "archive",
    "merge",
    "permission",
    "permissions",
    "grant",
    "revoke",
)

CANCELLATION_PHRASES: tuple[str, ...] = (
    r"cancel",
    r"stop",
    r"abort",
    r"never\s*mind",
    r"do\s*not\s*proceed",
    r"don'?t\s*proceed",
)

CONFIRMATION_PHRASES: tuple[str, ...] = (
    r"confirm",
    r"confirmed",
    r"i\s+confirm",
    r"approve",
    r"approved",
    r"proceed",
    r"go\s+ahead",
    r"yes[,\s]+proceed",
)

_HIGH_IMPACT_PATTERN = re.compile(
    r"\b(?:" + "|".join(HIGH_IMPACT_VERBS) + r")\b", re.IGNORECASE,
)

# Anchored at the start so "can you confirm the meeting time?" stays inert.
_CANCELLATION_PATTERN = re.compile(
    r"^\s*(?:" + "|".join(CANCELLATION_PHRASES) + r")\b", re.IGNORECASE,
)
_CONFIRMATION_PATTERN = re.compile(
    r"^\s*(?:" + "|".join(CONFIRMATION_PHRASES) + r")\b", re.IGNORECASE,
)

_SEPARATORS = re.compile(r"[_\-]+")

_CONFIRMATION_REQUIRED_TEMPLATE = (
    'This request includes a high-impact external action ({actions}). '
    'Reply with "confirm" to proceed, or "cancel" to stop. No changes were made.'
)
_CANCELLATION_TEMPLATE = (
    "Cancelled high-impact external action ({actions}). No changes were made."
)

_PENDING_PATTERN = re.compile(
    r"This request includes a high-impact external action \((?P<actions>[^)]*)\)\."
)


def normalize_tool_name(tool_name: str) -> str:
    """Convert ``SEND_EMAIL`` / ``send-slack-message`` to ``send email`` form."""
    return _SEPARATORS.sub(" ", tool_name).lower()


def is_high_impact_tool_name(tool_name: str) -> bool:
    """Return True when the tool name carries a high-impact verb."""
    if not tool_name:
        return False
    return bool(_HIGH_IMPACT_PATTERN.search(normalize_tool_name(tool_name)))


def _proposed_call_name(call: Any) -> str | None:
    """Extract the tool name from a ProposedCall or an OpenAI-style dict."""
    if isinstance(call, dict):
        fn = call.get("function")
        if isinstance(fn, dict) and fn.get("name"):
            return str(fn["name"])
        name = call.get("name")
        return str(name) if name else None
    name = getattr(call, "name", None)
    return str(name) if name else None


def get_high_impact_tool_names(proposed_calls: Iterable[Any]) -> list[str]:
    """Return the deduplicated high-impact tool names, in first-seen order."""
    seen: dict[str, None] = {}
    for call in proposed_calls:
        name = _proposed_call_name(call)
        if name and name not in seen and is_high_impact_tool_name(name):
            seen[name] = None
    return list(seen)


def parse_confirmation_decision(message: str | None) -> ConfirmationDecision:
    """Map a user's reply onto confirm / cancel / none.

    Cancellation is checked first so "stop, don't proceed" can never be
    read as a confirmation.
    """
    text = (message or "").strip()
    if not text:
        return ConfirmationDecision.NONE
    if _CANCELLATION_PATTERN.search(text):
        return ConfirmationDecision.CANCEL
    if _CONFIRMATION_PATTERN.search(text):
        return ConfirmationDecision.CONFIRM
    return ConfirmationDecision.NONE


def build_confirmation_required_message(tool_names: Iterable[str]) -> str:
    return _CONFIRMATION_REQUIRED_TEMPLATE.format(actions=", ".join(tool_names))


def build_cancellation_message(tool_names: Iterable[str]) -> str:
    return _CANCELLATION_TEMPLATE.format(actions=", ".join(tool_names))


def extract_pending_confirmation(text: str | None) -> list[str] | None:
    """Recover the action names from a confirmation-request message.

    Returns None when *text* is not a confirmation request.
    """
    if not text:
        return None
    match = _PENDING_PATTERN.search(text)
    if not match:
        return None
    return [name.strip() for name in match.group("actions").split(",") if name.strip()]
