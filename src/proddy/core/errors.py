"""User-facing error text and actionable error payloads.

Error text shown to users, or returned to the HTTP layer, is passed through
``sanitize_error_message`` so provider responses that echo credentials never
leak past this boundary.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from proddy.audit.sanitize import redact_inline_secrets

MAX_ERROR_MESSAGE_LENGTH = 280

# Stable codes for the HTTP layer.
GENERATION_FAILED = "ASSISTANT_GENERATION_FAILED"
GENERATION_TIMEOUT = "ASSISTANT_GENERATION_TIMEOUT"
EXTERNAL_TOOLS_UNAVAILABLE = "EXTERNAL_TOOLS_UNAVAILABLE"


def sanitize_error_message(message: Any) -> str:
    """Redact inline credentials and cap the text at 280 characters."""
    text = str(message) if message is not None else ""
    if not text.strip():
        text = "Unknown error"
    return redact_inline_secrets(text)[:MAX_ERROR_MESSAGE_LENGTH]


@dataclass(frozen=True)
class ActionableError:
    message: str
    next_step: str
    code: str
    recoverable: bool = False
    fallback_response: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["success"] = False
        return payload


def build_actionable_error(
    message: Any,
    next_step: str,
    code: str,
    recoverable: bool = False,
    fallback_response: str | None = None,
) -> ActionableError:
    return ActionableError(
        message=sanitize_error_message(message),
        next_step=next_step,
        code=code,
        recoverable=recoverable,
        fallback_response=fallback_response,
    )


def build_recoverable_fallback(reason: str | None = None) -> str:
    base = (
        "I hit a temporary issue with external integrations, "
        "but I can still help with workspace tasks."
    )
    if not reason:
        return f"{base} Try again in a moment or reconnect the integration."
    return f"{base} Reason: {reason}. Try again in a moment or reconnect the integration."
