"""System prompt and conversation history preparation for the assistant."""

from __future__ import annotations

import re
from typing import Any, Iterable

from proddy.integrations.apps import APP_METADATA, ExternalApp

BASE_SYSTEM_PROMPT = """You are Proddy, a personal work assistant for team workspaces.

Your role:
- Help users manage their calendar, meetings, tasks, and workspace activities
- Provide summaries of channels and conversations
- Answer questions about workspace data
- Be concise, actionable, and friendly

Guidelines:
- Use available tools for real-time data when needed
- Format responses with clear headings and bullet points
- When showing dates/times, use readable formats
- If you don't have information, say so clearly
- Never invent data; only use tool outputs and user-provided context"""

NO_CONNECTED_APPS_POLICY = (
    "External tool policy: external actions are allowed but no connected apps "
    "are available. Explain the required connection step before continuing."
)
INTERNAL_ONLY_POLICY = (
    "External tool policy: do not use external integration tools for this "
    "request; respond using workspace/internal capabilities only."
)

NARRATION_INSTRUCTION = (
    "The tool calls you requested have finished. Using only their results, "
    "answer the user's request. Mention any call that failed and what the "
    "user can do about it."
)

_ALLOWED_ROLES = frozenset({"user", "assistant"})
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _connected_apps_policy(apps: list[ExternalApp]) -> str:
    lines = [
        "IMPORTANT: The user has connected the following external apps: "
        + ", ".join(app.human_name for app in apps) + ".",
        "",
        "Use the matching tools when the user asks about them:",
    ]
    for app in apps:
        _, capability = APP_METADATA[app]
        lines.append(f"- {app.human_name} ({capability}): tools prefixed {app.value}_")
    lines.append("")
    lines.append(
        "Never say you can't access these apps; you have active connections "
        "and tools to use them."
    )
    return "\n".join(lines)


def build_system_prompt(
    connected_apps: Iterable[ExternalApp] = (),
    external_tools_allowed: bool = False,
    workspace_context: str | None = None,
) -> str:
    """Compose the base prompt, the external tool policy and workspace context."""
    apps = list(dict.fromkeys(connected_apps))
    if external_tools_allowed and apps:
        policy = _connected_apps_policy(apps)
    elif external_tools_allowed:
        policy = NO_CONNECTED_APPS_POLICY
    else:
        policy = INTERNAL_ONLY_POLICY

    context = (workspace_context or "").strip()
    context_line = f"Workspace context: {context}" if context else ""

    return "\n\n".join(part for part in (BASE_SYSTEM_PROMPT, policy, context_line) if part)


def clean_message_text(text: str | None) -> str:
    """Strip control characters and surrounding whitespace."""
    return _CONTROL_CHARS.sub("", text or "").strip()


def sanitize_history(
    history: Iterable[Any] | None,
    max_messages: int | None = None,
) -> list[dict[str, str]]:
    """Keep user/assistant messages with text content, cleaned and trimmed.

    Tool messages, system messages and non-string content are dropped so a
    client can't smuggle instructions or fake tool results into the turn.
    """
    cleaned: list[dict[str, str]] = []
    for msg in history or ():
        if isinstance(msg, dict):
            role, content = msg.get("role"), msg.get("content")
        else:
            role, content = getattr(msg, "role", None), getattr(msg, "content", None)
        if role not in _ALLOWED_ROLES or not isinstance(content, str):
            continue
        text = clean_message_text(content)
        if text:
            cleaned.append({"role": role, "content": text})

    if max_messages is not None and max_messages >= 0:
        cleaned = cleaned[-max_messages:] if max_messages else []
    return cleaned
