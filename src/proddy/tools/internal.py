"""Internal workspace tools.

Each tool is a thin binding from an LLM-callable name to a named function
on the workspace document store. The acting workspace and user are injected
as context parameters; the model never supplies them.

Invocation never raises. Failures come back as
``{"success": False, "error": "..."}`` so the model can tell the user what
went wrong.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from proddy.core.errors import sanitize_error_message
from proddy.tools.models import Provenance, ToolDescriptor, ToolSchema

logger = structlog.get_logger()


class WorkspaceQueryClient(Protocol):
    async def query(self, path: str, args: dict[str, Any]) -> Any: ...

    async def action(self, path: str, args: dict[str, Any]) -> Any: ...


@dataclass(frozen=True)
class InternalToolDef:
    name: str
    description: str
    path: str
    properties: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    needs_workspace_id: bool = True
    needs_user_id: bool = True
    is_action: bool = False

    def parameters(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "object", "properties": dict(self.properties)}
        if self.required:
            schema["required"] = list(self.required)
        return schema


_NO_ARGS_TOOLS: tuple[tuple[str, str], ...] = (
    ("getMyCalendarToday",
     "Get the user's calendar events for today. Returns all meetings and events "
     "scheduled for the current day."),
    ("getMyCalendarTomorrow",
     "Get the user's calendar events for tomorrow. Returns all meetings and events "
     "scheduled for the next day."),
    ("getMyCalendarThisWeek",
     "Get the user's calendar events for this week (the next 7 days starting from "
     "today). Use when the user asks about 'this week' or 'upcoming week'."),
    ("getMyCalendarNextWeek",
     "Get the user's calendar events for next week (7-14 days from now)."),
    ("getMyTasksToday",
     "Get incomplete tasks assigned to the user that are due today."),
    ("getMyTasksTomorrow",
     "Get incomplete tasks assigned to the user that are due tomorrow."),
    ("getMyTasksThisWeek",
     "Get tasks assigned to the user that are due in the next 7 days."),
    ("getWorkspaceOverview",
     "Get high-level overview statistics for the workspace: counts of channels, "
     "members, tasks, and upcoming events."),
    ("getMyCards",
     "Get all Kanban cards assigned to the user across all channels, with their "
     "board and list location."),
)

INTERNAL_TOOL_DEFS: tuple[InternalToolDef, ...] = (
    *(InternalToolDef(name, desc, f"assistantTools:{name}") for name, desc in _NO_ARGS_TOOLS),
    InternalToolDef(
        "getMyAllTasks",
        "Get all tasks assigned to the user. Use for general task queries like "
        "'what are my tasks' or 'show all my work'.",
        "assistantTools:getMyAllTasks",
        properties={
            "includeCompleted": {
                "type": "boolean",
                "description": "Whether to include completed tasks (default: false)",
            },
        },
    ),
    InternalToolDef(
        "searchChannels",
        "Search for channels in the workspace by name. Returns matching channels "
        "with their IDs.",
        "assistantTools:searchChannels",
        properties={
            "query": {
                "type": "string",
                "description": "Channel name without the # symbol. Empty for all channels.",
            },
        },
        needs_user_id=False,
    ),
    InternalToolDef(
        "getChannelSummary",
        "Summarize recent messages in a channel. Needs a channel ID: if the user "
        "gives a name like '#general', call searchChannels first.",
        "assistantTools:getChannelSummary",
        properties={
            "channelId": {"type": "string", "description": "Channel ID from searchChannels"},
            "limit": {"type": "number", "description": "Max messages to analyze (default: 40)"},
        },
        required=("channelId",),
        needs_user_id=False,
        is_action=True,
    ),
    InternalToolDef(
        "semanticSearch",
        "Semantic search across workspace messages, notes, tasks and cards. Use "
        "for general questions that don't fit other tools.",
        "assistantTools:semanticSearch",
        properties={
            "query": {"type": "string", "description": "Search query"},
            "limit": {"type": "number", "description": "Max results to return (default: 10)"},
        },
        required=("query",),
        needs_user_id=False,
        is_action=True,
    ),
)


def _error(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


async def invoke_internal_tool(
    definition: InternalToolDef,
    client: WorkspaceQueryClient,
    workspace_id: str,
    user_id: str | None,
    arguments: dict[str, Any],
) -> Any:
    """Run one internal tool with context injected. Never raises."""
    args = {k: v for k, v in (arguments or {}).items() if k in definition.properties and v is not None}

    missing = [r for r in definition.required if args.get(r) in (None, "")]
    if missing:
        return _error(f"Missing required argument(s): {', '.join(missing)}")

    if definition.needs_workspace_id:
        args["workspaceId"] = workspace_id
    if definition.needs_user_id:
        if not user_id:
            return _error("This tool needs a signed-in user.")
        args["userId"] = user_id

    try:
        call = client.action if definition.is_action else client.query
        return await call(definition.path, args)
    except Exception as e:
        logger.warning(
            "internal_tool_failed",
            tool=definition.name,
            workspace_id=workspace_id,
            error=str(e)[:200],
        )
        return _error(sanitize_error_message(e))


def build_internal_tools(
    client: WorkspaceQueryClient,
    workspace_id: str,
    user_id: str | None,
    definitions: tuple[InternalToolDef, ...] = INTERNAL_TOOL_DEFS,
) -> list[ToolDescriptor]:
    tools: list[ToolDescriptor] = []
    for definition in definitions:

        async def _invoke(arguments: dict[str, Any], _def: InternalToolDef = definition) -> Any:
            return await invoke_internal_tool(_def, client, workspace_id, user_id, arguments)

        tools.append(ToolDescriptor(
            name=definition.name,
            provenance=Provenance.internal(),
            invoke=_invoke,
            schema=ToolSchema(definition.description, definition.parameters()),
        ))
    return tools
