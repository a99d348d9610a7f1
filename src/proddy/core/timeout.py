"""Per-kind timeout budgets for generation and tool execution.

Budget table (defaults, overridable through settings)
------------
  LLM_CALL        90 s   (one generation round-trip)
  EXTERNAL_TOOL   30 s   (a provider tool execution)
  INTERNAL_TOOL   15 s   (a workspace query)

Usage
-----
    from proddy.core.timeout import with_timeout, ToolType

    result = await with_timeout(
        tool.invoke(args),
        tool_type=ToolType.EXTERNAL_TOOL,
        tool_name="GMAIL_SEND_EMAIL",
    )
    # raises ToolTimeoutError when the budget runs out
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, TypeVar

import structlog

from proddy.config import settings

logger = structlog.get_logger()

T = TypeVar("T")


class ToolType(Enum):
    LLM_CALL = "llm"
    EXTERNAL_TOOL = "external"
    INTERNAL_TOOL = "internal"


class ToolTimeoutError(asyncio.TimeoutError):
    """A budgeted call ran out of time. Recoverable at the call seam."""

    def __init__(self, tool_name: str, seconds: float) -> None:
        super().__init__(f"{tool_name} timed out after {seconds:.0f}s")
        self.tool_name = tool_name
        self.seconds = seconds


def budget_for(tool_type: ToolType) -> float:
    """Return the timeout budget in seconds for a given tool type."""
    if tool_type == ToolType.LLM_CALL:
        return settings.llm_timeout_s
    if tool_type == ToolType.EXTERNAL_TOOL:
        return settings.external_tool_timeout_s
    return settings.internal_tool_timeout_s


async def with_timeout(
    coro: Awaitable[T],
    tool_type: ToolType = ToolType.INTERNAL_TOOL,
    tool_name: str = "unknown",
    override_seconds: float | None = None,
) -> T:
    """Await *coro* within the budget for *tool_type*.

    Raises:
        ToolTimeoutError: the budget elapsed before *coro* finished.
    """
    seconds = override_seconds if override_seconds is not None else budget_for(tool_type)
    try:
        return await asyncio.wait_for(coro, timeout=seconds)
    except asyncio.TimeoutError as e:
        if isinstance(e, ToolTimeoutError):
            raise
        logger.warning(
            "tool_timeout",
            tool=tool_name,
            tool_type=tool_type.value,
            budget_s=seconds,
        )
        raise ToolTimeoutError(tool_name, seconds) from e


def timeout_message(error: ToolTimeoutError) -> str:
    return (
        f"Timed out after {error.seconds:.0f}s. "
        "The service may be slow. Please try again."
    )
