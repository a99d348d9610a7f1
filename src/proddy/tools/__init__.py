"""Tool descriptors and the unified registry that assembles them per turn."""

from proddy.tools.models import (
    AppResolution,
    Provenance,
    SkipReason,
    ToolDescriptor,
    ToolOptions,
    ToolSnapshot,
)

__all__ = [
    "AppResolution",
    "Provenance",
    "SkipReason",
    "ToolDescriptor",
    "ToolOptions",
    "ToolSnapshot",
]
