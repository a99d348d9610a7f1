"""Tool descriptors shared by the registry, the LLM client and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from proddy.integrations.apps import ExternalApp

ToolInvoker = Callable[[dict[str, Any]], Awaitable[Any]]


class ProvenanceKind(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(frozen=True)
class Provenance:
    """Where a tool comes from: the workspace itself, or a connected app."""

    kind: ProvenanceKind
    app: ExternalApp | None = None

    @classmethod
    def internal(cls) -> Provenance:
        return cls(ProvenanceKind.INTERNAL)

    @classmethod
    def external(cls, app: ExternalApp) -> Provenance:
        return cls(ProvenanceKind.EXTERNAL, app)

    @property
    def is_external(self) -> bool:
        return self.kind == ProvenanceKind.EXTERNAL

    def __str__(self) -> str:
        return f"external:{self.app.value}" if self.app else self.kind.value


@dataclass(frozen=True)
class ToolSchema:
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable tool. ``invoke`` takes the decoded argument object."""

    name: str
    provenance: Provenance
    invoke: ToolInvoker
    schema: ToolSchema

    @property
    def is_external(self) -> bool:
        return self.provenance.is_external

    @property
    def app(self) -> ExternalApp | None:
        return self.provenance.app

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.schema.description,
                "parameters": self.schema.parameters,
            },
        }


class SkipReason(str, Enum):
    """Why an app contributed no tools this turn."""

    NO_ACTIVE_CONNECTION = "no_active_connection"
    MISSING_AUTH_CONFIG = "missing_auth_config"
    PROVIDER_ERROR = "provider_error"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


@dataclass(frozen=True)
class AppResolution:
    """Outcome of resolving one app: its tools, or why it was skipped."""

    app: ExternalApp
    tools: tuple[str, ...] = ()
    skip: SkipReason | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.skip is None and bool(self.tools)

    @classmethod
    def skipped(cls, app: ExternalApp, reason: SkipReason, detail: str | None = None) -> AppResolution:
        return cls(app=app, skip=reason, detail=detail)


@dataclass(frozen=True)
class ToolOptions:
    include_internal: bool = True
    include_external: bool = False
    requested_apps: tuple[ExternalApp, ...] = ()


@dataclass
class ToolSnapshot:
    """The tool set for one turn."""

    tools: dict[str, ToolDescriptor] = field(default_factory=dict)
    resolutions: list[AppResolution] = field(default_factory=list)

    def get(self, name: str) -> ToolDescriptor | None:
        return self.tools.get(name)

    def descriptors(self) -> list[ToolDescriptor]:
        return list(self.tools.values())

    @property
    def internal_names(self) -> list[str]:
        return [n for n, t in self.tools.items() if not t.is_external]

    @property
    def external_names(self) -> list[str]:
        return [n for n, t in self.tools.items() if t.is_external]

    @property
    def connected_apps(self) -> list[ExternalApp]:
        return [r.app for r in self.resolutions if r.ok]

    @property
    def unavailable_apps(self) -> list[ExternalApp]:
        return [r.app for r in self.resolutions if not r.ok]
