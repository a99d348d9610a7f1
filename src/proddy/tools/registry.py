"""Unified tool registry.

Builds the tool set for one assistant turn from two sources:

- internal workspace tools (always available when requested), and
- external tools for each requested app, resolved through three steps:
  an ACTIVE connected account (member's own first, then the workspace's),
  the account's auth config, then the provider's tool list.

A failure in any step skips that app with a recorded reason; other apps
still resolve. Apps resolve concurrently.

When an external tool has the same name as an internal one, the external
tool wins and the displaced internal tool is logged.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from proddy.config import settings
from proddy.core.types import Identity
from proddy.integrations.apps import ExternalApp
from proddy.integrations.composio_client import (
    ExternalToolProvider,
    ExternalToolSpec,
    ProviderUnavailableError,
)
from proddy.routing.cache import TTLCache
from proddy.store.base import ConnectedAccount, ConnectionScope, Store
from proddy.tools.internal import WorkspaceQueryClient, build_internal_tools
from proddy.tools.models import (
    AppResolution,
    Provenance,
    SkipReason,
    ToolDescriptor,
    ToolOptions,
    ToolSchema,
    ToolSnapshot,
)

logger = structlog.get_logger()


def entity_id_for(account: ConnectedAccount, workspace_id: str, member_id: str | None) -> str:
    """Provider-side identity the tools run as."""
    if account.entity_id:
        return account.entity_id
    if member_id:
        return f"member_{member_id}"
    return f"workspace_{workspace_id}"


class UnifiedToolRegistry:
    """Assembles internal and external tools for a workspace member."""

    def __init__(
        self,
        store: Store,
        provider: ExternalToolProvider | None = None,
        query_client: WorkspaceQueryClient | None = None,
        connected_apps_ttl_s: float | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.query_client = query_client
        ttl = settings.connected_apps_ttl_s if connected_apps_ttl_s is None else connected_apps_ttl_s
        # (workspace, member, app) → (account or None,)
        self._accounts: TTLCache[tuple[ConnectedAccount | None]] = TTLCache(
            ttl_s=ttl, max_entries=5000, name="connected_accounts",
        )

    # ── Connections ─────────────────────────────────────────────────

    async def find_connection(
        self, workspace_id: str, member_id: str | None, app: ExternalApp,
    ) -> ConnectedAccount | None:
        """Member-scoped ACTIVE connection first, then the workspace's."""
        key = (workspace_id, member_id, app.value)
        cached = self._accounts.get(key)
        if cached is not None:
            return cached[0]

        scope = ConnectionScope(workspace_id, member_id)
        account: ConnectedAccount | None = None
        if scope.is_member_scope:
            account = await self.store.get_connected_account(scope, app.toolkit)
            if account is not None and not account.is_active:
                account = None
        if account is None:
            account = await self.store.get_connected_account(scope.workspace_scope(), app.toolkit)
            if account is not None and not account.is_active:
                account = None

        self._accounts.set(key, (account,))
        return account

    async def get_connected_apps(
        self, workspace_id: str, identity: Identity,
    ) -> list[ExternalApp]:
        accounts = await asyncio.gather(*(
            self.find_connection(workspace_id, identity.member_id, app) for app in ExternalApp
        ))
        return [app for app, account in zip(ExternalApp, accounts) if account is not None]

    def invalidate(self, workspace_id: str | None = None) -> None:
        """Forget memoized connections for one workspace (or all)."""
        if workspace_id is None:
            self._accounts.clear()
        else:
            self._accounts.discard_where(lambda key: key[0] == workspace_id)
        logger.debug("tool_registry_cache_invalidated", workspace_id=workspace_id)

    # ── Resolution ──────────────────────────────────────────────────

    def _external_descriptor(
        self, spec: ExternalToolSpec, entity_id: str, account: ConnectedAccount,
    ) -> ToolDescriptor:
        provider = self.provider
        assert provider is not None

        async def _invoke(arguments: dict[str, Any]) -> Any:
            return await provider.execute_tool(spec.name, arguments, entity_id, account.id)

        return ToolDescriptor(
            name=spec.name,
            provenance=Provenance.external(spec.app),
            invoke=_invoke,
            schema=ToolSchema(spec.description, spec.parameters),
        )

    async def resolve_app(
        self, workspace_id: str, identity: Identity, app: ExternalApp,
    ) -> tuple[AppResolution, list[ToolDescriptor]]:
        if self.provider is None:
            return AppResolution.skipped(app, SkipReason.PROVIDER_UNAVAILABLE, "no tool provider configured"), []

        account = await self.find_connection(workspace_id, identity.member_id, app)
        if account is None:
            return AppResolution.skipped(app, SkipReason.NO_ACTIVE_CONNECTION), []

        auth_config = (
            await self.store.get_auth_config(account.auth_config_id)
            if account.auth_config_id else None
        )
        if auth_config is None or not auth_config.provider_auth_config_id:
            return AppResolution.skipped(
                app, SkipReason.MISSING_AUTH_CONFIG, f"connected account {account.id}",
            ), []

        entity_id = entity_id_for(account, workspace_id, identity.member_id)
        try:
            specs = await self.provider.list_tools(app, entity_id, auth_config)
        except ProviderUnavailableError as e:
            return AppResolution.skipped(app, SkipReason.PROVIDER_UNAVAILABLE, str(e)[:200]), []
        except Exception as e:
            return AppResolution.skipped(app, SkipReason.PROVIDER_ERROR, str(e)[:200]), []

        if not specs:
            return AppResolution.skipped(app, SkipReason.PROVIDER_ERROR, "provider returned no tools"), []

        tools = [self._external_descriptor(spec, entity_id, account) for spec in specs]
        return AppResolution(app=app, tools=tuple(t.name for t in tools)), tools

    async def _resolve_app_safely(
        self, workspace_id: str, identity: Identity, app: ExternalApp,
    ) -> tuple[AppResolution, list[ToolDescriptor]]:
        try:
            return await self.resolve_app(workspace_id, identity, app)
        except Exception as e:
            logger.warning(
                "external_app_resolution_failed",
                workspace_id=workspace_id,
                app=app.value,
                error=str(e)[:200],
            )
            return AppResolution.skipped(app, SkipReason.PROVIDER_ERROR, str(e)[:200]), []

    async def get_all_tools(
        self,
        workspace_id: str,
        identity: Identity,
        options: ToolOptions | None = None,
    ) -> ToolSnapshot:
        options = options or ToolOptions()
        snapshot = ToolSnapshot()

        if options.include_internal:
            if self.query_client is None:
                logger.warning("internal_tools_unavailable", workspace_id=workspace_id)
            else:
                for tool in build_internal_tools(self.query_client, workspace_id, identity.user_id):
                    snapshot.tools[tool.name] = tool

        if options.include_external and options.requested_apps:
            apps = list(dict.fromkeys(options.requested_apps))
            results = await asyncio.gather(*(
                self._resolve_app_safely(workspace_id, identity, app) for app in apps
            ))
            for resolution, tools in results:
                snapshot.resolutions.append(resolution)
                if resolution.skip is not None:
                    logger.info(
                        "external_app_skipped",
                        workspace_id=workspace_id,
                        app=resolution.app.value,
                        reason=resolution.skip.value,
                        detail=resolution.detail,
                    )
                for tool in tools:
                    self._add_external(snapshot, tool)

        logger.info(
            "tools_assembled",
            workspace_id=workspace_id,
            internal=len(snapshot.internal_names),
            external=len(snapshot.external_names),
            connected_apps=[a.value for a in snapshot.connected_apps],
        )
        return snapshot

    @staticmethod
    def _add_external(snapshot: ToolSnapshot, tool: ToolDescriptor) -> None:
        existing = snapshot.tools.get(tool.name)
        if existing is not None:
            if existing.is_external:
                logger.warning(
                    "duplicate_external_tool_ignored",
                    tool=tool.name,
                    kept=str(existing.provenance),
                    dropped=str(tool.provenance),
                )
                return
            logger.warning(
                "tool_name_collision",
                tool=tool.name,
                kept=str(tool.provenance),
                displaced=str(existing.provenance),
            )
        snapshot.tools[tool.name] = tool


_registry: UnifiedToolRegistry | None = None


def get_tool_registry() -> UnifiedToolRegistry:
    """Get singleton UnifiedToolRegistry wired to the SQL store and live clients."""
    global _registry
    if _registry is None:
        from proddy.integrations.composio_client import get_composio_provider
        from proddy.integrations.convex_client import get_convex_client
        from proddy.store.sql import SqlStore

        _registry = UnifiedToolRegistry(
            store=SqlStore(),
            provider=get_composio_provider(),
            query_client=get_convex_client() if settings.convex_url else None,
        )
    return _registry
