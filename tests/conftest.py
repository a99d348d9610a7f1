"""Pytest configuration and shared fixtures.

Run with:
    pytest tests/                          # Run all tests
    pytest tests/test_orchestrator.py -v   # Run specific test file

Everything here runs offline: the LLM, the tool provider and the workspace
query API are replaced by in-process fakes, and storage is InMemoryStore
(or SQLite through aiosqlite for the SQL store tests).
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from proddy.config import LLMPreset, LLMPresets
from proddy.core.types import Generation, Identity, ProposedCall
from proddy.infra.circuit_breaker import composio_breaker, convex_breaker, llm_breaker
from proddy.integrations.apps import ExternalApp
from proddy.integrations.composio_client import ExternalToolSpec
from proddy.store.base import AuthConfig, ConnectedAccount
from proddy.store.memory import InMemoryStore
from proddy.tools.models import ToolDescriptor

WORKSPACE_ID = "ws_1"
MEMBER_ID = "member_1"
USER_ID = "user_1"


# ── Fakes ────────────────────────────────────────────────────────────


class FakeGenerator:
    """Scripted generator: returns queued Generations in order.

    Queue an Exception to make that generation fail.
    """

    def __init__(self, *responses: Generation | Exception) -> None:
        self.responses: list[Generation | Exception] = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[ToolDescriptor] | None = None,
        preset: LLMPreset = LLMPresets.ASSISTANT,
    ) -> Generation:
        self.calls.append({
            "system_prompt": system_prompt,
            "messages": messages,
            "tools": [t.name for t in tools or ()],
            "preset": preset,
        })
        if not self.responses:
            return Generation(text="")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class FakeProvider:
    """ExternalToolProvider with canned tool lists and scripted execution."""

    def __init__(self, tools: dict[ExternalApp, list[str]] | None = None) -> None:
        self.tools = tools or {}
        self.list_calls: list[tuple[ExternalApp, str]] = []
        self.executed: list[tuple[str, dict[str, Any], str, str | None]] = []
        self.list_errors: dict[ExternalApp, Exception] = {}
        self.execute_errors: dict[str, Exception] = {}
        self.results: dict[str, Any] = {}

    async def list_tools(self, app, entity_id, auth_config):
        self.list_calls.append((app, entity_id))
        if app in self.list_errors:
            raise self.list_errors[app]
        return [
            ExternalToolSpec(name=name, description=f"{name} tool", app=app)
            for name in self.tools.get(app, [])
        ]

    async def execute_tool(self, name, arguments, entity_id, connected_account_id=None):
        self.executed.append((name, arguments, entity_id, connected_account_id))
        if name in self.execute_errors:
            raise self.execute_errors[name]
        return self.results.get(name, {"ok": True})


class FakeQueryClient:
    """WorkspaceQueryClient that records calls and returns canned values."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self.values = values or {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    async def _respond(self, kind: str, path: str, args: dict[str, Any]) -> Any:
        self.calls.append((kind, path, args))
        if self.fail_with is not None:
            raise self.fail_with
        return self.values.get(path, [])

    async def query(self, path, args):
        return await self._respond("query", path, args)

    async def action(self, path, args):
        return await self._respond("action", path, args)


# ── Builders ─────────────────────────────────────────────────────────


def tool_call(name: str, arguments: dict[str, Any] | None = None, call_id: str | None = None) -> ProposedCall:
    args = arguments or {}
    return ProposedCall(
        name=name,
        arguments=args,
        call_id=call_id or f"call_{name}",
        raw_arguments=json.dumps(args),
    )


def connect(
    store: InMemoryStore,
    app: ExternalApp,
    *,
    member_id: str | None = None,
    status: str = "ACTIVE",
    provider_auth_config_id: str | None = "ac_provider",
    account_id: str | None = None,
    entity_id: str | None = None,
) -> ConnectedAccount:
    """Seed a connected account plus its auth config."""
    suffix = member_id or "ws"
    auth_id = f"auth_{app.toolkit}_{suffix}"
    store.add_auth_config(AuthConfig(auth_id, app.toolkit, provider_auth_config_id))
    account = ConnectedAccount(
        id=account_id or f"ca_{app.toolkit}_{suffix}",
        workspace_id=WORKSPACE_ID,
        member_id=member_id,
        toolkit=app.toolkit,
        status=status,
        auth_config_id=auth_id,
        entity_id=entity_id,
    )
    store.add_connected_account(account)
    return account


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def reset_breakers():
    """Module-level breakers carry state between tests otherwise."""
    for breaker in (llm_breaker, composio_breaker, convex_breaker):
        breaker.reset()
    yield
    for breaker in (llm_breaker, composio_breaker, convex_breaker):
        breaker.reset()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id=USER_ID, member_id=MEMBER_ID)


@pytest.fixture
def query_client() -> FakeQueryClient:
    return FakeQueryClient()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
