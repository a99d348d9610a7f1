"""Tests for the workspace query client (httpx MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from proddy.config import settings
from proddy.infra.circuit_breaker import CircuitOpenError, convex_breaker
from proddy.integrations.convex_client import ConvexQueryClient, ConvexQueryError
from proddy.tools.internal import build_internal_tools


def make_client(handler) -> ConvexQueryClient:
    return ConvexQueryClient(
        url="https://convex.test/",
        deploy_key="dk_1",
        transport=httpx.MockTransport(handler),
    )


class TestConvexQueryClient:
    def test_requires_url(self, monkeypatch):
        monkeypatch.setattr(settings, "convex_url", "")
        with pytest.raises(RuntimeError):
            ConvexQueryClient(url="")

    @pytest.mark.asyncio
    async def test_query(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "success", "value": [{"title": "Standup"}]})

        client = make_client(handler)
        value = await client.query("assistantTools:getMyCalendarToday", {"workspaceId": "ws_1"})
        await client.close()

        assert value == [{"title": "Standup"}]
        assert seen["path"] == "/api/query"
        assert seen["auth"] == "Convex dk_1"
        assert seen["body"] == {
            "path": "assistantTools:getMyCalendarToday",
            "args": {"workspaceId": "ws_1"},
            "format": "json",
        }

    @pytest.mark.asyncio
    async def test_action_endpoint(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"status": "success", "value": {"summary": "quiet"}})

        assert await make_client(handler).action("assistantTools:getChannelSummary", {}) == {"summary": "quiet"}
        assert paths == ["/api/action"]

    @pytest.mark.asyncio
    async def test_function_error(self):
        def handler(request):
            return httpx.Response(200, json={"status": "error", "errorMessage": "Channel not found"})

        with pytest.raises(ConvexQueryError, match="Channel not found"):
            await make_client(handler).query("assistantTools:getChannelSummary", {})

    @pytest.mark.asyncio
    async def test_http_error_trips_breaker(self):
        def handler(request):
            return httpx.Response(500, text="oops")

        client = make_client(handler)
        for _ in range(convex_breaker.failure_threshold):
            with pytest.raises(ConvexQueryError) as exc_info:
                await client.query("assistantTools:getWorkspaceOverview", {})
            assert exc_info.value.status_code == 500
        with pytest.raises(CircuitOpenError):
            await client.query("assistantTools:getWorkspaceOverview", {})

    @pytest.mark.asyncio
    async def test_internal_tool_over_http(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"status": "error", "errorMessage": "Unauthorized"})

        tools = {t.name: t for t in build_internal_tools(make_client(handler), "ws_1", "user_1")}
        result = await tools["getMyCards"].invoke({})
        assert result == {"success": False, "error": "Unauthorized"}
        assert bodies[0]["args"] == {"workspaceId": "ws_1", "userId": "user_1"}
