"""Tests for internal workspace tools."""

import pytest

from proddy.tools.internal import (
    INTERNAL_TOOL_DEFS,
    build_internal_tools,
    invoke_internal_tool,
)

from conftest import USER_ID, WORKSPACE_ID, FakeQueryClient

DEFS = {d.name: d for d in INTERNAL_TOOL_DEFS}


class TestDefinitions:
    def test_expected_tools(self):
        assert set(DEFS) == {
            "getMyCalendarToday", "getMyCalendarTomorrow", "getMyCalendarThisWeek",
            "getMyCalendarNextWeek", "getMyTasksToday", "getMyTasksTomorrow",
            "getMyTasksThisWeek", "getMyAllTasks", "getWorkspaceOverview", "getMyCards",
            "searchChannels", "getChannelSummary", "semanticSearch",
        }

    def test_context_params_not_exposed_to_model(self):
        for definition in INTERNAL_TOOL_DEFS:
            props = definition.parameters()["properties"]
            assert "workspaceId" not in props
            assert "userId" not in props

    def test_required_in_schema(self):
        assert DEFS["getChannelSummary"].parameters()["required"] == ["channelId"]
        assert "required" not in DEFS["getMyCards"].parameters()


class TestInvoke:
    @pytest.mark.asyncio
    async def test_injects_context(self):
        client = FakeQueryClient({"assistantTools:getMyTasksToday": [{"title": "Ship"}]})
        result = await invoke_internal_tool(
            DEFS["getMyTasksToday"], client, WORKSPACE_ID, USER_ID, {"workspaceId": "spoofed"},
        )
        assert result == [{"title": "Ship"}]
        assert client.calls == [
            ("query", "assistantTools:getMyTasksToday", {"workspaceId": WORKSPACE_ID, "userId": USER_ID}),
        ]

    @pytest.mark.asyncio
    async def test_action_tools_use_action_endpoint(self):
        client = FakeQueryClient()
        await invoke_internal_tool(
            DEFS["semanticSearch"], client, WORKSPACE_ID, USER_ID, {"query": "launch plan", "limit": 5},
        )
        assert client.calls == [
            ("action", "assistantTools:semanticSearch",
             {"query": "launch plan", "limit": 5, "workspaceId": WORKSPACE_ID}),
        ]

    @pytest.mark.asyncio
    async def test_missing_required_argument(self):
        client = FakeQueryClient()
        result = await invoke_internal_tool(DEFS["getChannelSummary"], client, WORKSPACE_ID, USER_ID, {})
        assert result == {"success": False, "error": "Missing required argument(s): channelId"}
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_user_required(self):
        result = await invoke_internal_tool(DEFS["getMyCards"], FakeQueryClient(), WORKSPACE_ID, None, {})
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_client_failure_returned_not_raised(self):
        client = FakeQueryClient()
        client.fail_with = RuntimeError("convex 500 token=abc")
        result = await invoke_internal_tool(DEFS["searchChannels"], client, WORKSPACE_ID, USER_ID, {"query": "gen"})
        assert result["success"] is False
        assert "abc" not in result["error"]

    @pytest.mark.asyncio
    async def test_build_binds_each_definition(self):
        client = FakeQueryClient()
        tools = {t.name: t for t in build_internal_tools(client, WORKSPACE_ID, USER_ID)}
        await tools["getMyCalendarToday"].invoke({})
        await tools["searchChannels"].invoke({"query": "eng"})
        assert [c[1] for c in client.calls] == [
            "assistantTools:getMyCalendarToday",
            "assistantTools:searchChannels",
        ]
        assert all(not t.is_external for t in tools.values())
