"""Tests for process-level wiring: logging setup and the orchestrator singleton."""

from __future__ import annotations

import json

import pytest
import structlog

from proddy.config import settings
from proddy.core import llm as llm_module
from proddy.core import orchestrator as orchestrator_module
from proddy.core.orchestrator import AssistantOrchestrator, get_orchestrator
from proddy.db import session as session_module
from proddy.integrations import composio_client
from proddy.logging import configure_logging
from proddy.routing import classifier as classifier_module
from proddy.store.sql import SqlStore
from proddy.tools import registry as registry_module

from conftest import FakeProvider


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging("INFO", json_output=True)
        try:
            structlog.get_logger().info("assistant_turn_complete", workspace_id="ws_1")
            structlog.get_logger().debug("filtered_out")
            lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
        finally:
            structlog.reset_defaults()

        (line,) = lines
        record = json.loads(line)
        assert record["event"] == "assistant_turn_complete"
        assert record["workspace_id"] == "ws_1"
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_unknown_level_falls_back_to_info(self, capsys):
        configure_logging("chatty", json_output=True)
        try:
            structlog.get_logger().debug("classifier_cache_hit")
            structlog.get_logger().info("tools_assembled")
            out = capsys.readouterr().out
        finally:
            structlog.reset_defaults()

        assert "tools_assembled" in out
        assert "classifier_cache_hit" not in out


class TestGetOrchestrator:
    @pytest.mark.asyncio
    async def test_wires_live_collaborators(self, monkeypatch):
        monkeypatch.setattr(settings, "llm_api_key", "sk-test")
        monkeypatch.setattr(settings, "convex_url", "")
        monkeypatch.setattr(composio_client, "get_composio_provider", lambda: FakeProvider())
        for module, name in (
            (orchestrator_module, "_orchestrator"),
            (registry_module, "_registry"),
            (llm_module, "_client"),
            (classifier_module, "_classifier"),
            (session_module, "_engine"),
            (session_module, "_session_factory"),
        ):
            monkeypatch.setattr(module, name, None)

        orchestrator = await get_orchestrator()
        try:
            assert isinstance(orchestrator, AssistantOrchestrator)
            assert await get_orchestrator() is orchestrator
            assert isinstance(orchestrator.registry.store, SqlStore)
            assert orchestrator.registry.query_client is None
            assert orchestrator.classifier.llm is orchestrator.generator
            assert orchestrator.recorder.store is orchestrator.registry.store
        finally:
            await llm_module.close_llm_client()
            await session_module.close_db()
