"""Tests for the OpenAI-compatible LLM client (httpx MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from proddy.config import LLMPresets
from proddy.core.llm import LLMClient, LLMError, parse_tool_calls
from proddy.infra.circuit_breaker import CircuitOpenError, llm_breaker
from proddy.tools.models import Provenance, ToolDescriptor, ToolSchema


def completion(message: dict, usage: dict | None = None) -> dict:
    return {"choices": [{"message": message}], "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5}}


def make_client(handler) -> LLMClient:
    return LLMClient(
        api_key="sk-test",
        base_url="https://llm.test/v1",
        model="test-model",
        transport=httpx.MockTransport(handler),
    )


async def _noop(arguments):
    return {}


TOOL = ToolDescriptor(
    name="getMyTasksToday",
    provenance=Provenance.internal(),
    invoke=_noop,
    schema=ToolSchema("Tasks due today"),
)


class TestParseToolCalls:
    def test_parses_and_keeps_malformed(self):
        calls = parse_tool_calls([
            {"id": "c1", "function": {"name": "GMAIL_FETCH_EMAILS", "arguments": '{"q": "x"}'}},
            {"id": "c2", "function": {"name": "GMAIL_SEND_EMAIL", "arguments": '{"to": '}},
            {"function": {"name": "LIST", "arguments": "[1, 2]"}},
            {"function": {"name": "DICT_ARGS", "arguments": {"a": 1}}},
            {"id": "c5"},
            {"function": {"arguments": "{}"}},
        ])
        assert [c.name for c in calls] == ["GMAIL_FETCH_EMAILS", "GMAIL_SEND_EMAIL", "LIST", "DICT_ARGS"]
        assert calls[0].arguments == {"q": "x"} and calls[0].parse_error is None
        assert calls[1].parse_error == "invalid_json_arguments"
        assert calls[1].raw_arguments == '{"to": '
        assert calls[2].parse_error == "unexpected_arguments_type"
        assert calls[2].call_id.startswith("call_")
        assert calls[3].arguments == {"a": 1}

    def test_empty(self):
        assert parse_tool_calls(None) == []


class TestLLMClient:
    def test_requires_api_key(self):
        with pytest.raises(RuntimeError):
            LLMClient(api_key="")

    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion({
                "content": "Let me check.",
                "tool_calls": [{"id": "c1", "type": "function",
                                "function": {"name": "getMyTasksToday", "arguments": "{}"}}],
            }))

        client = make_client(handler)
        generation = await client.generate("system", [{"role": "user", "content": "my tasks"}], [TOOL])
        await client.close()

        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        body = seen["body"]
        assert body["model"] == "test-model"
        assert body["messages"][0] == {"role": "system", "content": "system"}
        assert body["tools"][0]["function"]["name"] == "getMyTasksToday"
        assert body["tool_choice"] == "auto"
        assert body["temperature"] == LLMPresets.ASSISTANT.temperature
        assert generation.text == "Let me check."
        assert generation.proposed_calls[0].call_id == "c1"
        assert generation.usage["prompt_tokens"] == 10

    @pytest.mark.asyncio
    async def test_generate_without_tools(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=completion({"content": None}))

        generation = await make_client(handler).generate("s", [], None, preset=LLMPresets.NARRATION)
        assert "tools" not in bodies[0]
        assert generation.text == ""
        assert generation.proposed_calls == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": "bad request"})

        with pytest.raises(LLMError) as exc_info:
            await make_client(handler).generate("s", [])
        assert exc_info.value.status_code == 400
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_open_circuit(self):
        for _ in range(llm_breaker.failure_threshold):
            llm_breaker.record_failure()

        def handler(request):
            raise AssertionError("request must not be sent")

        with pytest.raises(CircuitOpenError):
            await make_client(handler).generate("s", [])

    @pytest.mark.asyncio
    async def test_complete_json(self):
        def handler(request):
            body = json.loads(request.content)
            assert body["response_format"] == {"type": "json_object"}
            assert body["model"] == "classifier-model"
            return httpx.Response(200, json=completion({"content": '```json\n{"requires_external_tools": true}\n```'}))

        result = await make_client(handler).complete_json("classify", model="classifier-model")
        assert result == {"requires_external_tools": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["[1, 2]", "not json", ""])
    async def test_complete_json_rejects_non_objects(self, content):
        def handler(request):
            return httpx.Response(200, json=completion({"content": content}))

        with pytest.raises(ValueError):
            await make_client(handler).complete_json("classify")
