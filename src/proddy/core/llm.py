"""LLM client for the assistant.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint. Two entry
points:

- ``generate``: one assistant generation with tools offered; returns the
  text plus the tool calls the model proposed.
- ``complete_json``: a short, low-temperature call that must answer with a
  JSON object (used by the query classifier's fallback).
"""

from __future__ import annotations

import json as _json
import time
import uuid
from typing import Any, Iterable, Protocol

import certifi
import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from proddy.config import LLMPreset, LLMPresets, settings
from proddy.core.types import Generation, ProposedCall
from proddy.infra.circuit_breaker import llm_breaker
from proddy.tools.models import ToolDescriptor

logger = structlog.get_logger()

_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class LLMError(Exception):
    """LLM API error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _is_retryable_llm_error(exc: BaseException) -> bool:
    if isinstance(exc, LLMError) and exc.status_code in _RETRYABLE_STATUS_CODES:
        return True
    if isinstance(exc, httpx.ReadTimeout | httpx.ConnectTimeout | httpx.PoolTimeout):
        return True
    return False


class Generator(Protocol):
    """The generation step the orchestrator drives."""

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[ToolDescriptor] | None = None,
        preset: LLMPreset = LLMPresets.ASSISTANT,
    ) -> Generation: ...


def parse_tool_calls(raw_tool_calls: Iterable[dict[str, Any]] | None) -> list[ProposedCall]:
    """Parse OpenAI-format tool calls into ProposedCall objects.

    Malformed argument JSON is kept on the call (``raw_arguments`` plus
    ``parse_error``) instead of being dropped, so it can still be audited.
    """
    parsed: list[ProposedCall] = []
    for tc in raw_tool_calls or ():
        fn = tc.get("function")
        if not fn or not isinstance(fn, dict):
            continue
        fn_name = fn.get("name")
        if not fn_name:
            continue

        raw = fn.get("arguments", "{}")
        args: Any = raw
        parse_error = None
        if isinstance(raw, str):
            try:
                args = _json.loads(raw) if raw.strip() else {}
            except _json.JSONDecodeError:
                parse_error = "invalid_json_arguments"
                args = {}
        if not isinstance(args, dict):
            parse_error = parse_error or "unexpected_arguments_type"
            args = {}

        parsed.append(ProposedCall(
            name=fn_name,
            arguments=args,
            call_id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
            raw_arguments=raw if isinstance(raw, str) else _json.dumps(raw, default=str),
            parse_error=parse_error,
        ))
    return parsed


class LLMClient:
    """httpx client for OpenAI-compatible chat completions."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_key = api_key if api_key is not None else settings.llm_api_key
        if not api_key:
            raise RuntimeError(
                "PRODDY_LLM_API_KEY not set. "
                "Add it to the environment or to keys.json under openai.api_key."
            )
        self.base_url = base_url or settings.llm_base_url
        self.model = model or settings.assistant_model

        client_kwargs: dict[str, Any] = {}
        if transport is not None:
            client_kwargs["transport"] = transport
        else:
            client_kwargs["verify"] = certifi.where()
            client_kwargs["limits"] = httpx.Limits(
                max_connections=20, max_keepalive_connections=10,
            )

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(
                connect=5.0,
                read=settings.llm_read_timeout,
                write=5.0,
                pool=15.0,
            ),
            **client_kwargs,
        )
        logger.info("llm_client_initialized", base_url=self.base_url, model=self.model)

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("llm_client_closed")

    async def chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST one completion request, with retries on transient failures."""

        @retry(
            retry=retry_if_exception(_is_retryable_llm_error),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=4),
            reraise=True,
        )
        async def _do_request() -> dict[str, Any]:
            try:
                t0 = time.monotonic()
                response = await self._client.post("/chat/completions", json=payload)
                llm_ms = round((time.monotonic() - t0) * 1000)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.error(
                    "chat_completion_failed",
                    status_code=status,
                    response=e.response.text[:500],
                )
                raise LLMError(f"Chat completion failed: {status}", status_code=status)
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
                logger.warning("chat_completion_timeout", error=str(e))
                raise
            except Exception as e:
                logger.error("chat_completion_error", error=str(e))
                raise LLMError(f"Chat completion error: {e}")

            usage = data.get("usage") or {}
            logger.info(
                "chat_completion_success",
                model=payload.get("model"),
                llm_ms=llm_ms,
                prompt_tokens=usage.get("prompt_tokens"),
                completion_tokens=usage.get("completion_tokens"),
            )
            return data

        async with llm_breaker:
            return await _do_request()

    async def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[ToolDescriptor] | None = None,
        preset: LLMPreset = LLMPresets.ASSISTANT,
    ) -> Generation:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": preset.temperature,
            "max_tokens": preset.max_tokens,
        }
        if tools:
            payload["tools"] = [tool.to_openai_tool() for tool in tools]
            payload["tool_choice"] = "auto"

        logger.info(
            "chat_completion_request",
            model=self.model,
            message_count=len(payload["messages"]),
            tool_count=len(tools or ()),
        )
        data = await self.chat_completion(payload)

        choices = data.get("choices") or []
        message = choices[0].get("message", {}) if choices else {}
        return Generation(
            text=message.get("content") or "",
            proposed_calls=parse_tool_calls(message.get("tool_calls")),
            usage=data.get("usage"),
        )

    async def complete_json(
        self,
        prompt: str,
        *,
        model: str | None = None,
        preset: LLMPreset = LLMPresets.CLASSIFIER,
    ) -> dict[str, Any]:
        """Ask for a JSON object. Raises ValueError if the reply isn't one."""
        data = await self.chat_completion({
            "model": model or settings.classifier_model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": preset.temperature,
            "max_tokens": preset.max_tokens,
            "response_format": {"type": "json_object"},
        })
        choices = data.get("choices") or []
        content = (choices[0].get("message", {}).get("content") if choices else "") or ""
        content = content.strip()
        if content.startswith("```"):
            content = content.strip("`").removeprefix("json").strip()
        parsed = _json.loads(content)
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object")
        return parsed


_client: LLMClient | None = None


async def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


async def close_llm_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None
