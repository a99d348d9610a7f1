"""External tool provider backed by the Composio SDK.

Two operations:

    list_tools(app, entity_id, auth_config)   tool specs for one toolkit
    execute_tool(name, arguments, ...)        run one tool for an entity

The SDK is synchronous, so every call runs in a worker thread bounded by
``composio_timeout_s``. Transient failures are retried with tenacity, except
for high-impact tools, which run exactly once so a send or delete the
provider already accepted is never repeated. Repeated failures trip the shared
``composio`` circuit breaker so a provider outage fails fast instead of
stalling every assistant turn.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from proddy.config import settings
from proddy.core.action_policy import is_high_impact_tool_name
from proddy.infra.circuit_breaker import CircuitOpenError, composio_breaker
from proddy.integrations.apps import ExternalApp
from proddy.routing.cache import TTLCache
from proddy.store.base import AuthConfig

logger = structlog.get_logger()

_RETRYABLE_KEYWORDS = frozenset({
    "500", "502", "503", "504",
    "timeout", "temporarily", "rate limit", "connection reset",
})

_RETRYABLE_EXCEPTION_TYPES: tuple[str, ...] = (
    "ConnectionError",
    "TimeoutError",
    "ServerError",
    "ServiceUnavailable",
    "GatewayTimeout",
    "TooManyRequests",
)


def _is_retryable(exc: BaseException) -> bool:
    if type(exc).__name__ in _RETRYABLE_EXCEPTION_TYPES:
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return True
    msg = str(exc).lower()
    return any(kw in msg for kw in _RETRYABLE_KEYWORDS)


class ProviderError(Exception):
    """The tool provider rejected or failed a request."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderUnavailableError(ProviderError):
    """The provider can't be reached at all (SDK missing or circuit open)."""


class _RetryableComposioError(Exception):
    pass


@dataclass(frozen=True)
class ExternalToolSpec:
    name: str
    description: str
    app: ExternalApp
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ExternalToolProvider(Protocol):
    async def list_tools(
        self, app: ExternalApp, entity_id: str, auth_config: AuthConfig,
    ) -> list[ExternalToolSpec]: ...

    async def execute_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        entity_id: str,
        connected_account_id: str | None = None,
    ) -> dict[str, Any]: ...


def _to_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dict__"):
        return dict(vars(obj))
    return {"result": str(obj)}


def tool_spec_from_schema(raw: Any, app: ExternalApp) -> ExternalToolSpec | None:
    """Build a spec from an OpenAI-format tool or a bare Composio tool schema."""
    data = _to_dict(raw)
    fn = data.get("function") if isinstance(data.get("function"), dict) else data
    name = fn.get("name") or fn.get("slug")
    if not name:
        return None
    parameters = fn.get("parameters") or fn.get("input_parameters") or {
        "type": "object", "properties": {},
    }
    return ExternalToolSpec(
        name=str(name),
        description=str(fn.get("description") or ""),
        app=app,
        parameters=parameters,
    )


class ComposioToolProvider:
    """Composio SDK wrapper implementing ExternalToolProvider."""

    _INIT_RETRY_INTERVAL = 60  # seconds between re-init attempts

    def __init__(
        self,
        api_key: str | None = None,
        sdk: Any = None,
        tools_limit: int | None = None,
        tools_cache_ttl_s: float = 1800.0,
        timeout_s: float | None = None,
    ) -> None:
        self.api_key = api_key or settings.composio_api_key
        self.tools_limit = tools_limit or settings.composio_tools_limit
        self.timeout_s = timeout_s or settings.composio_timeout_s
        self._composio: Any = sdk
        self._init_error: str | None = None
        self._last_init_attempt: float = 0
        self._tools_cache: TTLCache[list[ExternalToolSpec]] = TTLCache(
            ttl_s=tools_cache_ttl_s, max_entries=500, name="composio_tools",
        )
        if self._composio is None:
            self._init_sdk()

    def _init_sdk(self) -> None:
        self._last_init_attempt = time.monotonic()
        try:
            from composio import Composio
            self._composio = Composio(api_key=self.api_key)
            self._init_error = None
            logger.info("composio_client_initialized")
        except Exception as e:
            logger.error("composio_init_failed", error=str(e))
            self._composio = None
            self._init_error = str(e)

    def _ensure_sdk(self) -> None:
        """Retry SDK init after a backoff; raise if it's still unavailable."""
        if self._composio is not None:
            return
        if time.monotonic() - self._last_init_attempt >= self._INIT_RETRY_INTERVAL:
            logger.info("composio_sdk_retry_init", last_error=self._init_error)
            self._init_sdk()
        if self._composio is None:
            raise ProviderUnavailableError(
                f"Composio SDK not initialized: {self._init_error or 'unknown error'}"
            )

    def _check_breaker(self, method: str, **context: Any) -> None:
        if not composio_breaker.should_allow_request():
            logger.warning("composio_circuit_open", method=method, **context)
            raise ProviderUnavailableError(str(CircuitOpenError(composio_breaker.name)))

    async def list_tools(
        self, app: ExternalApp, entity_id: str, auth_config: AuthConfig,
    ) -> list[ExternalToolSpec]:
        cache_key = f"{app.value}:{entity_id}:{auth_config.provider_auth_config_id}"
        cached = self._tools_cache.get(cache_key)
        if cached is not None:
            return cached

        self._ensure_sdk()
        self._check_breaker("list_tools", app=app.value)

        def _fetch() -> Any:
            return self._composio.tools.get(
                user_id=entity_id,
                toolkits=[app.value],
                limit=self.tools_limit,
            )

        try:
            raw_tools = await asyncio.wait_for(asyncio.to_thread(_fetch), timeout=self.timeout_s)
        except Exception as e:
            composio_breaker.record_failure()
            logger.error("composio_list_tools_failed", app=app.value, error=str(e))
            raise ProviderError(f"Could not load {app.human_name} tools: {e}", _is_retryable(e)) from e

        composio_breaker.record_success()
        specs = [s for s in (tool_spec_from_schema(t, app) for t in raw_tools or []) if s]
        self._tools_cache.set(cache_key, specs)
        logger.info(
            "composio_tools_fetched",
            app=app.value,
            count=len(specs),
            auth_config_id=auth_config.provider_auth_config_id,
        )
        return specs

    async def execute_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        entity_id: str,
        connected_account_id: str | None = None,
    ) -> dict[str, Any]:
        """Execute one tool. Raises ProviderError when the provider reports failure."""
        self._ensure_sdk()
        self._check_breaker("execute_tool", tool=name)
        arguments = {**arguments}

        def _exec() -> Any:
            kwargs: dict[str, Any] = {
                "slug": name,
                "arguments": arguments,
                "user_id": entity_id,
            }
            if connected_account_id:
                kwargs["connected_account_id"] = connected_account_id
            try:
                return self._composio.tools.execute(
                    **kwargs, dangerously_skip_version_check=True,
                )
            except TypeError:
                return self._composio.tools.execute(**kwargs)

        attempts = 1 if is_high_impact_tool_name(name) else 3

        @retry(
            retry=retry_if_exception_type(_RetryableComposioError),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )
        async def _execute_with_retry() -> dict[str, Any]:
            try:
                result = _to_dict(
                    await asyncio.wait_for(asyncio.to_thread(_exec), timeout=self.timeout_s)
                )
            except Exception as e:
                if _is_retryable(e):
                    raise _RetryableComposioError(str(e)) from e
                raise
            error = result.get("error")
            if error and _is_retryable(Exception(str(error))):
                raise _RetryableComposioError(str(error))
            return result

        try:
            result = await _execute_with_retry()
        except _RetryableComposioError as e:
            composio_breaker.record_failure()
            logger.error(
                "composio_execute_retries_exhausted", tool=name, attempts=attempts, error=str(e),
            )
            raise ProviderError(f"Tool execution failed after {attempts} attempt(s): {e}", retryable=True) from e
        except Exception as e:
            composio_breaker.record_failure()
            logger.error("composio_execute_failed", tool=name, error=str(e))
            raise ProviderError(str(e)) from e

        composio_breaker.record_success()
        if result.get("successful") is False or result.get("error"):
            logger.warning("composio_tool_reported_error", tool=name)
            raise ProviderError(str(result.get("error") or "Tool reported failure"))

        logger.info("composio_tool_executed", tool=name)
        data = result.get("data", result)
        return data if isinstance(data, dict) else {"result": data}

    def invalidate_cache(self) -> None:
        self._tools_cache.clear()


_provider: ComposioToolProvider | None = None


def get_composio_provider() -> ComposioToolProvider:
    """Get or create the singleton Composio provider."""
    global _provider
    if _provider is None:
        _provider = ComposioToolProvider()
    return _provider
