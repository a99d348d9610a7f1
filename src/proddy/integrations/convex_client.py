"""HTTP client for the workspace document store's function API.

Internal assistant tools read workspace data (calendar, tasks, channels,
cards, search) by calling named functions on the Convex deployment:

    POST {convex_url}/api/query   {"path": "assistantTools:getMyTasksToday", "args": {...}}
    POST {convex_url}/api/action  {"path": "assistantTools:semanticSearch", "args": {...}}

Responses are ``{"status": "success", "value": ...}`` or
``{"status": "error", "errorMessage": ...}``.
"""

from __future__ import annotations

from typing import Any

import certifi
import httpx
import structlog

from proddy.config import settings
from proddy.infra.circuit_breaker import convex_breaker

logger = structlog.get_logger()


class ConvexQueryError(Exception):
    """A workspace function call failed."""

    def __init__(self, message: str, path: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class ConvexQueryClient:
    """Calls Convex query/action functions over HTTP."""

    def __init__(
        self,
        url: str | None = None,
        deploy_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = (url or settings.convex_url).rstrip("/")
        if not self.url:
            raise RuntimeError("PRODDY_CONVEX_URL not set.")
        headers = {"Content-Type": "application/json"}
        key = deploy_key if deploy_key is not None else settings.convex_deploy_key
        if key:
            headers["Authorization"] = f"Convex {key}"

        extra: dict[str, Any] = {"transport": transport} if transport else {"verify": certifi.where()}
        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=httpx.Timeout(settings.convex_timeout_s, connect=5.0),
            **extra,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def query(self, path: str, args: dict[str, Any]) -> Any:
        return await self._call("/api/query", path, args)

    async def action(self, path: str, args: dict[str, Any]) -> Any:
        return await self._call("/api/action", path, args)

    async def _call(self, endpoint: str, path: str, args: dict[str, Any]) -> Any:
        async with convex_breaker:
            try:
                resp = await self._client.post(
                    endpoint,
                    json={"path": path, "args": args, "format": "json"},
                )
                resp.raise_for_status()
                data = resp.json()
            except httpx.HTTPStatusError as e:
                logger.warning(
                    "convex_call_failed",
                    path=path,
                    status_code=e.response.status_code,
                )
                raise ConvexQueryError(
                    f"Workspace query failed: {e.response.status_code}",
                    path,
                    e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                logger.warning("convex_call_error", path=path, error=str(e))
                raise ConvexQueryError(f"Workspace query error: {e}", path) from e

        if data.get("status") != "success":
            message = data.get("errorMessage") or "unknown error"
            logger.warning("convex_function_error", path=path, error=message[:200])
            raise ConvexQueryError(message, path)

        logger.debug("convex_call_success", path=path)
        return data.get("value")


_client: ConvexQueryClient | None = None


def get_convex_client() -> ConvexQueryClient:
    global _client
    if _client is None:
        _client = ConvexQueryClient()
    return _client
