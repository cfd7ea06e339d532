"""Tool execution provider interface and an HTTP tool-router client."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..config import OAUTH_CALLBACK_URL, TOOL_ROUTER_API_KEY, TOOL_ROUTER_BASE_URL
from ..errors import (
    ConnectionLinkError,
    ConnectionTimeoutError,
    SessionCreationError,
    ToolExecutionError,
)
from ..models import ConnectedAccount, Session

logger = logging.getLogger(__name__)

TIMEOUT = httpx.Timeout(connect=5.0, read=60.0, write=10.0, pool=5.0)
ACTIVE_STATUSES = {"ACTIVE", "active"}


class ToolExecutionProvider(ABC):
    """Server side of tool execution: sessions, tool calls and connection links.

    `execute_meta` and `execute_tool` return the provider's raw JSON payload;
    interpretation is left to the executor.
    """

    @abstractmethod
    async def create_session(self, user_id: str) -> Session:
        ...

    @abstractmethod
    async def execute_meta(self, name: str, session_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def execute_tool(self, name: str, session_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def create_connection_link(self, toolkit: str, session_id: str) -> str:
        ...

    @abstractmethod
    async def wait_for_connection(self, account_id: str, timeout: float) -> ConnectedAccount:
        ...


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        err = body.get("error") or body.get("message") or body
        if isinstance(err, dict):
            err = err.get("message") or err
        return str(err)
    return str(body)


class HttpToolRouterProvider(ToolExecutionProvider):
    """Tool router reached over REST with an API key header."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        callback_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        poll_interval: float = 2.0,
    ) -> None:
        self.base_url = (base_url or TOOL_ROUTER_BASE_URL).rstrip("/")
        self.api_key = api_key or TOOL_ROUTER_API_KEY
        self.callback_url = callback_url or OAUTH_CALLBACK_URL
        self.poll_interval = poll_interval
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=TIMEOUT,
                headers={"x-api-key": self.api_key, "Content-Type": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        client = self._get_client()
        try:
            response = await client.request(method, path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ToolExecutionError(
                f"HTTP {status}: {_error_text(exc.response)}", status_code=status
            ) from exc
        except httpx.TimeoutException as exc:
            raise ToolExecutionError(f"Request timeout: {exc}", transient=True) from exc
        except httpx.TransportError as exc:
            raise ToolExecutionError(f"Network error: {exc}", transient=True) from exc
        if not response.content:
            return {}
        return response.json()

    async def create_session(self, user_id: str) -> Session:
        try:
            body = await self._request("POST", "/tool_router/session", {"user_id": user_id})
        except ToolExecutionError as exc:
            raise SessionCreationError(
                str(exc), status_code=exc.status_code, transient=exc.transient
            ) from exc
        session_id = body.get("session_id") or body.get("id") if isinstance(body, dict) else None
        if not session_id:
            raise SessionCreationError("Tool router returned no session id")
        logger.info("Tool router session created for user %s", user_id)
        return Session(session_id=str(session_id), user_id=user_id)

    async def execute_meta(self, name: str, session_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "POST",
            f"/tool_router/session/{session_id}/execute_meta",
            {"slug": name, "arguments": arguments},
        )
        return body if isinstance(body, dict) else {"data": body}

    async def execute_tool(self, name: str, session_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        body = await self._request(
            "POST",
            f"/tool_router/session/{session_id}/execute",
            {"tool_slug": name, "arguments": arguments},
        )
        return body if isinstance(body, dict) else {"data": body}

    async def create_connection_link(self, toolkit: str, session_id: str) -> str:
        try:
            body = await self._request(
                "POST",
                f"/tool_router/session/{session_id}/link",
                {"toolkit": toolkit, "callback_url": self.callback_url},
            )
        except ToolExecutionError as exc:
            raise ConnectionLinkError(f"Could not create a link for {toolkit}: {exc}") from exc
        link = (body.get("redirect_url") or body.get("link")) if isinstance(body, dict) else None
        if not link:
            raise ConnectionLinkError(f"No redirect URL received for {toolkit}")
        return str(link)

    async def wait_for_connection(self, account_id: str, timeout: float) -> ConnectedAccount:
        deadline = time.monotonic() + timeout
        while True:
            body = await self._request("GET", f"/connected_accounts/{account_id}")
            toolkit = body.get("toolkit") or ""
            if isinstance(toolkit, dict):
                toolkit = toolkit.get("slug", "")
            account = ConnectedAccount(
                id=str(body.get("id") or account_id),
                toolkit=str(toolkit),
                status=str(body.get("status") or ""),
            )
            if account.status in ACTIVE_STATUSES:
                return account
            if time.monotonic() + self.poll_interval > deadline:
                raise ConnectionTimeoutError(f"Connection {account_id} not active after {timeout:.0f}s")
            await asyncio.sleep(self.poll_interval)
