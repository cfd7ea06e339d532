"""Connection management: detecting missing authorization and issuing connect links."""

from __future__ import annotations

import asyncio
import logging
import re

from .config import CONNECTION_WAIT_TIMEOUT
from .errors import ConnectionTimeoutError
from .models import ConnectedAccount, PendingAuthRequest
from .providers.tool_router import ToolExecutionProvider

logger = logging.getLogger(__name__)

KNOWN_TOOLKITS = (
    "github",
    "gitlab",
    "gmail",
    "googlecalendar",
    "googledrive",
    "googlesheets",
    "googledocs",
    "outlook",
    "slack",
    "discord",
    "notion",
    "linear",
    "jira",
    "asana",
    "trello",
    "hubspot",
    "salesforce",
    "pipedrive",
    "dropbox",
    "figma",
    "twitter",
    "linkedin",
    "zoom",
    "airtable",
    "shopify",
    "stripe",
)

AUTH_SIGNATURES = (
    "not authenticated",
    "unauthenticated",
    "authentication required",
    "authentication failed",
    "authenticate with",
    "unauthorized",
    "not authorized",
    "not connected",
    "connection required",
    "no connected account",
    "no active connection",
    "connect your",
    "auth required",
    "401",
)


def _word_runs(text: str, longest: int = 3) -> set[str]:
    """Words of `text` plus runs of up to `longest` adjacent words joined together."""
    words = re.findall(r"[a-z0-9]+", text.lower())
    runs = set(words)
    for size in range(2, longest + 1):
        runs.update("".join(words[i : i + size]) for i in range(len(words) - size + 1))
    return runs


class ConnectionDetector:
    """Decides whether an error means a capability has not been authorized yet."""

    def __init__(
        self,
        toolkits: tuple[str, ...] | list[str] = KNOWN_TOOLKITS,
        signatures: tuple[str, ...] | list[str] = AUTH_SIGNATURES,
    ) -> None:
        # Longest first so "googlecalendar" is preferred when several toolkits are named.
        self._toolkits = sorted({t.lower() for t in toolkits}, key=len, reverse=True)
        self._signatures = tuple(s.lower() for s in signatures)

    def is_auth_error(self, text: str) -> bool:
        lowered = text.lower()
        return any(sig in lowered for sig in self._signatures)

    def find_toolkit(self, text: str) -> str | None:
        runs = _word_runs(text)
        for toolkit in self._toolkits:
            if toolkit in runs:
                return toolkit
        return None

    def detect_auth_required(self, error: BaseException | str, tool_name: str | None = None) -> str | None:
        """Return the toolkit needing authorization, or None.

        The toolkit is looked up in the error text first, then in the name of the
        failing tool (slugs are prefixed with their toolkit, e.g. GITHUB_STAR_REPO).
        """
        text = str(error)
        if not text or not self.is_auth_error(text):
            return None
        toolkit = self.find_toolkit(text)
        if toolkit is None and tool_name:
            toolkit = self.find_toolkit(tool_name.split("_", 1)[0])
        return toolkit


class ConnectionManager:
    """Issues connect links for a session and tracks the pending requests."""

    def __init__(self, provider: ToolExecutionProvider, detector: ConnectionDetector | None = None) -> None:
        self._provider = provider
        self.detector = detector or ConnectionDetector()
        self._pending: dict[str, PendingAuthRequest] = {}

    async def request_link(self, toolkit: str, session_id: str) -> PendingAuthRequest:
        link = await self._provider.create_connection_link(toolkit, session_id)
        request = PendingAuthRequest(toolkit=toolkit, connect_link=link)
        self._pending[toolkit] = request
        logger.info("Issued connection link for %s", toolkit)
        return request

    def pending_for(self, toolkit: str) -> PendingAuthRequest | None:
        """Return the still-valid pending request for a toolkit, dropping expired ones."""
        request = self._pending.get(toolkit)
        if request is not None and not request.is_valid():
            del self._pending[toolkit]
            return None
        return request

    async def wait_for_connection(self, account_id: str, timeout: float = CONNECTION_WAIT_TIMEOUT) -> ConnectedAccount:
        try:
            account = await asyncio.wait_for(
                self._provider.wait_for_connection(account_id, timeout), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            raise ConnectionTimeoutError(f"Connection {account_id} not active after {timeout:.0f}s") from exc
        if account.toolkit:
            self._pending.pop(account.toolkit.lower(), None)
        return account
