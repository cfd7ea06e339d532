"""In-process stand-ins for the model and tool-router providers used by the tests."""
from __future__ import annotations

import asyncio
from typing import Any

from src.tool_orchestrator.errors import ConnectionLinkError
from src.tool_orchestrator.models import ConnectedAccount, Message, Session
from src.tool_orchestrator.providers.base import ModelProvider, StreamFragment
from src.tool_orchestrator.providers.tool_router import ToolExecutionProvider


def text(content: str) -> list[StreamFragment]:
    return [StreamFragment.text_delta(content)]


def tool_call(index: int, call_id: str, name: str, arguments: str, pieces: int = 1) -> list[StreamFragment]:
    """Split one tool call into `pieces` fragments; only the first carries id and name."""
    size = max(1, -(-len(arguments) // pieces))
    chunks = [arguments[i:i + size] for i in range(0, len(arguments), size)] or [""]
    fragments = [StreamFragment.tool_call_delta(index, chunks[0], id=call_id, name=name)]
    fragments.extend(StreamFragment.tool_call_delta(index, chunk) for chunk in chunks[1:])
    return fragments


class FakeModelProvider(ModelProvider):
    """Replays scripted turns. A turn is a list of fragments (an exception inside
    the list is raised mid-stream) or an exception raised before the first fragment.
    The last turn repeats once the script runs out."""

    def __init__(self, turns: list[Any], models: list[str] | None = None) -> None:
        self.turns = list(turns)
        self.models = models or []
        self.requests: list[tuple[list[Message], list[dict[str, Any]]]] = []

    def stream_complete(self, transcript, tool_schemas=None, *, model=None, **kwargs):
        self.requests.append((list(transcript), list(tool_schemas or [])))
        turn = self.turns.pop(0) if len(self.turns) > 1 else self.turns[0]
        return self._stream(turn)

    async def _stream(self, turn: Any):
        if isinstance(turn, BaseException):
            raise turn
        for fragment in turn:
            if isinstance(fragment, BaseException):
                raise fragment
            yield fragment

    async def list_models(self) -> list[str]:
        return list(self.models)


class FakeToolProvider(ToolExecutionProvider):
    """Returns scripted payloads per tool name; the last entry for a name repeats.
    Unscripted tools succeed with a small payload."""

    def __init__(
        self,
        results: dict[str, list[Any]] | None = None,
        session_errors: list[BaseException] | None = None,
        link_error: bool = False,
    ) -> None:
        self.results = {name: list(seq) for name, seq in (results or {}).items()}
        self.session_errors = list(session_errors or [])
        self.link_error = link_error
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.links: list[tuple[str, str]] = []
        self.sessions_created = 0
        self.gate: asyncio.Event | None = None

    async def create_session(self, user_id: str) -> Session:
        self.sessions_created += 1
        if self.gate is not None and user_id.startswith("slow"):
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.session_errors:
            raise self.session_errors.pop(0)
        return Session(session_id=f"session-{self.sessions_created}", user_id=user_id)

    def _next(self, name: str, session_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((name, session_id, arguments))
        queue = self.results.get(name)
        if not queue:
            return {"data": {"ok": True}, "successful": True}
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def execute_meta(self, name: str, session_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        return self._next(name, session_id, arguments)

    async def execute_tool(self, name: str, session_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        return self._next(name, session_id, arguments)

    async def create_connection_link(self, toolkit: str, session_id: str) -> str:
        self.links.append((toolkit, session_id))
        if self.link_error:
            raise ConnectionLinkError(f"No redirect URL received for {toolkit}")
        return f"https://connect.example.com/{toolkit}"

    async def wait_for_connection(self, account_id: str, timeout: float) -> ConnectedAccount:
        return ConnectedAccount(id=account_id, toolkit="gmail", status="ACTIVE")


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
