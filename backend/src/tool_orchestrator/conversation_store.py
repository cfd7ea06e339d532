"""Conversation persistence: db/conversations/{conversation_id}.json.

Writes are fire-and-forget from the orchestrator's point of view; a failed
save is logged and never fails the turn.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import CONVERSATIONS_DIR
from .models import Message

logger = logging.getLogger(__name__)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationStore:
    """JSON file per conversation holding its messages and memory snapshot."""

    def __init__(self, directory: Path | str = CONVERSATIONS_DIR) -> None:
        self.directory = Path(directory)
        self._pending: set[asyncio.Task[None]] = set()

    def _path(self, conversation_id: str) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory / f"{conversation_id}.json"

    def load(self, conversation_id: str) -> tuple[list[Message], dict[str, list[str]]]:
        """Return (messages, memory). Unknown or unreadable conversations load empty."""
        path = self._path(conversation_id)
        if not path.exists():
            return [], {}
        try:
            with open(path, encoding="utf-8") as f:
                raw = json.load(f)
            messages = [Message.model_validate(m) for m in raw.get("messages", [])]
        except (OSError, ValueError, ValidationError) as exc:
            logger.error("Could not load conversation %s: %s", conversation_id, exc)
            return [], {}
        memory = raw.get("memory")
        return messages, memory if isinstance(memory, dict) else {}

    def save(
        self,
        conversation_id: str,
        messages: list[Message],
        memory: dict[str, list[str]] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        path = self._path(conversation_id)
        meta = dict(metadata or {})
        meta["updated_at"] = _iso_now()
        meta["message_count"] = len(messages)
        payload = {
            "conversation_id": conversation_id,
            "messages": [m.model_dump(mode="json") for m in messages],
            "memory": memory or {},
            "metadata": meta,
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, default=str)

    def delete(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def save_in_background(
        self,
        conversation_id: str,
        messages: list[Message],
        memory: dict[str, list[str]] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> asyncio.Task[None]:
        """Schedule `save` on a worker thread; failures are logged."""
        snapshot = list(messages)

        async def _run() -> None:
            try:
                await asyncio.to_thread(self.save, conversation_id, snapshot, memory, metadata)
            except (OSError, TypeError, ValueError) as exc:
                logger.error("Failed to save conversation %s: %s", conversation_id, exc)

        task = asyncio.create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        """Wait for scheduled saves to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
