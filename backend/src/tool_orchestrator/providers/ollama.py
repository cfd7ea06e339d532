"""Ollama model provider implementation."""

from __future__ import annotations

import json
import os
import uuid
from collections.abc import AsyncIterator
from typing import Any

from ollama import AsyncClient

from ..models import Message, Role
from .base import ModelProvider, StreamFragment


def _message_to_chat(m: Message) -> dict[str, Any]:
    """Convert our Message to Ollama chat format."""
    out: dict[str, Any] = {"role": m.role.value, "content": m.content or ""}
    if m.role == Role.ASSISTANT and m.tool_calls:
        # Ollama expects arguments as an object, not an encoded string.
        out["tool_calls"] = [
            {"function": {"name": tc.name, "arguments": tc.arguments}}
            for tc in m.tool_calls
        ]
    if m.tool_call_id:
        out["tool_call_id"] = m.tool_call_id
    if m.name:
        out["name"] = m.name
    return out


class OllamaProvider(ModelProvider):
    """Ollama-backed model provider.

    Ollama delivers each tool call whole, so every call becomes a single
    tool-call fragment with its arguments re-encoded as JSON text.
    """

    def __init__(self, default_model: str = "llama3.2", base_url: str | None = None):
        self.default_model = default_model
        self.base_url = base_url or os.getenv("OLLAMA_BASE_URL") or "http://localhost:11434"

    async def stream_complete(
        self,
        transcript: list[Message],
        tool_schemas: list[dict[str, Any]] | None = None,
        *,
        model: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamFragment]:
        client = AsyncClient(host=self.base_url)
        next_index = 0
        stream = await client.chat(
            model=model or self.default_model,
            messages=[_message_to_chat(m) for m in transcript],
            tools=tool_schemas or None,
            stream=True,
        )
        async for chunk in stream:
            msg = getattr(chunk, "message", None)
            if msg is None:
                continue
            delta = getattr(msg, "content", None) or ""
            if delta:
                yield StreamFragment.text_delta(delta)
            for tc in getattr(msg, "tool_calls", None) or []:
                fn = getattr(tc, "function", None)
                if fn is None:
                    continue
                args = getattr(fn, "arguments", None)
                yield StreamFragment.tool_call_delta(
                    next_index,
                    args if isinstance(args, str) else json.dumps(dict(args or {})),
                    id=f"call_{uuid.uuid4().hex[:12]}",
                    name=getattr(fn, "name", "") or "",
                )
                next_index += 1

    async def list_models(self) -> list[str]:
        client = AsyncClient(host=self.base_url)
        resp = await client.list()
        return [getattr(m, "model", "") for m in getattr(resp, "models", []) or [] if getattr(m, "model", "")]
