"""OpenAI-compatible model provider (Chat Completions streaming)."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from typing import Any

from ..models import Message, Role
from .base import ModelProvider, StreamFragment

try:  # Best-effort .env loading
    from dotenv import load_dotenv

    load_dotenv()
except Exception:  # pragma: no cover - optional dependency
    pass

try:
    from openai import AsyncOpenAI
except ImportError:  # pragma: no cover - dependency error surfaced at runtime
    AsyncOpenAI = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class OpenAIProvider(ModelProvider):
    """Provider for any endpoint speaking the OpenAI Chat Completions protocol."""

    def __init__(
        self,
        default_model: str = "gpt-4.1-nano",
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        self.default_model = default_model
        self.api_key = api_key or os.getenv("OPENAI_API_KEY") or ""
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if AsyncOpenAI is None:
            raise RuntimeError(
                "openai package is not installed. Install it or remove OpenAIProvider usage."
            )
        if not self._client:
            kwargs: dict[str, Any] = {"api_key": self.api_key}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    @staticmethod
    def _to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
        """Convert internal Message objects into OpenAI chat message dicts."""
        out: list[dict[str, Any]] = []
        for m in messages:
            base: dict[str, Any] = {"role": m.role.value, "content": m.content or ""}
            if m.role == Role.ASSISTANT and m.tool_calls:
                base["tool_calls"] = [tc.to_chat_dict() for tc in m.tool_calls]
            if m.role == Role.TOOL:
                base["tool_call_id"] = m.tool_call_id
            out.append(base)
        return out

    @staticmethod
    def _fragments_from_delta(delta: Any) -> list[StreamFragment]:
        """Translate one streamed `choices[0].delta` into fragments."""
        fragments: list[StreamFragment] = []
        text = getattr(delta, "content", None)
        if text:
            fragments.append(StreamFragment.text_delta(text))
        for tc in getattr(delta, "tool_calls", None) or []:
            fn = getattr(tc, "function", None)
            fragments.append(
                StreamFragment.tool_call_delta(
                    getattr(tc, "index", None) or 0,
                    (getattr(fn, "arguments", None) or "") if fn is not None else "",
                    id=getattr(tc, "id", None) or None,
                    name=(getattr(fn, "name", None) or None) if fn is not None else None,
                )
            )
        return fragments

    async def stream_complete(
        self,
        transcript: list[Message],
        tool_schemas: list[dict[str, Any]] | None = None,
        *,
        model: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamFragment]:
        """Stream fragments; tool-call arguments arrive as raw string chunks."""
        client = self._get_client()
        params: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": self._to_openai_messages(transcript),
            "stream": True,
            **kwargs,
        }
        if tool_schemas:
            params["tools"] = tool_schemas

        stream = await client.chat.completions.create(**params)
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = getattr(chunk.choices[0], "delta", None)
                if delta is None:
                    continue
                for fragment in self._fragments_from_delta(delta):
                    yield fragment
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                await close()

    async def list_models(self) -> list[str]:
        client = self._get_client()
        page = await client.models.list()
        return [m.id for m in getattr(page, "data", []) or []]
