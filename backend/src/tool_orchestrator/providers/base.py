"""Abstract model provider interface and the stream fragment shape."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from ..models import Message

TEXT = "text"
TOOL_CALL_DELTA = "tool_call_delta"


@dataclass(frozen=True)
class StreamFragment:
    """One incremental unit of a model response.

    Either a text delta (`type == "text"`, `text` holds the delta) or a tool-call
    delta (`type == "tool_call_delta"`, `text` holds an arguments chunk). `id` and
    `name` are only guaranteed on the first delta for an index.
    """

    type: str  # "text" | "tool_call_delta"
    text: str = ""
    index: int | None = None
    id: str | None = None
    name: str | None = None

    @classmethod
    def text_delta(cls, text: str) -> StreamFragment:
        return cls(type=TEXT, text=text)

    @classmethod
    def tool_call_delta(
        cls,
        index: int,
        arguments_chunk: str = "",
        *,
        id: str | None = None,
        name: str | None = None,
    ) -> StreamFragment:
        return cls(type=TOOL_CALL_DELTA, text=arguments_chunk, index=index, id=id, name=name)

    @property
    def is_text(self) -> bool:
        return self.type == TEXT

    def to_wire(self) -> dict[str, Any]:
        """`{type, index?, id?, name?, textOrArgsChunk}` as used by chat-completion streams."""
        if self.is_text:
            return {"type": "text", "textOrArgsChunk": self.text}
        out: dict[str, Any] = {"type": "toolCallDelta", "index": self.index, "textOrArgsChunk": self.text}
        if self.id is not None:
            out["id"] = self.id
        if self.name is not None:
            out["name"] = self.name
        return out


class ModelProvider(ABC):
    """
    Abstract model provider. Implement this to plug in any backend (OpenAI, Ollama, Gemini).

    The orchestrator only depends on this interface. Cancelling the consuming task
    closes the stream.
    """

    @abstractmethod
    def stream_complete(
        self,
        transcript: list[Message],
        tool_schemas: list[dict[str, Any]] | None = None,
        *,
        model: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamFragment]:
        """Stream a completion as text and tool-call fragments."""
        ...

    @abstractmethod
    async def list_models(self) -> list[str]:
        """Model identifiers served by this backend."""
        ...
