"""Reassembles streamed tool-call fragments into complete tool calls."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from pydantic import ValidationError

from .models import ToolCall, to_json_object
from .providers.base import StreamFragment

logger = logging.getLogger(__name__)


@dataclass
class _PendingCall:
    id: str | None = None
    name: str | None = None
    chunks: list[str] = field(default_factory=list)


class ToolCallAccumulator:
    """Groups tool-call fragments by index for a single model turn.

    Call `add` once per fragment in stream order, then `finalize` once after the
    stream ends. The first fragment carrying an id or name for an index wins;
    argument chunks are concatenated in arrival order.
    """

    def __init__(self) -> None:
        self._calls: dict[int, _PendingCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def add(self, fragment: StreamFragment) -> None:
        if fragment.is_text:
            raise ValueError("text fragments are not tool-call deltas")
        index = fragment.index or 0
        call = self._calls.setdefault(index, _PendingCall())
        if fragment.id and call.id is None:
            call.id = fragment.id
        if fragment.name and call.name is None:
            call.name = fragment.name
        if fragment.text:
            call.chunks.append(fragment.text)

    def finalize(self) -> list[ToolCall]:
        """Return one ToolCall per index, ordered by index.

        Unparseable arguments do not raise: the call gets empty arguments and an
        `argument_error` so the orchestrator can report it as a failed call.
        """
        finalized: list[ToolCall] = []
        for index in sorted(self._calls):
            pending = self._calls[index]
            raw = "".join(pending.chunks)
            arguments, error = _parse_arguments(raw)
            if error:
                logger.warning("Tool call %s (index %d) has unparseable arguments: %s", pending.name, index, error)
            finalized.append(
                ToolCall(
                    id=pending.id or f"call_{index}",
                    name=pending.name or "",
                    arguments=arguments,
                    argument_error=error,
                )
            )
        return finalized


def _parse_arguments(raw: str) -> tuple[dict, str | None]:
    if not raw.strip():
        return {}, None
    try:
        return to_json_object(json.loads(raw)), None
    except json.JSONDecodeError as exc:
        return {}, f"arguments are not valid JSON ({exc.msg} at position {exc.pos})"
    except ValidationError:
        return {}, "arguments must be a JSON object"
