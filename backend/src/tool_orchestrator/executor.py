"""Uniform facade for invoking meta-tools and session tools."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import JsonValue, ValidationError

from .config import DEFAULT_TOOL_TIMEOUT
from .errors import ToolExecutionError
from .memory import MemoryAccumulator
from .models import ExecutionResult, ToolDef, to_json_object, to_json_value
from .providers.tool_router import ToolExecutionProvider
from .tools import MetaTool

logger = logging.getLogger(__name__)


def _error_from_payload(payload: dict[str, Any]) -> str | None:
    """Return the provider's error text when the payload reports a failure."""
    error = payload.get("error")
    if error:
        if isinstance(error, dict):
            error = error.get("message") or error
        return str(error)
    if payload.get("successful") is False or payload.get("success") is False:
        return str(payload.get("message") or "Tool execution failed")
    return None


def _memory_update(payload: dict[str, Any]) -> dict[str, list[str]] | None:
    raw = payload.get("memory_update")
    if raw is None:
        data = payload.get("data")
        raw = data.get("memory") if isinstance(data, dict) else None
    if not isinstance(raw, dict):
        return None
    update = {
        str(k): [v for v in values if isinstance(v, str)]
        for k, values in raw.items()
        if isinstance(values, list)
    }
    return update or None


def _discovered_tools(payload: dict[str, Any]) -> list[ToolDef]:
    raw = payload.get("discovered_tools")
    if raw is None:
        data = payload.get("data")
        raw = data.get("tools") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        return []
    tools: list[ToolDef] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = item.get("name") or item.get("slug") or item.get("tool_slug")
        parameters = item.get("parameters") or item.get("input_parameters") or item.get("input_schema")
        if not name or not isinstance(parameters, dict):
            continue
        try:
            tools.append(
                ToolDef(
                    name=str(name),
                    description=str(item.get("description") or ""),
                    parameters=to_json_object(parameters),
                )
            )
        except ValidationError:
            logger.warning("Skipping discovered tool %s with unusable schema", name)
    return tools


def normalize_result(payload: dict[str, Any]) -> ExecutionResult:
    """Map a raw provider payload onto an ExecutionResult; raises on reported failure."""
    error = _error_from_payload(payload)
    if error is not None:
        raise ToolExecutionError(error)
    data: JsonValue = to_json_value(payload.get("data", payload))
    return ExecutionResult(
        data=data,
        memory_update=_memory_update(payload),
        discovered_tools=_discovered_tools(payload),
    )


class ToolExecutor:
    """Runs meta-tools and session tools against the execution provider.

    Every call is bounded by `timeout` unless the caller passes its own.
    Failures are raised unclassified.
    """

    def __init__(
        self,
        provider: ToolExecutionProvider,
        timeout: float = DEFAULT_TOOL_TIMEOUT,
        meta: MetaTool | None = None,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self.meta = meta or MetaTool()

    async def execute_meta(
        self,
        name: str,
        session_id: str,
        arguments: dict[str, Any],
        memory: MemoryAccumulator | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        if name == self.meta.multi_execute and memory is not None:
            arguments = memory.inject(arguments)
        logger.info("Executing meta tool %s", name)
        payload = await asyncio.wait_for(
            self.provider.execute_meta(name, session_id, arguments), timeout=timeout or self.timeout
        )
        return normalize_result(payload)

    async def execute_tool(
        self, name: str, session_id: str, arguments: dict[str, Any], timeout: float | None = None
    ) -> ExecutionResult:
        logger.info("Executing tool %s", name)
        payload = await asyncio.wait_for(
            self.provider.execute_tool(name, session_id, arguments), timeout=timeout or self.timeout
        )
        return normalize_result(payload)
