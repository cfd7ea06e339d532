"""Google Gemini model provider implementation."""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from typing import Any

from ..models import Message, Role
from .base import ModelProvider, StreamFragment

try:  # Best-effort .env loading
    from dotenv import load_dotenv

    load_dotenv()
except Exception:  # pragma: no cover
    pass

try:
    from google import genai
    from google.genai import types as genai_types

    _GENAI_AVAILABLE = True
except Exception:  # pragma: no cover - optional dependency
    genai = None  # type: ignore[assignment]
    genai_types = None  # type: ignore[assignment]
    _GENAI_AVAILABLE = False


class GeminiProvider(ModelProvider):
    """Gemini provider using the google-genai SDK."""

    def __init__(
        self,
        default_model: str = "gemini-2.5-flash",
        api_key: str | None = None,
    ) -> None:
        self.default_model = default_model
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY") or os.getenv(
            "GEMINI_API_KEY",
            "",
        )
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if not _GENAI_AVAILABLE or genai is None:
            raise RuntimeError(
                "google-genai package is not installed. Install it or remove GeminiProvider usage."
            )
        if not self._client:
            self._client = genai.Client(
                api_key=self.api_key,
                http_options={"api_version": "v1beta"},
            )
        return self._client

    @staticmethod
    def _to_gemini_contents(messages: list[Message]) -> tuple[list[Any], str | None]:
        """Convert the transcript into Gemini contents and a system instruction.

        Assistant tool calls become function_call parts and tool results become
        function_response parts keyed by the originating call's name.
        """
        contents: list[Any] = []
        system_instruction: str | None = None
        call_names: dict[str, str] = {}

        for m in messages:
            if m.role == Role.SYSTEM:
                system_instruction = (m.content or "").strip() or system_instruction
                continue
            parts: list[Any] = []
            if m.role == Role.TOOL:
                try:
                    response = json.loads(m.content) if m.content else {}
                except ValueError:
                    response = {"result": m.content}
                if not isinstance(response, dict):
                    response = {"result": response}
                parts.append(
                    genai_types.Part(
                        function_response=genai_types.FunctionResponse(
                            name=call_names.get(m.tool_call_id or "", m.name or ""),
                            response=response,
                        )
                    )
                )
                contents.append(genai_types.Content(role="user", parts=parts))
                continue
            if m.content:
                parts.append(genai_types.Part(text=m.content))
            for tc in m.tool_calls or []:
                call_names[tc.id] = tc.name
                parts.append(
                    genai_types.Part(
                        function_call=genai_types.FunctionCall(name=tc.name, args=dict(tc.arguments))
                    )
                )
            if parts:
                role = "model" if m.role == Role.ASSISTANT else "user"
                contents.append(genai_types.Content(role=role, parts=parts))

        return contents, system_instruction

    @staticmethod
    def _to_gemini_tools(tools: list[dict[str, Any]] | None) -> list[Any] | None:
        """Convert function tools into Gemini Tool declarations."""
        if not tools:
            return None
        function_declarations: list[Any] = []
        for t in tools:
            fn = t.get("function") if "function" in t else t
            name = fn.get("name")
            if not name:
                continue
            function_declarations.append(
                genai_types.FunctionDeclaration(
                    name=name,
                    description=fn.get("description", ""),
                    parameters=fn.get("parameters") or {},
                )
            )
        if not function_declarations:
            return None
        return [genai_types.Tool(function_declarations=function_declarations)]

    async def stream_complete(
        self,
        transcript: list[Message],
        tool_schemas: list[dict[str, Any]] | None = None,
        *,
        model: str | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamFragment]:
        """Gemini streams whole function calls; each one becomes a single fragment."""
        client = self._get_client()
        contents, system_instruction = self._to_gemini_contents(transcript)

        config_args: dict[str, Any] = {}
        gemini_tools = self._to_gemini_tools(tool_schemas)
        if gemini_tools:
            config_args["tools"] = gemini_tools
            config_args["tool_config"] = genai_types.ToolConfig(
                function_calling_config=genai_types.FunctionCallingConfig(
                    mode=genai_types.FunctionCallingConfigMode.AUTO
                )
            )
        if system_instruction:
            config_args["system_instruction"] = system_instruction

        stream = await client.aio.models.generate_content_stream(
            model=model or self.default_model,
            contents=contents,
            config=genai_types.GenerateContentConfig(**config_args),
        )
        next_index = 0
        async for chunk in stream:
            for cand in getattr(chunk, "candidates", []) or []:
                content = getattr(cand, "content", None)
                for part in getattr(content, "parts", None) or []:
                    text = getattr(part, "text", None)
                    if text:
                        yield StreamFragment.text_delta(text)
                    fc = getattr(part, "function_call", None)
                    if not fc:
                        continue
                    yield StreamFragment.tool_call_delta(
                        next_index,
                        json.dumps(dict(fc.args) if fc.args else {}),
                        id=getattr(fc, "id", None) or f"call_{fc.name}_{next_index}",
                        name=fc.name,
                    )
                    next_index += 1

    async def list_models(self) -> list[str]:
        client = self._get_client()
        pager = await client.aio.models.list()
        names: list[str] = []
        async for m in pager:
            name = getattr(m, "name", "") or ""
            if name:
                names.append(name.removeprefix("models/"))
        return names
