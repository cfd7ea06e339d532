"""Tool definitions: router meta-tools, the local user-input tool, and the per-conversation registry."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from .config import META_TOOL_PREFIX
from .models import ToolDef, UserInputRequest, UserInputResponse

REQUEST_USER_INPUT = "REQUEST_USER_INPUT"

_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
MAX_TOOL_NAME_LENGTH = 64


class ToolKind(str, Enum):
    META = "meta"
    SESSION = "session"
    LOCAL = "local"


def sanitize_tool_name(slug: str) -> str:
    """Map a tool slug onto the `^[a-zA-Z0-9_-]{1,64}$` names chat APIs accept."""
    name = re.sub(r"[:.\s]", "_", slug)
    return _INVALID_NAME_CHARS.sub("", name)[:MAX_TOOL_NAME_LENGTH]


class BaseTool(ABC):
    """Base class for tools the orchestrator defines itself."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for parameters."""
        ...

    def to_def(self) -> ToolDef:
        return ToolDef(name=self.name, description=self.description, parameters=self.parameters)

    def to_tool_schema(self) -> dict[str, Any]:
        """Standard function-calling schema for any LLM provider."""
        return self.to_def().to_tool_schema()


class RequestUserInputTool(BaseTool):
    """Collects extra parameters (subdomain, instance URL) before an OAuth flow.

    Never executed remotely: the orchestrator halts the turn and hands the
    parsed request to the caller.
    """

    @property
    def name(self) -> str:
        return REQUEST_USER_INPUT

    @property
    def description(self) -> str:
        return (
            "Request custom input fields from the user BEFORE starting OAuth flow. Use ONLY when a "
            "service requires additional parameters beyond standard OAuth (e.g., Pipedrive subdomain, "
            "Salesforce instance URL, custom API endpoint). DO NOT use for services that only need "
            "standard OAuth authorization."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "provider": {"type": "string", "description": "The name of the service/provider (e.g., \"pipedrive\")"},
                "fields": {
                    "type": "array",
                    "description": "List of input fields to request from the user",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string", "description": "Field name (e.g., \"subdomain\")"},
                            "label": {"type": "string", "description": "User-friendly label"},
                            "type": {"type": "string", "description": "Input type (text, url, email, password, number)"},
                            "required": {"type": "boolean", "description": "Whether this field is required"},
                            "placeholder": {"type": "string", "description": "Placeholder text for the input"},
                        },
                        "required": ["name", "label"],
                    },
                },
                "authConfigId": {"type": "string", "description": "The auth config ID to use after collecting inputs"},
                "logoUrl": {"type": "string", "description": "URL to the provider logo/icon"},
            },
            "required": ["provider", "fields"],
        }

    def parse(self, arguments: dict[str, Any]) -> UserInputRequest:
        return UserInputRequest.from_arguments(arguments)

    @staticmethod
    def summarize(request: UserInputRequest) -> str:
        """Assistant-facing sentence telling the user what is needed."""
        labels = [f.label or f.name for f in request.fields if f.label or f.name]
        if not labels:
            return f"To connect {request.provider}, I need a few more details from you."
        return f"To connect {request.provider}, I need the following details: {', '.join(labels)}."


def format_user_input_response(response: UserInputResponse) -> str:
    """Turn submitted form values into the next user message."""
    lines = [f"Here are the details for {response.provider}:"]
    lines.extend(f"- {key}: {value}" for key, value in response.values.items())
    if response.auth_config_id:
        lines.append(f"Auth config ID: {response.auth_config_id}")
    lines.append("Please continue connecting the account with these values.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Meta-tools
# ---------------------------------------------------------------------------


class MetaTool:
    """Names of the router meta-tools, parameterized by vendor prefix."""

    def __init__(self, prefix: str = META_TOOL_PREFIX) -> None:
        self.prefix = prefix
        self.search_tools = f"{prefix}SEARCH_TOOLS"
        self.manage_connections = f"{prefix}MANAGE_CONNECTIONS"
        self.multi_execute = f"{prefix}MULTI_EXECUTE_TOOL"
        self.remote_workbench = f"{prefix}REMOTE_WORKBENCH"
        self.remote_bash = f"{prefix}REMOTE_BASH_TOOL"

    def definitions(self) -> list[ToolDef]:
        return [
            ToolDef(
                name=self.search_tools,
                description=(
                    "Discover tools for a task across all apps. Returns matching tool slugs with their "
                    "input schemas, connection status and an execution plan. Call this first."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "queries": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {"use_case": {"type": "string"}},
                                "required": ["use_case"],
                            },
                        },
                    },
                    "required": ["queries"],
                },
            ),
            ToolDef(
                name=self.manage_connections,
                description="Check connection status for toolkits and initiate connections that are missing.",
                parameters={
                    "type": "object",
                    "properties": {
                        "toolkits": {"type": "array", "items": {"type": "string"}},
                        "reinitiate_all": {"type": "boolean", "default": False},
                    },
                    "required": ["toolkits"],
                },
            ),
            ToolDef(
                name=self.multi_execute,
                description=(
                    "Execute up to 50 discovered tools in parallel. Always pass `memory`: app name to "
                    "a list of short facts worth remembering (IDs, relationships, preferences)."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "tools": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "tool_slug": {"type": "string"},
                                    "arguments": {"type": "object"},
                                },
                                "required": ["tool_slug", "arguments"],
                            },
                        },
                        "thought": {"type": "string"},
                        "memory": {
                            "type": "object",
                            "additionalProperties": {"type": "array", "items": {"type": "string"}},
                        },
                    },
                    "required": ["tools"],
                },
            ),
            ToolDef(
                name=self.remote_workbench,
                description="Run Python in a remote sandbox. Only for 100+ items or complex transformations.",
                parameters={
                    "type": "object",
                    "properties": {"code_to_execute": {"type": "string"}, "thought": {"type": "string"}},
                    "required": ["code_to_execute"],
                },
            ),
            ToolDef(
                name=self.remote_bash,
                description="Run a shell command in the remote sandbox for file operations or data extraction.",
                parameters={
                    "type": "object",
                    "properties": {"command": {"type": "string"}},
                    "required": ["command"],
                },
            ),
        ]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Tools offered to the model in one conversation.

    Starts with the meta-tools and REQUEST_USER_INPUT; tools discovered during
    the conversation are added and offered from the next model request on.
    Exposed names are sanitized; `resolve` maps them back to the original slug.
    """

    def __init__(self, meta: MetaTool | None = None, include_user_input: bool = True) -> None:
        self.meta = meta or MetaTool()
        self.user_input_tool = RequestUserInputTool()
        self._defs: dict[str, ToolDef] = {}
        self._kinds: dict[str, ToolKind] = {}
        self._exposed: dict[str, str] = {}  # exposed name -> slug
        for d in self.meta.definitions():
            self._register(d, ToolKind.META)
        if include_user_input:
            self._register(self.user_input_tool.to_def(), ToolKind.LOCAL)

    def __len__(self) -> int:
        return len(self._defs)

    def __contains__(self, slug: str) -> bool:
        return slug in self._defs

    def _register(self, tool: ToolDef, kind: ToolKind) -> bool:
        if tool.name in self._defs:
            return False
        exposed = sanitize_tool_name(tool.name)
        if not exposed:
            return False
        base, n = exposed, 1
        while exposed in self._exposed:
            suffix = f"_{n}"
            exposed = base[: MAX_TOOL_NAME_LENGTH - len(suffix)] + suffix
            n += 1
        self._defs[tool.name] = tool
        self._kinds[tool.name] = kind
        self._exposed[exposed] = tool.name
        return True

    def add_discovered(self, tools: list[ToolDef]) -> int:
        """Register discovered session tools; returns how many were new."""
        return sum(1 for t in tools if self._register(t, ToolKind.SESSION))

    def resolve(self, exposed_name: str) -> tuple[str, ToolKind] | None:
        slug = self._exposed.get(exposed_name)
        if slug is None and exposed_name in self._defs:
            slug = exposed_name
        if slug is None:
            return None
        return slug, self._kinds[slug]

    def schemas(self) -> list[dict[str, Any]]:
        return [self._defs[slug].to_tool_schema(exposed) for exposed, slug in self._exposed.items()]
