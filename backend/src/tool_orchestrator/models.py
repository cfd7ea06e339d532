"""Data models for messages, tool calls, sessions and connection requests."""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue, TypeAdapter, model_validator

from .config import PENDING_AUTH_TTL_SECONDS


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# JSON values
# ---------------------------------------------------------------------------

JsonObject = dict[str, JsonValue]

_JSON_VALUE = TypeAdapter(JsonValue)
_JSON_OBJECT = TypeAdapter(JsonObject)


def to_json_value(raw: Any) -> JsonValue:
    """Validate a raw provider payload into a JSON value (str | number | bool | list | dict | None)."""
    return _JSON_VALUE.validate_python(raw)


def to_json_object(raw: Any) -> JsonObject:
    """Validate a raw provider payload into a JSON object; raises pydantic.ValidationError otherwise."""
    return _JSON_OBJECT.validate_python(raw)


def dump_json(value: Any) -> str:
    return json.dumps(value, default=str, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class ToolCall(BaseModel):
    """A single invocation requested by the model."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str = ""
    arguments: JsonObject = Field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    output: JsonValue = None
    # Set by the accumulator when the streamed argument text was not a JSON object.
    argument_error: str | None = None

    def to_chat_dict(self) -> dict[str, Any]:
        """OpenAI-style tool_call entry with arguments re-encoded as a string."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": dump_json(self.arguments)},
        }


class Message(BaseModel):
    """A single message in a conversation."""

    id: str = Field(default_factory=_new_id)
    role: Role
    content: str = ""
    timestamp: str = Field(default_factory=_iso_now)
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    @model_validator(mode="after")
    def _tool_messages_reference_a_call(self) -> Message:
        if self.role == Role.TOOL and not self.tool_call_id:
            raise ValueError("tool messages require tool_call_id")
        return self

    def to_chat_dict(self) -> dict[str, Any]:
        """Format for LLM chat API."""
        out: dict[str, Any] = {"role": self.role.value, "content": self.content or ""}
        if self.tool_calls:
            out["tool_calls"] = [tc.to_chat_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            out["name"] = self.name
        return out


def validate_transcript(messages: list[Message]) -> None:
    """Raise ValueError if a tool message does not answer a prior assistant tool call."""
    seen: set[str] = set()
    for m in messages:
        if m.role == Role.ASSISTANT and m.tool_calls:
            seen.update(tc.id for tc in m.tool_calls)
        elif m.role == Role.TOOL and m.tool_call_id not in seen:
            raise ValueError(f"tool message {m.id} references unknown call {m.tool_call_id}")


# ---------------------------------------------------------------------------
# Sessions and connections
# ---------------------------------------------------------------------------


class Session(BaseModel):
    """Provider-side handle scoping which tools a user/conversation can reach."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    user_id: str
    conversation_id: str | None = None
    created_at: float = Field(default_factory=time.time)


class ConnectedAccount(BaseModel):
    id: str
    toolkit: str = ""
    status: str = ""


class PendingAuthRequest(BaseModel):
    """A connection link handed to the user; valid for 30 minutes."""

    toolkit: str
    connect_link: str
    request_id: str = Field(default_factory=_new_id)
    timestamp: float = Field(default_factory=time.time)

    def is_valid(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current - self.timestamp < PENDING_AUTH_TTL_SECONDS


# ---------------------------------------------------------------------------
# User input (REQUEST_USER_INPUT)
# ---------------------------------------------------------------------------


class UserInputFieldType(str, Enum):
    TEXT = "text"
    URL = "url"
    EMAIL = "email"
    PASSWORD = "password"
    NUMBER = "number"


class UserInputField(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str = ""
    label: str = ""
    type: UserInputFieldType = UserInputFieldType.TEXT
    required: bool = True
    placeholder: str | None = None

    @classmethod
    def from_arguments(cls, raw: dict[str, Any]) -> UserInputField:
        type_str = raw.get("type")
        try:
            field_type = UserInputFieldType(type_str) if type_str else UserInputFieldType.TEXT
        except ValueError:
            field_type = UserInputFieldType.TEXT
        required = raw.get("required")
        placeholder = raw.get("placeholder")
        return cls(
            name=str(raw.get("name") or ""),
            label=str(raw.get("label") or ""),
            type=field_type,
            required=required if isinstance(required, bool) else True,
            placeholder=placeholder if isinstance(placeholder, str) else None,
        )


class UserInputRequest(BaseModel):
    """Parameters a capability needs before OAuth, e.g. a tenant subdomain."""

    id: str = Field(default_factory=_new_id)
    provider: str = "Service"
    fields: list[UserInputField] = Field(default_factory=list)
    auth_config_id: str | None = None
    logo_url: str | None = None

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any]) -> UserInputRequest:
        raw_fields = arguments.get("fields")
        fields = [
            UserInputField.from_arguments(f)
            for f in (raw_fields if isinstance(raw_fields, list) else [])
            if isinstance(f, dict)
        ]
        auth_config_id = arguments.get("authConfigId") or arguments.get("auth_config_id")
        logo_url = arguments.get("logoUrl") or arguments.get("logo_url")
        return cls(
            provider=str(arguments.get("provider") or "Service"),
            fields=fields,
            auth_config_id=auth_config_id if isinstance(auth_config_id, str) else None,
            logo_url=logo_url if isinstance(logo_url, str) else None,
        )


class UserInputResponse(BaseModel):
    """Values the user supplied for a UserInputRequest."""

    request_id: str
    provider: str
    values: dict[str, str] = Field(default_factory=dict)
    auth_config_id: str | None = None


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolDef(BaseModel):
    """Tool definition for the orchestrator and LLM."""

    name: str
    description: str = ""
    parameters: JsonObject = Field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_tool_schema(self, exposed_name: str | None = None) -> dict[str, Any]:
        """Standard function-calling schema (OpenAI-style) for any LLM provider."""
        return {
            "type": "function",
            "function": {
                "name": exposed_name or self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ExecutionResult(BaseModel):
    """Normalized result of a meta-tool or session tool call."""

    data: JsonValue = None
    memory_update: dict[str, list[str]] | None = None
    discovered_tools: list[ToolDef] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Turn outcome
# ---------------------------------------------------------------------------


class TurnResult(BaseModel):
    """What the orchestrator hands back after one user turn."""

    message: Message
    transcript: list[Message]
    depth: int = 0
    pending_auth: PendingAuthRequest | None = None
    pending_user_input: UserInputRequest | None = None
    memory: dict[str, list[str]] = Field(default_factory=dict)
