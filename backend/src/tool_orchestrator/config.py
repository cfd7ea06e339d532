"""Orchestrator configuration: paths, limits and defaults."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

from main_config import (
    CONVERSATIONS_DIR as _CONVERSATIONS_DIR,
    DB_DIR as _DB_DIR,
    DEFAULT_SYSTEM_PROMPT_PATH as _DEFAULT_SYSTEM_PROMPT_PATH,
)

try:  # Best-effort .env loading
    from dotenv import load_dotenv

    load_dotenv()
except Exception:  # pragma: no cover - optional dependency
    pass

# Path objects for use in this package (main_config uses os.path strings)
DB_DIR = Path(_DB_DIR)
CONVERSATIONS_DIR = Path(_CONVERSATIONS_DIR)
DEFAULT_SYSTEM_PROMPT_PATH = Path(_DEFAULT_SYSTEM_PROMPT_PATH)

DEFAULT_MODEL = os.getenv("TOOL_ORCHESTRATOR_MODEL", "openai:gpt-4.1-nano")
PREFERRED_MODEL_FAMILIES = ("claude-sonnet", "gpt-5", "gpt-4.1")

MAX_TOOL_DEPTH = 10
DEPTH_EXCEEDED_MESSAGE = "Error: Tool calling depth exceeded."
EMPTY_RESPONSE_MESSAGE = "No response."

SESSION_TTL_SECONDS = 3600.0
PENDING_AUTH_TTL_SECONDS = 1800.0
CONNECTION_WAIT_TIMEOUT = 60.0

# Conversations kept in process memory; older idle ones are reloaded from disk on demand.
MAX_CACHED_CONVERSATIONS = int(os.getenv("MAX_CACHED_CONVERSATIONS", "256"))

# Per fragment read on the model stream and per tool call, in seconds.
DEFAULT_STREAM_TIMEOUT = 120.0
DEFAULT_TOOL_TIMEOUT = 60.0

TOOL_ROUTER_BASE_URL = os.getenv("TOOL_ROUTER_BASE_URL", "https://backend.composio.dev/api/v3")
TOOL_ROUTER_API_KEY = os.getenv("TOOL_ROUTER_API_KEY") or os.getenv("COMPOSIO_API_KEY", "")
META_TOOL_PREFIX = os.getenv("META_TOOL_PREFIX", "COMPOSIO_")
OAUTH_CALLBACK_URL = os.getenv("OAUTH_CALLBACK_URL", "rube://oauth-callback")


class RetrySettings(BaseModel):
    """Bounded exponential backoff for transient failures."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=2.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    retryable_status_codes: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows `attempt` (1-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


DEFAULT_RETRY_SETTINGS = RetrySettings()


def ensure_dirs() -> None:
    """Create db and conversations directories if they do not exist."""
    DB_DIR.mkdir(parents=True, exist_ok=True)
    CONVERSATIONS_DIR.mkdir(parents=True, exist_ok=True)
