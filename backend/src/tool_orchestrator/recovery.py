"""Failure classification, bounded retries and user-facing failure messages.

Every failure raised while executing a tool call lands in exactly one bucket:

- transient: expected to succeed on retry (timeouts, rate limits, resets, 5xx);
- credential-missing: the user has not connected the capability yet;
- terminal: anything else.

An error that looks transient but also carries a credential signature
(an auth phrase plus a recognizable toolkit) is credential-missing.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from .config import DEFAULT_RETRY_SETTINGS, RetrySettings
from .connections import ConnectionDetector
from .errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    CREDENTIAL_MISSING = "credential_missing"
    TERMINAL = "terminal"


TRANSIENT_PATTERNS = (
    "timeout",
    "timed out",
    "rate limit",
    "rate-limit",
    "ratelimit",
    "too many requests",
    "connection reset",
    "connection refused",
    "connection lost",
    "connection aborted",
    "network error",
    "service unavailable",
    "temporarily",
    "bad gateway",
    "gateway timeout",
    "internal server error",
    "overloaded",
)

SESSION_INVALID_PATTERNS = (
    "session not found",
    "session expired",
    "session has expired",
    "invalid session",
    "unknown session",
    "session is no longer valid",
)

# Bare numbers in provider text are ignored unless labelled as a status code.
_TRANSIENT_STATUS_RE = re.compile(r"\b(?:http|status|code|error)\s*[:=]?\s*(408|429|5\d\d)\b")


def _status_code(error: BaseException) -> int | None:
    code = getattr(error, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def is_session_invalid(error: BaseException) -> bool:
    text = str(error).lower()
    return any(p in text for p in SESSION_INVALID_PATTERNS)


def is_transient(error: BaseException, settings: RetrySettings = DEFAULT_RETRY_SETTINGS) -> bool:
    """True for errors expected to succeed if retried unchanged."""
    if isinstance(error, RetryExhaustedError):
        return False
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if getattr(error, "transient", False) is True:
        return True
    code = _status_code(error)
    if code is not None and (code in settings.retryable_status_codes or 500 <= code < 600):
        return True
    text = str(error).lower()
    if any(p in text for p in TRANSIENT_PATTERNS) or is_session_invalid(error):
        return True
    return bool(_TRANSIENT_STATUS_RE.search(text))


@dataclass(frozen=True)
class Classification:
    kind: FailureKind
    toolkit: str | None = None


class RecoveryPolicy:
    """Classifies tool failures and runs operations under bounded backoff."""

    def __init__(
        self,
        detector: ConnectionDetector | None = None,
        settings: RetrySettings = DEFAULT_RETRY_SETTINGS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.detector = detector or ConnectionDetector()
        self.settings = settings
        self._sleep = sleep

    def classify(self, error: BaseException, tool_name: str | None = None) -> Classification:
        toolkit = self.detector.detect_auth_required(error, tool_name)
        if is_transient(error, self.settings) and toolkit is None:
            return Classification(FailureKind.TRANSIENT)
        if toolkit is not None:
            return Classification(FailureKind.CREDENTIAL_MISSING, toolkit)
        return Classification(FailureKind.TERMINAL)

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        retryable: Callable[[BaseException], bool] | None = None,
        label: str = "operation",
    ) -> T:
        """Run `operation(attempt)` until it succeeds, fails non-retryably, or the cap is hit.

        Non-retryable errors propagate unchanged. Exhausting the attempt cap raises
        RetryExhaustedError wrapping the last error.
        """
        should_retry = retryable or (lambda exc: is_transient(exc, self.settings))
        last_error: BaseException | None = None
        attempts = self.settings.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                result = await operation(attempt)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                if not should_retry(exc):
                    raise
                logger.warning("%s failed (attempt %d/%d): %s", label, attempt, attempts, exc)
                if attempt < attempts:
                    await self._sleep(self.settings.delay_for(attempt))
                continue
            if attempt > 1:
                logger.info("%s succeeded on attempt %d", label, attempt)
            return result
        logger.error("%s failed after %d attempts", label, attempts)
        raise RetryExhaustedError(last_error or RuntimeError(label), attempts)


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

_CATEGORY_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("timeout", ("timeout", "timed out", "taking too long")),
    ("rate_limit", ("rate limit", "rate-limit", "ratelimit", "too many requests", "429", "quota")),
    ("permission", ("unauthorized", "forbidden", "permission", "access denied", "not connected", "not authenticated", "401", "403")),
    ("connection", ("connection", "network", "unreachable", "dns", "socket", "bad gateway", "unavailable", "502", "503")),
    ("not_found", ("not found", "does not exist", "no such", "404")),
    ("invalid_input", ("invalid", "validation", "malformed", "missing required", "bad request", "arguments", "400", "422")),
)

_MESSAGES = {
    "timeout": "{cap} is taking too long to respond. Please try again in a moment.",
    "rate_limit": "{cap} is receiving too many requests right now. Please wait a moment and try again.",
    "permission": "I don't have permission to use {cap}. The app may need to be reconnected or granted more access.",
    "connection": "I couldn't reach {cap} because of a network connection problem. Please try again shortly.",
    "not_found": "{cap} couldn't find what was requested. Please check the name or ID and try again.",
    "invalid_input": "{cap} rejected the request because some of the parameters were invalid.",
    "generic": "Something went wrong while running {cap}. Please try again or rephrase the request.",
}


def describe_capability(tool_name: str | None) -> str:
    """Readable name for a tool slug, e.g. GITHUB_STAR_REPO -> 'the github star repo tool'."""
    words = re.sub(r"[_\-]+", " ", tool_name or "").strip().lower()
    return f"the {words} tool" if words else "the requested tool"


def error_category(error: BaseException | str) -> str:
    if isinstance(error, RetryExhaustedError):
        error = error.last_error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    text = str(error).lower()
    code = _status_code(error) if isinstance(error, BaseException) else None
    if code is not None:
        text = f"{text} {code}"
    for category, patterns in _CATEGORY_PATTERNS:
        if any(p in text for p in patterns):
            return category
    return "generic"


def user_facing_message(error: BaseException | str, tool_name: str | None = None) -> str:
    """Plain-language sentence naming the capability and a likely cause; never the raw error."""
    cap = describe_capability(tool_name)
    message = _MESSAGES[error_category(error)].format(cap=cap)
    return message[0].upper() + message[1:]
