"""Exception taxonomy for the orchestrator."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for orchestrator failures."""


class StreamReadError(OrchestratorError):
    """The model stream could not be started or broke mid-read. Aborts the turn."""


class ArgumentParseError(OrchestratorError):
    """Accumulated tool-call arguments were not a JSON object."""


class ToolExecutionError(OrchestratorError):
    """A tool or meta-tool call failed at the provider.

    The message is the provider's raw error text; it is classified by the
    recovery policy and never shown to the user verbatim.
    """

    def __init__(self, message: str, *, status_code: int | None = None, transient: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class SessionCreationError(ToolExecutionError):
    """The tool provider refused to create a session."""


class ConnectionLinkError(OrchestratorError):
    """No connection link could be obtained for a toolkit."""


class ConnectionTimeoutError(OrchestratorError):
    """A connected account did not become active in time."""


class RetryExhaustedError(OrchestratorError):
    """All retry attempts for a transient failure were used up."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts
