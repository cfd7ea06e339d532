"""Chat orchestrator: model request, tool execution, repeat."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .accumulator import ToolCallAccumulator
from .config import (
    DEFAULT_STREAM_TIMEOUT,
    DEPTH_EXCEEDED_MESSAGE,
    EMPTY_RESPONSE_MESSAGE,
    MAX_TOOL_DEPTH,
)
from .connections import ConnectionManager
from .conversation_store import ConversationStore
from .errors import ArgumentParseError, RetryExhaustedError, StreamReadError, ToolExecutionError
from .executor import ToolExecutor
from .memory import MEMORY_ARGUMENT_KEY, MemoryAccumulator
from .models import (
    ExecutionResult,
    Message,
    PendingAuthRequest,
    Role,
    ToolCall,
    ToolCallStatus,
    TurnResult,
    UserInputRequest,
    UserInputResponse,
    dump_json,
    validate_transcript,
)
from .providers.base import ModelProvider
from .recovery import FailureKind, RecoveryPolicy, is_session_invalid, is_transient, user_facing_message
from .sessions import SessionManager
from .system_prompt_loader import get_default_system_prompt
from .tools import ToolKind, ToolRegistry, format_user_input_response

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str], Awaitable[None]]


@dataclass
class LoopOptions:
    """Options for the chat loop."""

    model: str | None = None
    max_depth: int = MAX_TOOL_DEPTH
    stream_timeout: float = DEFAULT_STREAM_TIMEOUT
    tool_timeout: float | None = None  # None uses the executor default
    system_prompt: str | None = None
    on_delta: DeltaCallback | None = None


@dataclass
class _Halt:
    """A tool call that ends the turn before the next model request."""

    message: str
    pending_auth: PendingAuthRequest | None = None
    pending_user_input: UserInputRequest | None = None
    reason: str = ""


class ChatOrchestrator:
    """Runs the model/tool loop for one conversation.

    Owns the conversation's transcript and memory; the session manager is the
    only collaborator shared with other conversations. Turns must not overlap.
    """

    def __init__(
        self,
        model_provider: ModelProvider,
        sessions: SessionManager,
        executor: ToolExecutor,
        *,
        user_id: str,
        conversation_id: str | None = None,
        recovery: RecoveryPolicy | None = None,
        connections: ConnectionManager | None = None,
        memory: MemoryAccumulator | None = None,
        registry: ToolRegistry | None = None,
        transcript: list[Message] | None = None,
        store: ConversationStore | None = None,
        options: LoopOptions | None = None,
    ) -> None:
        self.model_provider = model_provider
        self.sessions = sessions
        self.executor = executor
        self.user_id = user_id
        self.conversation_id = conversation_id
        self.recovery = recovery or RecoveryPolicy()
        self.connections = connections or ConnectionManager(executor.provider, self.recovery.detector)
        self.memory = memory if memory is not None else MemoryAccumulator()
        self.registry = registry or ToolRegistry(executor.meta)
        self.transcript: list[Message] = list(transcript or [])
        self.store = store
        self.options = options or LoopOptions()
        self.pending_auth: PendingAuthRequest | None = None
        self.pending_user_input: UserInputRequest | None = None
        validate_transcript(self.transcript)

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------

    async def run_turn(self, user_message: str) -> TurnResult:
        """Append the user message and loop until a final answer, a halt, or the depth cap.

        Raises StreamReadError if the model stream cannot be read; tool failures
        never raise and end up in the transcript instead.
        """
        self.pending_auth = None
        self.pending_user_input = None
        self.transcript.append(Message(role=Role.USER, content=user_message))
        try:
            result = await self._loop()
        finally:
            self._persist()
        logger.info(
            "Turn finished for conversation %s at depth %d (%d messages)",
            self.conversation_id, result.depth, len(self.transcript),
        )
        return result

    async def submit_user_input(self, response: UserInputResponse) -> TurnResult:
        """Resume after a REQUEST_USER_INPUT halt with the values the user entered."""
        if self.pending_user_input is not None and self.pending_user_input.id != response.request_id:
            logger.warning("User input %s does not match pending request %s", response.request_id, self.pending_user_input.id)
        return await self.run_turn(format_user_input_response(response))

    async def _loop(self) -> TurnResult:
        depth = 0
        while depth < self.options.max_depth:
            depth += 1
            content, calls = await self._request_model()
            logger.debug("Depth %d: %d chars, %d tool call(s)", depth, len(content), len(calls))

            if not calls:
                final = Message(role=Role.ASSISTANT, content=content if content.strip() else EMPTY_RESPONSE_MESSAGE)
                self.transcript.append(final)
                return self._result(final, depth)

            assistant = Message(role=Role.ASSISTANT, content=content, tool_calls=calls)
            self.transcript.append(assistant)
            halt = await self._execute_calls(assistant.tool_calls or [])
            if halt is not None:
                logger.info("Turn halted at depth %d: %s", depth, halt.reason)
                final = Message(role=Role.ASSISTANT, content=halt.message)
                self.transcript.append(final)
                self.pending_auth = halt.pending_auth
                self.pending_user_input = halt.pending_user_input
                return self._result(final, depth)

        logger.warning("Tool calling depth %d exceeded for conversation %s", self.options.max_depth, self.conversation_id)
        final = Message(role=Role.ASSISTANT, content=DEPTH_EXCEEDED_MESSAGE)
        self.transcript.append(final)
        return self._result(final, depth)

    def _result(self, message: Message, depth: int) -> TurnResult:
        return TurnResult(
            message=message,
            transcript=list(self.transcript),
            depth=depth,
            pending_auth=self.pending_auth,
            pending_user_input=self.pending_user_input,
            memory=self.memory.snapshot(),
        )

    def _persist(self) -> None:
        if self.store is None or not self.conversation_id:
            return
        self.store.save_in_background(
            self.conversation_id,
            self.transcript,
            self.memory.snapshot(),
            {"user_id": self.user_id, "model": self.options.model},
        )

    # ------------------------------------------------------------------
    # Model stream
    # ------------------------------------------------------------------

    def _request_messages(self) -> list[Message]:
        prompt = self.options.system_prompt
        if prompt is None:
            prompt = get_default_system_prompt()
        if not prompt:
            return list(self.transcript)
        return [Message(role=Role.SYSTEM, content=prompt), *self.transcript]

    async def _request_model(self) -> tuple[str, list[ToolCall]]:
        """Stream one completion and return (text, finalized tool calls).

        Starting the stream is retried on transient errors as long as nothing
        has been received yet; a failure after that aborts the turn.
        """
        messages = self._request_messages()
        schemas = self.registry.schemas()
        received = False

        async def attempt(_: int) -> tuple[str, list[ToolCall]]:
            nonlocal received
            parts: list[str] = []
            accumulator = ToolCallAccumulator()
            stream = self.model_provider.stream_complete(messages, schemas, model=self.options.model)
            iterator = stream.__aiter__()
            try:
                while True:
                    try:
                        fragment = await asyncio.wait_for(iterator.__anext__(), timeout=self.options.stream_timeout)
                    except StopAsyncIteration:
                        break
                    received = True
                    if fragment.is_text:
                        if fragment.text:
                            parts.append(fragment.text)
                            if self.options.on_delta is not None:
                                await self.options.on_delta(fragment.text)
                    else:
                        accumulator.add(fragment)
            finally:
                aclose = getattr(iterator, "aclose", None)
                if aclose is not None:
                    await aclose()
            return "".join(parts), accumulator.finalize()

        def retryable(exc: BaseException) -> bool:
            return not received and is_transient(exc, self.recovery.settings)

        try:
            return await self.recovery.run(attempt, retryable=retryable, label="model stream")
        except asyncio.CancelledError:
            raise
        except RetryExhaustedError as exc:
            raise StreamReadError(f"Model stream failed after {exc.attempts} attempts: {exc.last_error}") from exc
        except Exception as exc:
            raise StreamReadError(f"Model stream failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_calls(self, calls: list[ToolCall]) -> _Halt | None:
        """Answer every call in order with exactly one tool message."""
        answered: set[str] = set()
        try:
            for i, call in enumerate(calls):
                halt = await self._execute_call(call)
                answered.add(call.id)
                if halt is not None:
                    for rest in calls[i + 1:]:
                        self._answer(rest, f"Not executed: {halt.reason}.", ToolCallStatus.ERROR)
                        answered.add(rest.id)
                    return halt
        except asyncio.CancelledError:
            for call in calls:
                if call.id not in answered:
                    self._answer(call, "Cancelled before completion.", ToolCallStatus.ERROR)
            raise
        return None

    def _answer(self, call: ToolCall, content: str, status: ToolCallStatus, output: Any = None) -> None:
        call.status = status
        if output is not None:
            call.output = output
        self.transcript.append(Message(role=Role.TOOL, content=content, tool_call_id=call.id, name=call.name or None))

    def _fail(self, call: ToolCall, error: BaseException | str, tool_name: str | None = None) -> None:
        logger.warning("Tool call %s (%s) failed: %s", call.id, call.name, error)
        self._answer(call, user_facing_message(error, tool_name or call.name), ToolCallStatus.ERROR)

    async def _execute_call(self, call: ToolCall) -> _Halt | None:
        call.status = ToolCallStatus.RUNNING
        if not call.name:
            self._fail(call, ToolExecutionError("Tool call has no name"))
            return None
        if call.argument_error:
            self._fail(call, ArgumentParseError(f"Invalid arguments: {call.argument_error}"))
            return None

        # Names outside the registry go straight to the router as session tool slugs.
        slug, kind = self.registry.resolve(call.name) or (call.name, ToolKind.SESSION)
        if kind == ToolKind.LOCAL:
            return self._request_user_input(call)

        try:
            result = await self._run_with_recovery(slug, kind, dict(call.arguments))
        except asyncio.CancelledError:
            raise
        except RetryExhaustedError as exc:
            self._fail(call, exc, slug)
            return None
        except Exception as exc:
            classification = self.recovery.classify(exc, slug)
            if classification.kind == FailureKind.CREDENTIAL_MISSING and classification.toolkit:
                return await self._request_connection(call, classification.toolkit, exc, slug)
            self._fail(call, exc, slug)
            return None

        self._apply_result(call, slug, result)
        return None

    async def _run_with_recovery(self, slug: str, kind: ToolKind, arguments: dict[str, Any]) -> ExecutionResult:
        async def attempt(n: int) -> ExecutionResult:
            session = await self.sessions.get_session(self.user_id, self.conversation_id)
            try:
                if kind == ToolKind.META:
                    return await self.executor.execute_meta(
                        slug, session.session_id, arguments, memory=self.memory, timeout=self.options.tool_timeout
                    )
                return await self.executor.execute_tool(
                    slug, session.session_id, arguments, timeout=self.options.tool_timeout
                )
            except Exception as exc:
                if is_session_invalid(exc):
                    logger.info("Session %s rejected by provider; recreating", session.session_id)
                    self.sessions.invalidate(self.user_id, self.conversation_id)
                raise

        def retryable(exc: BaseException) -> bool:
            return self.recovery.classify(exc, slug).kind == FailureKind.TRANSIENT

        return await self.recovery.run(attempt, retryable=retryable, label=slug)

    def _apply_result(self, call: ToolCall, slug: str, result: ExecutionResult) -> None:
        if slug == self.executor.meta.multi_execute:
            supplied = call.arguments.get(MEMORY_ARGUMENT_KEY)
            if isinstance(supplied, dict):
                self.memory.merge(supplied)
        self.memory.merge(result.memory_update)
        added = self.registry.add_discovered(result.discovered_tools)
        if added:
            logger.info("%d new tool(s) available from the next request", added)
        content = result.data if isinstance(result.data, str) else dump_json(result.data)
        self._answer(call, content, ToolCallStatus.COMPLETED, output=result.data)

    def _request_user_input(self, call: ToolCall) -> _Halt:
        tool = self.registry.user_input_tool
        request = tool.parse(call.arguments)
        names = ", ".join(f.name for f in request.fields) or "details"
        self._answer(
            call,
            f"Waiting for the user to provide: {names}",
            ToolCallStatus.COMPLETED,
            output=request.model_dump(mode="json"),
        )
        return _Halt(
            message=tool.summarize(request),
            pending_user_input=request,
            reason=f"waiting for user input for {request.provider}",
        )

    async def _request_connection(self, call: ToolCall, toolkit: str, error: BaseException, slug: str) -> _Halt | None:
        try:
            pending = self.connections.pending_for(toolkit)
            if pending is None:
                session = await self.sessions.get_session(self.user_id, self.conversation_id)
                pending = await self.connections.request_link(toolkit, session.session_id)
        except asyncio.CancelledError:
            raise
        except Exception as link_error:
            logger.error("Could not get a connection link for %s: %s", toolkit, link_error)
            self._fail(call, error, slug)
            return None

        name = toolkit.capitalize()
        self._answer(call, f"{name} is not connected. A connection link was sent to the user.", ToolCallStatus.ERROR)
        return _Halt(
            message=(
                f"To continue, please connect your {name} account: {pending.connect_link}\n\n"
                "Once you've connected, send your message again."
            ),
            pending_auth=pending,
            reason=f"waiting for {toolkit} to be connected",
        )
