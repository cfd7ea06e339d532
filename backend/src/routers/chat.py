"""Chat router: tool-orchestrated chat turns, model listing and session control."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from src.tool_orchestrator.config import DEFAULT_MODEL, MAX_CACHED_CONVERSATIONS
from src.tool_orchestrator.conversation_store import ConversationStore
from src.tool_orchestrator.errors import StreamReadError
from src.tool_orchestrator.executor import ToolExecutor
from src.tool_orchestrator.llm import list_models, resolve_model, select_default_model
from src.tool_orchestrator.loop import ChatOrchestrator, LoopOptions
from src.tool_orchestrator.memory import MemoryAccumulator
from src.tool_orchestrator.models import PendingAuthRequest, TurnResult, UserInputRequest, UserInputResponse
from src.tool_orchestrator.providers import HttpToolRouterProvider
from src.tool_orchestrator.sessions import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

# Process-wide collaborators; the session cache is shared by all conversations.
_tool_provider = HttpToolRouterProvider()
_sessions = SessionManager(_tool_provider)
_store = ConversationStore()
# Least recently used first. Evicted conversations are reloaded from the store.
_orchestrators: OrderedDict[tuple[str, str], ChatOrchestrator] = OrderedDict()
_turn_locks: dict[tuple[str, str], asyncio.Lock] = {}
_max_cached = MAX_CACHED_CONVERSATIONS


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    user_id: str = Field(..., description="User identifier")
    message: str = Field(..., description="User message")
    conversation_id: str | None = Field(None, description="Optional conversation id to continue")
    system_prompt: str | None = Field(None, description="Optional system prompt")
    model: str = Field(
        DEFAULT_MODEL,
        description=(
            "LLM model in 'provider:model' format (e.g. 'openai:gpt-4.1-nano', "
            "'gemini:gemini-2.5-flash'). If no ':' is present, the value is "
            "treated as an Ollama model name."
        ),
    )


class UserInputSubmission(BaseModel):
    """Request body for POST /chat/user-input."""

    user_id: str
    conversation_id: str
    request_id: str
    provider: str
    values: dict[str, str] = Field(default_factory=dict)
    auth_config_id: str | None = None
    model: str = DEFAULT_MODEL


class ChatResponse(BaseModel):
    """Response for POST /chat and POST /chat/user-input."""

    conversation_id: str
    reply: str
    message_count: int = 0
    depth: int = 0
    pending_auth: PendingAuthRequest | None = None
    pending_user_input: UserInputRequest | None = None
    memory: dict[str, list[str]] = Field(default_factory=dict)


def _orchestrator_for(user_id: str, conversation_id: str, model: str, system_prompt: str | None) -> ChatOrchestrator:
    key = (user_id, conversation_id)
    provider, model_name = resolve_model(model)
    orchestrator = _orchestrators.get(key)
    if orchestrator is None:
        messages, memory = _store.load(conversation_id)
        orchestrator = ChatOrchestrator(
            provider,
            _sessions,
            ToolExecutor(_tool_provider),
            user_id=user_id,
            conversation_id=conversation_id,
            memory=MemoryAccumulator(memory),
            transcript=messages,
            store=_store,
        )
        _orchestrators[key] = orchestrator
        _evict_idle()
    else:
        _orchestrators.move_to_end(key)
    orchestrator.model_provider = provider
    orchestrator.options = LoopOptions(model=model_name, system_prompt=system_prompt)
    return orchestrator


def _lock_for(user_id: str, conversation_id: str) -> asyncio.Lock:
    return _turn_locks.setdefault((user_id, conversation_id), asyncio.Lock())


def _evict_idle() -> None:
    """Drop least recently used conversations over the cap, skipping ones mid-turn."""
    while len(_orchestrators) > _max_cached:
        idle = next(
            (key for key in _orchestrators if not (key in _turn_locks and _turn_locks[key].locked())),
            None,
        )
        if idle is None:
            return
        del _orchestrators[idle]
        _turn_locks.pop(idle, None)
        logger.debug("Evicted conversation %s for user %s from memory", idle[1], idle[0])


def _to_response(conversation_id: str, result: TurnResult) -> ChatResponse:
    return ChatResponse(
        conversation_id=conversation_id,
        reply=result.message.content,
        message_count=len(result.transcript),
        depth=result.depth,
        pending_auth=result.pending_auth,
        pending_user_input=result.pending_user_input,
        memory=result.memory,
    )


@router.post("", response_model=ChatResponse)
async def chat(request: ChatRequest) -> ChatResponse:
    """Run one orchestrated turn and return the assistant reply."""
    conversation_id = request.conversation_id or str(uuid.uuid4())
    async with _lock_for(request.user_id, conversation_id):
        orchestrator = _orchestrator_for(request.user_id, conversation_id, request.model, request.system_prompt)
        try:
            result = await orchestrator.run_turn(request.message)
        except StreamReadError as e:
            logger.error("Model stream failed for conversation %s: %s", conversation_id, e)
            raise HTTPException(status_code=502, detail="The model did not respond. Please try again.") from e
        except Exception as e:
            logger.exception("Chat turn failed for conversation %s", conversation_id)
            raise HTTPException(status_code=500, detail=str(e)) from e
    return _to_response(conversation_id, result)


@router.post("/user-input", response_model=ChatResponse)
async def submit_user_input(request: UserInputSubmission) -> ChatResponse:
    """Resume a conversation halted by REQUEST_USER_INPUT."""
    async with _lock_for(request.user_id, request.conversation_id):
        orchestrator = _orchestrator_for(request.user_id, request.conversation_id, request.model, None)
        response = UserInputResponse(
            request_id=request.request_id,
            provider=request.provider,
            values=request.values,
            auth_config_id=request.auth_config_id,
        )
        try:
            result = await orchestrator.submit_user_input(response)
        except StreamReadError as e:
            raise HTTPException(status_code=502, detail="The model did not respond. Please try again.") from e
    return _to_response(request.conversation_id, result)


@router.get("/models")
async def models(provider: str = Query("openai", description="Model provider to query")) -> dict:
    """List available models and the one that would be picked by default."""
    available = await list_models(provider)
    return {"models": available, "default": select_default_model(available, DEFAULT_MODEL) or DEFAULT_MODEL}


@router.delete("/{conversation_id}/session")
async def reset_session(conversation_id: str, user_id: str = Query(...)) -> dict:
    """Drop the cached tool-router session so the next tool call creates a fresh one."""
    _sessions.invalidate(user_id, conversation_id)
    return {"conversation_id": conversation_id, "session_reset": True}


@router.delete("/{conversation_id}/memory")
async def clear_memory(conversation_id: str, user_id: str = Query(...)) -> dict:
    """Forget the facts accumulated in a conversation."""
    key = (user_id, conversation_id)
    if key not in _orchestrators:
        transcript, _ = _store.load(conversation_id)
        if transcript:
            _store.save_in_background(conversation_id, transcript, {}, {"user_id": user_id})
        return {"conversation_id": conversation_id, "memory_cleared": True}
    async with _lock_for(user_id, conversation_id):
        orchestrator = _orchestrators.get(key)
        if orchestrator is not None:
            orchestrator.memory.clear()
            _store.save_in_background(conversation_id, orchestrator.transcript, {}, {"user_id": user_id})
    return {"conversation_id": conversation_id, "memory_cleared": True}


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, user_id: str = Query(...)) -> dict:
    """Forget a conversation: in-memory state, cached tool session and the stored file."""
    key = (user_id, conversation_id)
    async with _lock_for(user_id, conversation_id):
        _orchestrators.pop(key, None)
        _sessions.invalidate(user_id, conversation_id)
        await _store.flush()
        deleted = _store.delete(conversation_id)
    lock = _turn_locks.get(key)
    if lock is not None and not lock.locked():
        del _turn_locks[key]
    return {"conversation_id": conversation_id, "deleted": deleted}
