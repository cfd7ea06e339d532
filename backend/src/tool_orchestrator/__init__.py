"""Tool orchestrator: streamed model turns, tool-router sessions and failure recovery."""

from .accumulator import ToolCallAccumulator
from .connections import ConnectionDetector, ConnectionManager
from .conversation_store import ConversationStore
from .executor import ToolExecutor
from .loop import ChatOrchestrator, LoopOptions
from .memory import MemoryAccumulator
from .models import (
    Message,
    PendingAuthRequest,
    Role,
    Session,
    ToolCall,
    ToolCallStatus,
    TurnResult,
    UserInputRequest,
    UserInputResponse,
)
from .providers import ModelProvider, StreamFragment, ToolExecutionProvider
from .recovery import FailureKind, RecoveryPolicy
from .sessions import SessionManager
from .tools import ToolRegistry

__all__ = [
    "ChatOrchestrator",
    "LoopOptions",
    "ToolCallAccumulator",
    "SessionManager",
    "ToolExecutor",
    "ToolRegistry",
    "RecoveryPolicy",
    "FailureKind",
    "ConnectionDetector",
    "ConnectionManager",
    "MemoryAccumulator",
    "ConversationStore",
    "Message",
    "Role",
    "Session",
    "ToolCall",
    "ToolCallStatus",
    "TurnResult",
    "PendingAuthRequest",
    "UserInputRequest",
    "UserInputResponse",
    "ModelProvider",
    "StreamFragment",
    "ToolExecutionProvider",
]
