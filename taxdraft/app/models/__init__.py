"""Models package - re-exports for convenience."""

from taxdraft.app.models.chat import (
    ChatMessage,
    ChatOptions,
    ChatRequest,
    ChatResponse,
    ChatTurnDone,
    ChatTurnEvent,
    Completion,
    ModelDescriptor,
    ProviderStreamEvent,
    Role,
    StoredMessage,
    StreamDelta,
    StreamDone,
    StreamError,
)
from taxdraft.app.models.docs import DocType, IndexedChunk, RetrievalResult

__all__ = [
    # Chat
    "ChatMessage",
    "ChatOptions",
    "ChatRequest",
    "ChatResponse",
    "ChatTurnDone",
    "ChatTurnEvent",
    "Completion",
    "ModelDescriptor",
    "ProviderStreamEvent",
    "Role",
    "StoredMessage",
    "StreamDelta",
    "StreamDone",
    "StreamError",
    # Docs
    "DocType",
    "IndexedChunk",
    "RetrievalResult",
]
