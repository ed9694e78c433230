"""Chat domain models: catalog entries, messages and stream events."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant"]


class ModelDescriptor(BaseModel):
    """Static catalog entry for a selectable language model."""

    id: str  # "<provider>/<model-name>"
    display_name: str
    provider: str


class ChatMessage(BaseModel):
    """Provider-agnostic message passed to a chat client."""

    role: Role
    content: str


class Completion(BaseModel):
    """Result of a blocking provider call."""

    content: str
    tokens_in: int = 0
    tokens_out: int = 0


class StoredMessage(BaseModel):
    """Persisted conversation message."""

    id: UUID
    question_id: UUID
    role: Role
    content: str
    model: str | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    created_at: datetime


class ChatOptions(BaseModel):
    """Per-turn options supplied by the caller."""

    system_prompt_override: str | None = None
    auto_apply: bool = False
    include_documents: bool = True
    document_ids: list[UUID] | None = None


class ChatRequest(ChatOptions):
    """Request body for the chat endpoints."""

    message: str = Field(..., min_length=1, description="User message")
    model: str = Field(..., min_length=1, description="Model id, e.g. azure-openai/gpt-4.1-mini")


class ChatResponse(BaseModel):
    """Result of a blocking chat turn."""

    id: UUID
    content: str
    model: str
    tokens_in: int
    tokens_out: int
    created_at: datetime


# Stream events. A stream yields any number of deltas and then exactly one
# terminal event (done or error).


class StreamDelta(BaseModel):
    """Incremental text."""

    type: Literal["delta"] = "delta"
    content: str


class StreamDone(BaseModel):
    """Terminal success event from a provider stream."""

    type: Literal["done"] = "done"
    content: str
    tokens_in: int = 0
    tokens_out: int = 0


class StreamError(BaseModel):
    """Terminal failure event."""

    type: Literal["error"] = "error"
    message: str


class ChatTurnDone(BaseModel):
    """Terminal success event of a chat turn, sent after persistence."""

    type: Literal["done"] = "done"
    id: UUID
    content: str
    model: str
    tokens_in: int
    tokens_out: int


ProviderStreamEvent = StreamDelta | StreamDone | StreamError
ChatTurnEvent = StreamDelta | ChatTurnDone | StreamError
