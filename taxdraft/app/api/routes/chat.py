"""Chat endpoints - model catalog, chat turns (blocking and SSE), history."""

import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.api.deps import get_retriever, get_runtime_config
from taxdraft.app.chat.context import effective_base_instruction
from taxdraft.app.chat.service import ChatService, PreparedTurn, QuestionNotFoundError
from taxdraft.app.config import RuntimeConfig
from taxdraft.app.db.conversations import clear_messages, get_messages
from taxdraft.app.db.engine import get_session
from taxdraft.app.db.questions import QuestionContext, get_question_context
from taxdraft.app.docs.retriever import HybridRetriever
from taxdraft.app.llm.catalog import list_models
from taxdraft.app.llm.errors import ConfigurationError, ProviderError
from taxdraft.app.models.chat import (
    ChatRequest,
    ChatResponse,
    ModelDescriptor,
    StoredMessage,
    StreamError,
)
from taxdraft.app.ratelimit import enforce_chat_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()


class SystemPromptResponse(BaseModel):
    """Response for GET /questions/{question_id}/system-prompt."""

    question_id: uuid.UUID
    system_prompt: str


class ClearMessagesResponse(BaseModel):
    """Response for DELETE /questions/{question_id}/messages."""

    question_id: uuid.UUID
    deleted: int


def get_chat_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    config: Annotated[RuntimeConfig, Depends(get_runtime_config)],
    retriever: Annotated[HybridRetriever, Depends(get_retriever)],
) -> ChatService:
    return ChatService(session, config, retriever)


async def _require_question(session: AsyncSession, question_id: uuid.UUID) -> QuestionContext:
    question = await get_question_context(session, question_id)
    if question is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Question not found",
        )
    return question


async def _prepare(
    service: ChatService, question_id: uuid.UUID, request: ChatRequest
) -> PreparedTurn:
    try:
        return await service.prepare(question_id, request)
    except QuestionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


@router.get("/llm/models", response_model=list[ModelDescriptor])
async def get_models() -> list[ModelDescriptor]:
    """List selectable models."""
    return list_models()


@router.get("/questions/{question_id}/system-prompt", response_model=SystemPromptResponse)
async def get_system_prompt(
    question_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)],
    config: Annotated[RuntimeConfig, Depends(get_runtime_config)],
) -> SystemPromptResponse:
    """Effective base instruction for a question (case instruction > global default)."""
    question = await _require_question(session, question_id)
    return SystemPromptResponse(
        question_id=question_id,
        system_prompt=effective_base_instruction(question, config),
    )


@router.post(
    "/questions/{question_id}/chat",
    response_model=ChatResponse,
    dependencies=[Depends(enforce_chat_rate_limit)],
)
async def chat(
    question_id: uuid.UUID,
    request: ChatRequest,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> ChatResponse:
    """Run a blocking chat turn.

    Returns:
        The stored assistant reply

    Raises:
        HTTPException: 404 unknown question, 400 misconfiguration, 502 provider failure
    """
    turn = await _prepare(service, question_id, request)
    try:
        return await service.complete(turn)
    except ProviderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e


@router.post(
    "/questions/{question_id}/chat/stream",
    dependencies=[Depends(enforce_chat_rate_limit)],
)
async def chat_stream(
    question_id: uuid.UUID,
    request: ChatRequest,
    service: Annotated[ChatService, Depends(get_chat_service)],
) -> StreamingResponse:
    """Run a streaming chat turn via SSE.

    Emits delta events, then one done event (after the reply is stored) or
    one error event. Validation errors are returned before the stream opens.
    """
    turn = await _prepare(service, question_id, request)

    async def event_generator() -> AsyncGenerator[str, None]:
        """Generate SSE events."""
        try:
            async for event in service.stream(turn):
                yield f"data: {event.model_dump_json()}\n\n"
        except Exception as e:
            logger.error(f"Chat stream for question {question_id} aborted: {e}", exc_info=True)
            yield f"data: {StreamError(message=str(e)).model_dump_json()}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("/questions/{question_id}/messages", response_model=list[StoredMessage])
async def list_question_messages(
    question_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[StoredMessage]:
    """Conversation of a question, oldest first."""
    await _require_question(session, question_id)
    return await get_messages(session, question_id)


@router.delete("/questions/{question_id}/messages", response_model=ClearMessagesResponse)
async def clear_question_messages(
    question_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ClearMessagesResponse:
    """Clear a question's conversation; the response field is left untouched."""
    await _require_question(session, question_id)
    deleted = await clear_messages(session, question_id)
    return ClearMessagesResponse(question_id=question_id, deleted=deleted)
