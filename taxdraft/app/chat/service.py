"""Conversation turns: system prompt seeding, provider call, persistence.

A turn runs in two phases. prepare() resolves the question and the chat
client (so configuration errors surface before anything is written), seeds
the system message on the first turn, stores the user message and reloads
the history. complete() or stream() then calls the provider and stores the
assistant reply once it is final; auto-apply happens only after that write.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.chat.context import build_system_prompt
from taxdraft.app.config import RuntimeConfig, Settings, get_settings
from taxdraft.app.db.conversations import append_message, get_messages
from taxdraft.app.db.questions import (
    QuestionContext,
    get_question_context,
    set_question_response,
)
from taxdraft.app.docs.retriever import HybridRetriever
from taxdraft.app.llm.client import ChatClient, get_chat_client
from taxdraft.app.models.chat import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatTurnDone,
    ChatTurnEvent,
    StoredMessage,
    StreamDelta,
    StreamDone,
    StreamError,
)

logger = logging.getLogger(__name__)


class QuestionNotFoundError(LookupError):
    """The question id does not exist."""

    def __init__(self, question_id: uuid.UUID) -> None:
        self.question_id = question_id
        super().__init__(f"Question {question_id} not found")


@dataclass
class PreparedTurn:
    """State handed from prepare() to complete()/stream()."""

    question: QuestionContext
    request: ChatRequest
    client: ChatClient
    history: list[ChatMessage]


class ChatService:
    """Runs chat turns for questions."""

    def __init__(
        self,
        session: AsyncSession,
        config: RuntimeConfig,
        retriever: HybridRetriever,
        *,
        settings: Settings | None = None,
        client_factory: Callable[[str, RuntimeConfig], ChatClient] = get_chat_client,
    ) -> None:
        """Initialize service.

        Args:
            session: Database session
            config: Runtime configuration for this request
            retriever: Retriever used to build the system prompt
            settings: Static settings
            client_factory: Resolves a model id to a chat client
        """
        self._session = session
        self._config = config
        self._retriever = retriever
        self._settings = settings or get_settings()
        self._client_factory = client_factory

    async def prepare(self, question_id: uuid.UUID, request: ChatRequest) -> PreparedTurn:
        """Validate, seed the system message if needed and store the user message.

        Raises:
            QuestionNotFoundError: If the question does not exist
            ConfigurationError: Unknown model or missing credentials (nothing written)
        """
        question = await get_question_context(self._session, question_id)
        if question is None:
            raise QuestionNotFoundError(question_id)

        client = self._client_factory(request.model, self._config)

        existing = await get_messages(self._session, question_id)
        if not existing:
            prompt = await build_system_prompt(
                self._session,
                question,
                request,
                self._retriever,
                self._config,
                self._settings,
            )
            if prompt.strip():
                await append_message(self._session, question_id, "system", prompt)

        await append_message(
            self._session, question_id, "user", request.message, model=request.model
        )

        history = [
            ChatMessage(role=m.role, content=m.content)
            for m in await get_messages(self._session, question_id)
        ]
        return PreparedTurn(question=question, request=request, client=client, history=history)

    async def _finish(
        self, turn: PreparedTurn, content: str, tokens_in: int, tokens_out: int
    ) -> StoredMessage:
        stored = await append_message(
            self._session,
            turn.question.question_id,
            "assistant",
            content,
            model=turn.request.model,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )
        if turn.request.auto_apply:
            await set_question_response(self._session, turn.question.question_id, content)
            logger.info(f"Auto-applied assistant reply to question {turn.question.question_id}")
        return stored

    async def complete(self, turn: PreparedTurn) -> ChatResponse:
        """Blocking provider call; stores and returns the assistant reply.

        Raises:
            ProviderError: On provider failure (the user message stays stored)
        """
        completion = await turn.client.complete(
            turn.history,
            temperature=self._config.chat_temperature,
            max_tokens=self._config.chat_max_tokens,
        )
        stored = await self._finish(
            turn, completion.content, completion.tokens_in, completion.tokens_out
        )
        return ChatResponse(
            id=stored.id,
            content=stored.content,
            model=turn.request.model,
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
            created_at=stored.created_at,
        )

    async def stream(self, turn: PreparedTurn) -> AsyncIterator[ChatTurnEvent]:
        """Stream the reply; yields deltas then one done or one error event.

        The assistant message is stored only after the provider's terminal
        success event. If the consumer stops early, the provider stream is
        closed and nothing is stored.
        """
        provider_stream = turn.client.stream(
            turn.history,
            temperature=self._config.chat_temperature,
            max_tokens=self._config.chat_max_tokens,
        )
        async with aclosing(provider_stream) as events:
            async for event in events:
                if isinstance(event, StreamDelta):
                    yield event
                elif isinstance(event, StreamError):
                    logger.warning(
                        f"Chat stream for question {turn.question.question_id} failed: "
                        f"{event.message}"
                    )
                    yield event
                    return
                elif isinstance(event, StreamDone):
                    stored = await self._finish(
                        turn, event.content, event.tokens_in, event.tokens_out
                    )
                    yield ChatTurnDone(
                        id=stored.id,
                        content=stored.content,
                        model=turn.request.model,
                        tokens_in=event.tokens_in,
                        tokens_out=event.tokens_out,
                    )
                    return

        yield StreamError(message="Provider stream ended without a final response")

    async def chat(self, question_id: uuid.UUID, request: ChatRequest) -> ChatResponse:
        """Run a full blocking turn."""
        turn = await self.prepare(question_id, request)
        return await self.complete(turn)
