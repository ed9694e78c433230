"""Integration tests for chat turns: persistence, streaming, auto-apply."""

from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.chat.service import ChatService, QuestionNotFoundError
from taxdraft.app.config import RuntimeConfig, Settings
from taxdraft.app.db.conversations import append_message, clear_messages, get_messages
from taxdraft.app.db.models import Question
from taxdraft.app.docs.retriever import HybridRetriever
from taxdraft.app.llm.client import get_chat_client
from taxdraft.app.llm.errors import MissingCredentialError, ProviderError, UnknownModelError
from taxdraft.app.models.chat import (
    ChatMessage,
    ChatRequest,
    ChatTurnDone,
    Completion,
    ProviderStreamEvent,
    StreamDelta,
    StreamDone,
    StreamError,
)

CONFIG = RuntimeConfig(default_system_prompt="Vous êtes un fiscaliste.")
MODEL = "azure-openai/gpt-4.1-mini"


class FakeChatClient:
    """Scripted provider client."""

    provider = "fake"
    model = "fake-model"

    def __init__(
        self,
        reply: str = "Projet de réponse.",
        *,
        fail: bool = False,
        stream_events: list[ProviderStreamEvent] | None = None,
    ) -> None:
        self.reply = reply
        self.fail = fail
        self.stream_events = stream_events
        self.seen: list[list[ChatMessage]] = []
        self.stream_closed = False

    async def complete(
        self, messages: list[ChatMessage], *, temperature: float = 0.3, max_tokens: int = 4096
    ) -> Completion:
        self.seen.append(list(messages))
        if self.fail:
            raise ProviderError("Azure OpenAI call failed: boom")
        return Completion(content=self.reply, tokens_in=100, tokens_out=20)

    async def stream(
        self, messages: list[ChatMessage], *, temperature: float = 0.3, max_tokens: int = 4096
    ) -> AsyncIterator[ProviderStreamEvent]:
        self.seen.append(list(messages))
        events = self.stream_events
        if events is None:
            events = [
                StreamDelta(content="Projet "),
                StreamDelta(content="de réponse."),
                StreamDone(content="Projet de réponse.", tokens_in=90, tokens_out=4),
            ]
        try:
            for event in events:
                yield event
        finally:
            self.stream_closed = True


def _service(session: AsyncSession, client: FakeChatClient) -> ChatService:
    return ChatService(
        session,
        CONFIG,
        HybridRetriever(session),
        settings=Settings(),
        client_factory=lambda model_id, config: client,
    )


@pytest.mark.asyncio
async def test_conversation_sequence_and_clear(session: AsyncSession, seeded: Any) -> None:
    await append_message(session, seeded.question1_id, "system", "Instruction")
    await append_message(session, seeded.question1_id, "user", "Bonjour", model=MODEL)
    await append_message(session, seeded.question2_id, "user", "Autre question", model=MODEL)

    messages = await get_messages(session, seeded.question1_id)
    assert [(m.role, m.content) for m in messages] == [
        ("system", "Instruction"),
        ("user", "Bonjour"),
    ]
    assert messages[1].model == MODEL

    assert await clear_messages(session, seeded.question1_id) == 2
    assert await get_messages(session, seeded.question1_id) == []
    assert len(await get_messages(session, seeded.question2_id)) == 1


@pytest.mark.asyncio
async def test_first_turn_seeds_system_message(session: AsyncSession, seeded: Any) -> None:
    client = FakeChatClient()
    service = _service(session, client)

    response = await service.chat(seeded.question2_id, ChatRequest(message="Rédige", model=MODEL))

    messages = await get_messages(session, seeded.question2_id)
    assert [m.role for m in messages] == ["system", "user", "assistant"]
    assert messages[0].content.startswith("Vous êtes un fiscaliste.")
    assert "HISTORIQUE DES TOURS PRÉCÉDENTS" in messages[0].content
    assert messages[2].content == "Projet de réponse."
    assert (messages[2].tokens_in, messages[2].tokens_out) == (100, 20)
    assert response.id == messages[2].id
    assert response.model == MODEL

    # The provider saw the full history, ending with the user message
    assert [m.role for m in client.seen[0]] == ["system", "user"]


@pytest.mark.asyncio
async def test_system_message_is_seeded_once(session: AsyncSession, seeded: Any) -> None:
    client = FakeChatClient()
    service = _service(session, client)

    await service.chat(seeded.question1_id, ChatRequest(message="Premier", model=MODEL))
    await service.chat(seeded.question1_id, ChatRequest(message="Second", model=MODEL))

    roles = [m.role for m in await get_messages(session, seeded.question1_id)]
    assert roles == ["system", "user", "assistant", "user", "assistant"]
    assert [m.role for m in client.seen[1]] == roles[:4]


@pytest.mark.asyncio
async def test_auto_apply_updates_response_after_reply(
    session: AsyncSession, seeded: Any
) -> None:
    service = _service(session, FakeChatClient("Réponse définitive."))

    await service.chat(
        seeded.question2_id, ChatRequest(message="Rédige", model=MODEL, auto_apply=True)
    )

    question = await session.get(Question, seeded.question2_id, populate_existing=True)
    assert question is not None
    assert question.response_text == "Réponse définitive."


@pytest.mark.asyncio
async def test_without_auto_apply_response_is_untouched(
    session: AsyncSession, seeded: Any
) -> None:
    service = _service(session, FakeChatClient("Brouillon."))

    await service.chat(seeded.question2_id, ChatRequest(message="Rédige", model=MODEL))

    question = await session.get(Question, seeded.question2_id, populate_existing=True)
    assert question is not None
    assert question.response_text is None


@pytest.mark.asyncio
async def test_provider_failure_keeps_user_message(session: AsyncSession, seeded: Any) -> None:
    service = _service(session, FakeChatClient(fail=True))

    with pytest.raises(ProviderError):
        await service.chat(
            seeded.question2_id, ChatRequest(message="Rédige", model=MODEL, auto_apply=True)
        )

    roles = [m.role for m in await get_messages(session, seeded.question2_id)]
    assert roles == ["system", "user"]
    question = await session.get(Question, seeded.question2_id, populate_existing=True)
    assert question is not None
    assert question.response_text is None


@pytest.mark.asyncio
async def test_missing_credentials_write_nothing(session: AsyncSession, seeded: Any) -> None:
    service = ChatService(session, RuntimeConfig(), HybridRetriever(session), settings=Settings())

    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        with pytest.raises(MissingCredentialError):
            await service.chat(seeded.question2_id, ChatRequest(message="Rédige", model=MODEL))

    mock_openai.assert_not_called()
    assert await get_messages(session, seeded.question2_id) == []


@pytest.mark.asyncio
async def test_unknown_model_writes_nothing(session: AsyncSession, seeded: Any) -> None:
    service = ChatService(
        session, CONFIG, HybridRetriever(session), client_factory=get_chat_client
    )

    with pytest.raises(UnknownModelError):
        await service.chat(
            seeded.question2_id, ChatRequest(message="Rédige", model="openai/gpt-5")
        )

    assert await get_messages(session, seeded.question2_id) == []


@pytest.mark.asyncio
async def test_unknown_question(session: AsyncSession, seeded: Any) -> None:
    service = _service(session, FakeChatClient())

    with pytest.raises(QuestionNotFoundError):
        await service.chat(seeded.round1_id, ChatRequest(message="Rédige", model=MODEL))


@pytest.mark.asyncio
async def test_blank_instruction_and_no_context_still_seeds_question(
    session: AsyncSession, seeded: Any
) -> None:
    service = ChatService(
        session,
        RuntimeConfig(),
        HybridRetriever(session),
        settings=Settings(),
        client_factory=lambda model_id, config: FakeChatClient(),
    )

    await service.chat(
        seeded.question1_id,
        ChatRequest(message="Rédige", model=MODEL, include_documents=False),
    )

    messages = await get_messages(session, seeded.question1_id)
    assert messages[0].role == "system"
    assert messages[0].content.startswith("---\nQUESTION DU CONTRÔLEUR")


@pytest.mark.asyncio
async def test_stream_persists_after_done(session: AsyncSession, seeded: Any) -> None:
    client = FakeChatClient()
    service = _service(session, client)
    request = ChatRequest(message="Rédige", model=MODEL, auto_apply=True)

    turn = await service.prepare(seeded.question2_id, request)
    events = [event async for event in service.stream(turn)]

    assert [type(e) for e in events] == [StreamDelta, StreamDelta, ChatTurnDone]
    done = events[-1]
    assert isinstance(done, ChatTurnDone)
    assert done.content == "Projet de réponse."
    assert (done.tokens_in, done.tokens_out) == (90, 4)

    messages = await get_messages(session, seeded.question2_id)
    assert messages[-1].role == "assistant"
    assert messages[-1].id == done.id
    question = await session.get(Question, seeded.question2_id, populate_existing=True)
    assert question is not None
    assert question.response_text == "Projet de réponse."


@pytest.mark.asyncio
async def test_stream_error_persists_nothing(session: AsyncSession, seeded: Any) -> None:
    client = FakeChatClient(
        stream_events=[
            StreamDelta(content="Début"),
            StreamError(message="Azure OpenAI stream failed: reset"),
        ]
    )
    service = _service(session, client)

    turn = await service.prepare(
        seeded.question2_id, ChatRequest(message="Rédige", model=MODEL, auto_apply=True)
    )
    events = [event async for event in service.stream(turn)]

    assert isinstance(events[-1], StreamError)
    roles = [m.role for m in await get_messages(session, seeded.question2_id)]
    assert roles == ["system", "user"]
    question = await session.get(Question, seeded.question2_id, populate_existing=True)
    assert question is not None
    assert question.response_text is None


@pytest.mark.asyncio
async def test_stream_without_terminal_event_reports_error(
    session: AsyncSession, seeded: Any
) -> None:
    client = FakeChatClient(stream_events=[StreamDelta(content="Coupé")])
    service = _service(session, client)

    turn = await service.prepare(seeded.question2_id, ChatRequest(message="Rédige", model=MODEL))
    events = [event async for event in service.stream(turn)]

    assert isinstance(events[-1], StreamError)
    assert [m.role for m in await get_messages(session, seeded.question2_id)][-1] == "user"


@pytest.mark.asyncio
async def test_abandoned_stream_persists_nothing(session: AsyncSession, seeded: Any) -> None:
    client = FakeChatClient(
        stream_events=[
            StreamDelta(content="Un "),
            StreamDelta(content="deux "),
            StreamDelta(content="trois"),
            StreamDone(content="Un deux trois", tokens_in=1, tokens_out=3),
        ]
    )
    service = _service(session, client)
    turn = await service.prepare(seeded.question2_id, ChatRequest(message="Rédige", model=MODEL))

    gen = service.stream(turn)
    received = [await gen.__anext__(), await gen.__anext__()]
    await gen.aclose()  # type: ignore[attr-defined]

    assert [e.content for e in received] == ["Un ", "deux "]  # type: ignore[union-attr]
    assert client.stream_closed
    roles = [m.role for m in await get_messages(session, seeded.question2_id)]
    assert roles == ["system", "user"]
