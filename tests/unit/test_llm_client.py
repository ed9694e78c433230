"""Tests for the multi-provider chat client.

All tests are deterministic and do not make real network calls.
"""

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from taxdraft.app.config import RuntimeConfig
from taxdraft.app.llm.client import (
    AzureAnthropicChatClient,
    AzureOpenAIChatClient,
    get_chat_client,
    split_system_messages,
)
from taxdraft.app.llm.errors import (
    EmptyCompletionError,
    MissingCredentialError,
    ProviderError,
    UnknownModelError,
)
from taxdraft.app.models.chat import ChatMessage, StreamDelta, StreamDone, StreamError

CONFIGURED = RuntimeConfig(
    azure_openai_endpoint="https://example.openai.azure.com",
    azure_openai_api_key="openai-key",
    azure_anthropic_endpoint="https://example.services.ai.azure.com/anthropic",
    azure_anthropic_api_key="anthropic-key",
)

MESSAGES = [
    ChatMessage(role="system", content="Vous êtes un fiscaliste."),
    ChatMessage(role="user", content="Bonjour"),
    ChatMessage(role="assistant", content="Bonjour, que puis-je faire ?"),
    ChatMessage(role="system", content="Répondez en français."),
    ChatMessage(role="user", content="Rédigez la réponse."),
]


class FakeOpenAIStream:
    """Async stream of chat completion chunks, optionally failing at the end."""

    def __init__(self, chunks: list[Any], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error
        self.closed = False

    async def __aenter__(self) -> "FakeOpenAIStream":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.closed = True

    def __aiter__(self) -> Any:
        return self._iterate()

    async def _iterate(self) -> Any:
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class FakeAnthropicStream:
    """Stand-in for the object returned by AsyncAnthropic.messages.stream()."""

    def __init__(self, texts: list[str], usage: Any) -> None:
        self._texts = texts
        self.get_final_message = AsyncMock(return_value=SimpleNamespace(usage=usage))

    async def __aenter__(self) -> "FakeAnthropicStream":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    @property
    def text_stream(self) -> Any:
        async def _iterate() -> Any:
            for text in self._texts:
                yield text

        return _iterate()


def _delta_chunk(text: str) -> Any:
    choice = SimpleNamespace(delta=SimpleNamespace(content=text))
    return SimpleNamespace(choices=[choice], usage=None)


async def _collect(stream: Any) -> list[Any]:
    return [event async for event in stream]


def test_split_system_messages() -> None:
    system, turns = split_system_messages(MESSAGES)

    assert system == "Vous êtes un fiscaliste.\n\nRépondez en français."
    assert [t["role"] for t in turns] == ["user", "assistant", "user"]


def test_unknown_model_fails_before_client_creation() -> None:
    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        with pytest.raises(UnknownModelError):
            get_chat_client("azure-openai/gpt-99", CONFIGURED)

    mock_openai.assert_not_called()


def test_missing_openai_credentials_name_the_settings() -> None:
    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        with pytest.raises(MissingCredentialError) as exc_info:
            get_chat_client("azure-openai/gpt-4o", RuntimeConfig())

    assert str(exc_info.value) == (
        "Azure OpenAI is not configured. "
        "Set azure_openai_endpoint and azure_openai_api_key in Settings."
    )
    mock_openai.assert_not_called()


def test_missing_anthropic_key_fails_fast() -> None:
    config = RuntimeConfig(azure_anthropic_endpoint="https://example.com/anthropic")

    with patch("taxdraft.app.llm.client.AsyncAnthropic") as mock_anthropic:
        with pytest.raises(MissingCredentialError) as exc_info:
            get_chat_client("azure-anthropic/claude-haiku-3-5", config)

    assert exc_info.value.settings == ["azure_anthropic_api_key"]
    assert str(exc_info.value) == (
        "Azure Anthropic is not configured. Set azure_anthropic_api_key in Settings."
    )
    mock_anthropic.assert_not_called()


def test_missing_openai_endpoint_only_names_the_endpoint() -> None:
    config = RuntimeConfig(azure_openai_api_key="sk-test")

    with pytest.raises(MissingCredentialError) as exc_info:
        get_chat_client("azure-openai/gpt-4o", config)

    assert exc_info.value.settings == ["azure_openai_endpoint"]
    assert "azure_openai_api_key" not in str(exc_info.value)


def test_get_chat_client_dispatches_by_provider() -> None:
    with (
        patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai,
        patch("taxdraft.app.llm.client.AsyncAnthropic") as mock_anthropic,
    ):
        openai_client = get_chat_client("azure-openai/gpt-4.1-mini", CONFIGURED)
        anthropic_client = get_chat_client("azure-anthropic/claude-sonnet-4-5", CONFIGURED)

    assert isinstance(openai_client, AzureOpenAIChatClient)
    assert openai_client.model == "gpt-4.1-mini"
    assert mock_openai.call_args.kwargs["azure_endpoint"] == "https://example.openai.azure.com"
    assert mock_openai.call_args.kwargs["api_version"] == "2024-12-01-preview"

    assert isinstance(anthropic_client, AzureAnthropicChatClient)
    assert anthropic_client.model == "claude-sonnet-4-5"
    assert mock_anthropic.call_args.kwargs["base_url"] == CONFIGURED.azure_anthropic_endpoint


@pytest.mark.asyncio
async def test_openai_complete_passes_messages_interleaved() -> None:
    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="Réponse"))],
                usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
            )
        )
        mock_openai.return_value.chat.completions.create = create
        client = get_chat_client("azure-openai/gpt-4o", CONFIGURED)

        completion = await client.complete(MESSAGES, temperature=0.3, max_tokens=4096)

    assert completion.content == "Réponse"
    assert completion.tokens_in == 120
    assert completion.tokens_out == 30
    kwargs = create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert [m["role"] for m in kwargs["messages"]] == [m.role for m in MESSAGES]


@pytest.mark.asyncio
async def test_openai_empty_completion_raises() -> None:
    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="  "))],
                usage=None,
            )
        )
        client = get_chat_client("azure-openai/gpt-4o", CONFIGURED)

        with pytest.raises(EmptyCompletionError):
            await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_openai_api_error_becomes_provider_error() -> None:
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://example.com"))

    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create = AsyncMock(side_effect=error)
        client = get_chat_client("azure-openai/gpt-4o", CONFIGURED)

        with pytest.raises(ProviderError):
            await client.complete(MESSAGES)


@pytest.mark.asyncio
async def test_anthropic_complete_moves_system_to_dedicated_field() -> None:
    with patch("taxdraft.app.llm.client.AsyncAnthropic") as mock_anthropic:
        create = AsyncMock(
            return_value=SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="Bonjour "),
                    SimpleNamespace(type="text", text="Maître."),
                ],
                usage=SimpleNamespace(input_tokens=80, output_tokens=12),
            )
        )
        mock_anthropic.return_value.messages.create = create
        client = get_chat_client("azure-anthropic/claude-sonnet-4-5", CONFIGURED)

        completion = await client.complete(MESSAGES)

    assert completion.content == "Bonjour Maître."
    assert (completion.tokens_in, completion.tokens_out) == (80, 12)
    kwargs = create.call_args.kwargs
    assert kwargs["system"] == "Vous êtes un fiscaliste.\n\nRépondez en français."
    assert all(m["role"] in ("user", "assistant") for m in kwargs["messages"])
    assert kwargs["model"] == "claude-sonnet-4-5"


@pytest.mark.asyncio
async def test_anthropic_without_system_omits_field() -> None:
    with patch("taxdraft.app.llm.client.AsyncAnthropic") as mock_anthropic:
        create = AsyncMock(
            return_value=SimpleNamespace(
                content=[SimpleNamespace(type="text", text="Oui.")],
                usage=SimpleNamespace(input_tokens=5, output_tokens=1),
            )
        )
        mock_anthropic.return_value.messages.create = create
        client = get_chat_client("azure-anthropic/claude-haiku-3-5", CONFIGURED)

        await client.complete([ChatMessage(role="user", content="Question ?")])

    assert "system" not in create.call_args.kwargs


@pytest.mark.asyncio
async def test_openai_stream_yields_deltas_then_done() -> None:
    stream = FakeOpenAIStream(
        [
            _delta_chunk("Bon"),
            _delta_chunk("jour"),
            SimpleNamespace(
                choices=[], usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4)
            ),
        ]
    )
    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        create = AsyncMock(return_value=stream)
        mock_openai.return_value.chat.completions.create = create
        client = get_chat_client("azure-openai/gpt-4o", CONFIGURED)

        events = await _collect(client.stream(MESSAGES))

    assert events == [
        StreamDelta(content="Bon"),
        StreamDelta(content="jour"),
        StreamDone(content="Bonjour", tokens_in=12, tokens_out=4),
    ]
    assert create.call_args.kwargs["stream"] is True
    assert stream.closed


@pytest.mark.asyncio
async def test_openai_stream_failure_becomes_single_error_event() -> None:
    stream = FakeOpenAIStream([_delta_chunk("Début")], error=RuntimeError("connection reset"))
    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create = AsyncMock(return_value=stream)
        client = get_chat_client("azure-openai/gpt-4o", CONFIGURED)

        events = await _collect(client.stream(MESSAGES))

    assert events[0] == StreamDelta(content="Début")
    assert len(events) == 2
    assert isinstance(events[1], StreamError)
    assert "connection reset" in events[1].message


@pytest.mark.asyncio
async def test_anthropic_stream_reports_usage() -> None:
    usage = SimpleNamespace(input_tokens=50, output_tokens=2)
    fake = FakeAnthropicStream(["Article ", "156"], usage)
    with patch("taxdraft.app.llm.client.AsyncAnthropic") as mock_anthropic:
        mock_anthropic.return_value.messages.stream = MagicMock(return_value=fake)
        client = get_chat_client("azure-anthropic/claude-sonnet-4-5", CONFIGURED)

        events = await _collect(client.stream(MESSAGES))

    assert events[-1] == StreamDone(content="Article 156", tokens_in=50, tokens_out=2)
    assert [e.content for e in events[:-1]] == ["Article ", "156"]
    stream_kwargs = mock_anthropic.return_value.messages.stream.call_args.kwargs
    assert stream_kwargs["system"].startswith("Vous êtes un fiscaliste.")


@pytest.mark.asyncio
async def test_empty_stream_ends_with_error() -> None:
    with patch("taxdraft.app.llm.client.AsyncAzureOpenAI") as mock_openai:
        mock_openai.return_value.chat.completions.create = AsyncMock(
            return_value=FakeOpenAIStream([])
        )
        client = get_chat_client("azure-openai/gpt-4o", CONFIGURED)

        events = await _collect(client.stream(MESSAGES))

    assert len(events) == 1
    assert isinstance(events[0], StreamError)
