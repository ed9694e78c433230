"""Multi-provider chat client.

One ChatClient implementation per provider, looked up by the provider name
of the catalog entry. Callers pass provider-agnostic ChatMessage lists; each
client normalizes system messages the way its provider expects.

Credentials come from the per-request RuntimeConfig and are checked before
any SDK client is constructed, so misconfiguration never reaches the network.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncAzureOpenAI

from taxdraft.app.config import RuntimeConfig
from taxdraft.app.llm.catalog import (
    AZURE_ANTHROPIC,
    AZURE_OPENAI,
    provider_model_name,
    resolve_model,
)
from taxdraft.app.llm.errors import (
    EmptyCompletionError,
    MissingCredentialError,
    ProviderError,
    ProviderTimeoutError,
)
from taxdraft.app.models.chat import (
    ChatMessage,
    Completion,
    ModelDescriptor,
    ProviderStreamEvent,
    StreamDelta,
    StreamDone,
    StreamError,
)
from taxdraft.app.utils.logging import StructuredLLMLogger
from taxdraft.app.utils.metrics import PrometheusChatMetrics

logger = logging.getLogger(__name__)

_metrics = PrometheusChatMetrics()
_call_logger = StructuredLLMLogger()


class ChatClient(Protocol):
    """Uniform blocking and streaming interface over one provider."""

    provider: str
    model: str

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> Completion:
        """Run a blocking completion.

        Raises:
            ProviderError: On failure, timeout or empty completion
        """
        ...

    def stream(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> AsyncIterator[ProviderStreamEvent]:
        """Stream deltas followed by exactly one StreamDone or StreamError."""
        ...


def split_system_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, str]]]:
    """Separate system messages from the conversation.

    Returns:
        System contents joined by a blank line, and the user/assistant turns
        as role/content dicts
    """
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    turns = [{"role": m.role, "content": m.content} for m in messages if m.role != "system"]
    return system, turns


def _record(
    provider: str,
    model: str,
    mode: str,
    outcome: str,
    started: float,
    tokens_in: int = 0,
    tokens_out: int = 0,
    error_reason: str | None = None,
) -> None:
    latency_ms = (time.monotonic() - started) * 1000
    _metrics.record_latency(provider, outcome, latency_ms)
    _metrics.add_tokens(provider, tokens_in, tokens_out)
    _call_logger.log_call(
        provider,
        model,
        mode,
        outcome,
        latency_ms,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        error_reason=error_reason,
    )


class AzureOpenAIChatClient:
    """Azure OpenAI deployment; system messages stay interleaved."""

    provider = AZURE_OPENAI

    def __init__(
        self,
        model: str,
        *,
        endpoint: str,
        api_key: str,
        api_version: str,
        timeout_sec: float = 300.0,
    ) -> None:
        """Initialize client.

        Args:
            model: Deployment name
            endpoint: Azure OpenAI resource endpoint
            api_key: Resource key
            api_version: REST API version
            timeout_sec: Ceiling for one call, streamed or not
        """
        self.model = model
        self._timeout_sec = timeout_sec
        self._client = AsyncAzureOpenAI(
            azure_endpoint=endpoint,
            api_key=api_key,
            api_version=api_version,
            timeout=timeout_sec,
        )

    @staticmethod
    def _payload(messages: list[ChatMessage]) -> list[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in messages]

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> Completion:
        started = time.monotonic()
        try:
            async with asyncio.timeout(self._timeout_sec):
                response = await self._client.chat.completions.create(
                    model=self.model,
                    messages=self._payload(messages),  # type: ignore[arg-type]
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
        except (TimeoutError, openai.APITimeoutError) as e:
            _record(self.provider, self.model, "complete", "timeout", started, error_reason=str(e))
            raise ProviderTimeoutError(
                f"Azure OpenAI did not answer within {self._timeout_sec:.0f}s"
            ) from e
        except openai.APIError as e:
            _record(self.provider, self.model, "complete", "error", started, error_reason=str(e))
            raise ProviderError(f"Azure OpenAI call failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        tokens_in = response.usage.prompt_tokens if response.usage else 0
        tokens_out = response.usage.completion_tokens if response.usage else 0

        if not content or not content.strip():
            _record(self.provider, self.model, "complete", "empty", started, tokens_in, tokens_out)
            raise EmptyCompletionError("Azure OpenAI returned an empty response")

        _record(self.provider, self.model, "complete", "success", started, tokens_in, tokens_out)
        return Completion(content=content, tokens_in=tokens_in, tokens_out=tokens_out)

    async def stream(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> AsyncIterator[ProviderStreamEvent]:
        started = time.monotonic()
        deadline = started + self._timeout_sec
        parts: list[str] = []
        tokens_in = 0
        tokens_out = 0

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=self._payload(messages),  # type: ignore[arg-type]
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
            async with response:
                async for chunk in response:
                    if time.monotonic() > deadline:
                        raise ProviderTimeoutError(
                            f"Azure OpenAI stream exceeded {self._timeout_sec:.0f}s"
                        )
                    if chunk.usage:
                        tokens_in = chunk.usage.prompt_tokens or 0
                        tokens_out = chunk.usage.completion_tokens or 0
                    if chunk.choices:
                        text = chunk.choices[0].delta.content
                        if text:
                            parts.append(text)
                            yield StreamDelta(content=text)
        except Exception as e:
            timed_out = isinstance(e, ProviderTimeoutError | openai.APITimeoutError)
            _record(
                self.provider,
                self.model,
                "stream",
                "timeout" if timed_out else "error",
                started,
                error_reason=str(e),
            )
            message = str(e) if isinstance(e, ProviderError) else f"Azure OpenAI stream failed: {e}"
            yield StreamError(message=message)
            return

        content = "".join(parts)
        if not content.strip():
            _record(self.provider, self.model, "stream", "empty", started, tokens_in, tokens_out)
            yield StreamError(message="Azure OpenAI returned an empty response")
            return

        _record(self.provider, self.model, "stream", "success", started, tokens_in, tokens_out)
        yield StreamDone(content=content, tokens_in=tokens_in, tokens_out=tokens_out)


class AzureAnthropicChatClient:
    """Anthropic models on Azure; system messages go in the dedicated field."""

    provider = AZURE_ANTHROPIC

    def __init__(
        self,
        model: str,
        *,
        endpoint: str,
        api_key: str,
        timeout_sec: float = 300.0,
    ) -> None:
        """Initialize client.

        Args:
            model: Model name
            endpoint: Base URL of the Anthropic-compatible endpoint
            api_key: Endpoint key
            timeout_sec: Ceiling for one call, streamed or not
        """
        self.model = model
        self._timeout_sec = timeout_sec
        self._client = AsyncAnthropic(base_url=endpoint, api_key=api_key, timeout=timeout_sec)

    def _request(
        self, messages: list[ChatMessage], temperature: float, max_tokens: int
    ) -> dict[str, Any]:
        system, turns = split_system_messages(messages)
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": turns,
        }
        if system:
            request["system"] = system
        return request

    async def complete(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> Completion:
        started = time.monotonic()
        try:
            async with asyncio.timeout(self._timeout_sec):
                response = await self._client.messages.create(
                    **self._request(messages, temperature, max_tokens)
                )
        except (TimeoutError, anthropic.APITimeoutError) as e:
            _record(self.provider, self.model, "complete", "timeout", started, error_reason=str(e))
            raise ProviderTimeoutError(
                f"Azure Anthropic did not answer within {self._timeout_sec:.0f}s"
            ) from e
        except anthropic.APIError as e:
            _record(self.provider, self.model, "complete", "error", started, error_reason=str(e))
            raise ProviderError(f"Azure Anthropic call failed: {e}") from e

        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        tokens_in = response.usage.input_tokens if response.usage else 0
        tokens_out = response.usage.output_tokens if response.usage else 0

        if not content.strip():
            _record(self.provider, self.model, "complete", "empty", started, tokens_in, tokens_out)
            raise EmptyCompletionError("Azure Anthropic returned an empty response")

        _record(self.provider, self.model, "complete", "success", started, tokens_in, tokens_out)
        return Completion(content=content, tokens_in=tokens_in, tokens_out=tokens_out)

    async def stream(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> AsyncIterator[ProviderStreamEvent]:
        started = time.monotonic()
        deadline = started + self._timeout_sec
        parts: list[str] = []
        tokens_in = 0
        tokens_out = 0

        try:
            async with self._client.messages.stream(
                **self._request(messages, temperature, max_tokens)
            ) as stream:
                async for text in stream.text_stream:
                    if time.monotonic() > deadline:
                        raise ProviderTimeoutError(
                            f"Azure Anthropic stream exceeded {self._timeout_sec:.0f}s"
                        )
                    if text:
                        parts.append(text)
                        yield StreamDelta(content=text)
                final = await stream.get_final_message()
                if final.usage:
                    tokens_in = final.usage.input_tokens or 0
                    tokens_out = final.usage.output_tokens or 0
        except Exception as e:
            timed_out = isinstance(e, ProviderTimeoutError | anthropic.APITimeoutError)
            _record(
                self.provider,
                self.model,
                "stream",
                "timeout" if timed_out else "error",
                started,
                error_reason=str(e),
            )
            message = (
                str(e) if isinstance(e, ProviderError) else f"Azure Anthropic stream failed: {e}"
            )
            yield StreamError(message=message)
            return

        content = "".join(parts)
        if not content.strip():
            _record(self.provider, self.model, "stream", "empty", started, tokens_in, tokens_out)
            yield StreamError(message="Azure Anthropic returned an empty response")
            return

        _record(self.provider, self.model, "stream", "success", started, tokens_in, tokens_out)
        yield StreamDone(content=content, tokens_in=tokens_in, tokens_out=tokens_out)


def _require(provider_label: str, **settings: str | None) -> None:
    missing = [name for name, value in settings.items() if not value]
    if missing:
        raise MissingCredentialError(provider_label, missing)


def _azure_openai_client(descriptor: ModelDescriptor, config: RuntimeConfig) -> ChatClient:
    _require(
        "Azure OpenAI",
        azure_openai_endpoint=config.azure_openai_endpoint,
        azure_openai_api_key=config.azure_openai_api_key,
    )
    return AzureOpenAIChatClient(
        provider_model_name(descriptor),
        endpoint=config.azure_openai_endpoint,
        api_key=config.azure_openai_api_key,
        api_version=config.azure_openai_api_version,
        timeout_sec=config.llm_request_timeout_sec,
    )


def _azure_anthropic_client(descriptor: ModelDescriptor, config: RuntimeConfig) -> ChatClient:
    _require(
        "Azure Anthropic",
        azure_anthropic_endpoint=config.azure_anthropic_endpoint,
        azure_anthropic_api_key=config.azure_anthropic_api_key,
    )
    return AzureAnthropicChatClient(
        provider_model_name(descriptor),
        endpoint=config.azure_anthropic_endpoint,
        api_key=config.azure_anthropic_api_key,
        timeout_sec=config.llm_request_timeout_sec,
    )


PROVIDERS: dict[str, Callable[[ModelDescriptor, RuntimeConfig], ChatClient]] = {
    AZURE_OPENAI: _azure_openai_client,
    AZURE_ANTHROPIC: _azure_anthropic_client,
}


def get_chat_client(model_id: str, config: RuntimeConfig) -> ChatClient:
    """Resolve a model id to a ready client.

    Raises:
        UnknownModelError: If the id is not in the catalog
        MissingCredentialError: If the provider's credentials are not set
    """
    descriptor = resolve_model(model_id)
    factory = PROVIDERS[descriptor.provider]
    client = factory(descriptor, config)
    logger.info(f"Using {descriptor.provider} client for model {descriptor.id}")
    return client
