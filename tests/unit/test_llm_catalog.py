"""Unit tests for the model catalog."""

import pytest

from taxdraft.app.llm.catalog import (
    AZURE_ANTHROPIC,
    AZURE_OPENAI,
    list_models,
    provider_model_name,
    resolve_model,
)
from taxdraft.app.llm.errors import ConfigurationError, UnknownModelError


def test_catalog_ids_are_provider_prefixed() -> None:
    models = list_models()

    assert models
    assert len({m.id for m in models}) == len(models)
    for m in models:
        assert m.id.startswith(f"{m.provider}/")
        assert m.provider in (AZURE_OPENAI, AZURE_ANTHROPIC)


def test_resolve_known_model() -> None:
    descriptor = resolve_model("azure-anthropic/claude-sonnet-4-5")

    assert descriptor.provider == AZURE_ANTHROPIC
    assert descriptor.display_name == "Claude Sonnet 4.5"
    assert provider_model_name(descriptor) == "claude-sonnet-4-5"


def test_resolve_unknown_model_names_valid_set() -> None:
    with pytest.raises(UnknownModelError) as exc_info:
        resolve_model("openai/gpt-5")

    message = str(exc_info.value)
    assert "openai/gpt-5" in message
    assert "azure-openai/gpt-4o" in message
    assert "azure-anthropic/claude-haiku-3-5" in message
    assert isinstance(exc_info.value, ConfigurationError)
