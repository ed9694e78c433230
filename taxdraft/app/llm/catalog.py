"""Static catalog of selectable models."""

from taxdraft.app.llm.errors import UnknownModelError
from taxdraft.app.models.chat import ModelDescriptor

AZURE_OPENAI = "azure-openai"
AZURE_ANTHROPIC = "azure-anthropic"

MODEL_CATALOG: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(id="azure-openai/gpt-4o", display_name="GPT-4o", provider=AZURE_OPENAI),
    ModelDescriptor(id="azure-openai/gpt-4.1", display_name="GPT-4.1", provider=AZURE_OPENAI),
    ModelDescriptor(
        id="azure-openai/gpt-4.1-mini", display_name="GPT-4.1 Mini", provider=AZURE_OPENAI
    ),
    ModelDescriptor(
        id="azure-openai/gpt-4.1-nano", display_name="GPT-4.1 Nano", provider=AZURE_OPENAI
    ),
    ModelDescriptor(
        id="azure-anthropic/claude-sonnet-4-5",
        display_name="Claude Sonnet 4.5",
        provider=AZURE_ANTHROPIC,
    ),
    ModelDescriptor(
        id="azure-anthropic/claude-haiku-3-5",
        display_name="Claude Haiku 3.5",
        provider=AZURE_ANTHROPIC,
    ),
)

_BY_ID = {m.id: m for m in MODEL_CATALOG}


def list_models() -> list[ModelDescriptor]:
    """All selectable models, in catalog order."""
    return list(MODEL_CATALOG)


def resolve_model(model_id: str) -> ModelDescriptor:
    """Look up a model id.

    Raises:
        UnknownModelError: If the id is not in the catalog
    """
    descriptor = _BY_ID.get(model_id)
    if descriptor is None:
        raise UnknownModelError(model_id, [m.id for m in MODEL_CATALOG])
    return descriptor


def provider_model_name(descriptor: ModelDescriptor) -> str:
    """Deployment/model name sent to the provider (id without the provider prefix)."""
    prefix = f"{descriptor.provider}/"
    if descriptor.id.startswith(prefix):
        return descriptor.id[len(prefix) :]
    return descriptor.id
