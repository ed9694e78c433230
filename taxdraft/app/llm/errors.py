"""Chat error taxonomy."""


class ChatError(Exception):
    """Base class for chat failures surfaced to callers."""


class ConfigurationError(ChatError):
    """Invalid or incomplete configuration; raised before any network call."""


class UnknownModelError(ConfigurationError):
    """Model id not present in the catalog."""

    def __init__(self, model_id: str, valid_ids: list[str]) -> None:
        self.model_id = model_id
        self.valid_ids = valid_ids
        super().__init__(f"Unknown model '{model_id}'. Valid models: {', '.join(valid_ids)}")


class MissingCredentialError(ConfigurationError):
    """A provider credential is not set."""

    def __init__(self, provider_label: str, settings: list[str]) -> None:
        self.settings = settings
        super().__init__(
            f"{provider_label} is not configured. "
            f"Set {' and '.join(settings)} in Settings."
        )


class ProviderError(ChatError):
    """The provider call failed or returned an unusable response."""


class EmptyCompletionError(ProviderError):
    """The provider returned no content."""


class ProviderTimeoutError(ProviderError):
    """The provider call exceeded the request ceiling."""
