"""Repository protocol interfaces for data access."""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


class SettingsStore(Protocol):
    """Key/value store for runtime settings (credentials, instructions)."""

    async def get(self, key: str, default: str | None = None) -> str | None:
        """Get a setting value.

        Args:
            key: Setting key
            default: Value returned when the key is absent

        Returns:
            Stored value, default, or None
        """
        ...

    async def set(self, key: str, value: str, description: str | None = None) -> None:
        """Create or update a setting.

        Args:
            key: Setting key
            value: New value
            description: Optional human-readable description
        """
        ...


@dataclass
class RetryAfter:
    """Rate limit retry-after information."""

    seconds: int


class RateLimiter(Protocol):
    """Rate limiter interface."""

    def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        """Check if quota is available.

        Args:
            key: Rate limit key
            now: Current timestamp

        Returns:
            RetryAfter if over quota, None if allowed
        """
        ...
