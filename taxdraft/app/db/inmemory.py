"""In-memory implementations of repository interfaces."""

from datetime import datetime, timedelta

from taxdraft.app.db.repositories import RetryAfter


class InMemorySettingsStore:
    """In-memory implementation of SettingsStore."""

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(values or {})

    async def get(self, key: str, default: str | None = None) -> str | None:
        """Get a setting value."""
        return self._values.get(key, default)

    async def set(self, key: str, value: str, description: str | None = None) -> None:
        """Create or update a setting."""
        self._values[key] = value


class InMemoryRateLimiter:
    """In-memory implementation of RateLimiter using fixed window."""

    def __init__(self, max_requests: int, window_seconds: int = 60) -> None:
        """Initialize rate limiter.

        Args:
            max_requests: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
        """
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._windows: dict[str, tuple[datetime, int]] = {}

    def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        """Check if quota is available."""
        # Get or create window
        if key in self._windows:
            window_start, count = self._windows[key]

            # Check if window expired
            if now >= window_start + timedelta(seconds=self._window_seconds):
                # New window
                self._windows[key] = (now, 1)
                return None

            # Within same window
            if count >= self._max_requests:
                # Over quota
                seconds_remaining = int(
                    (window_start + timedelta(seconds=self._window_seconds) - now).total_seconds()
                )
                return RetryAfter(seconds=max(1, seconds_remaining))

            # Increment count
            self._windows[key] = (window_start, count + 1)
            return None
        else:
            # First request
            self._windows[key] = (now, 1)
            return None
