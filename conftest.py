"""Global pytest configuration."""

import os

# Set DATABASE_URL for tests before any imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
# Runtime credentials must come from each test, never from the developer's environment
for _key in (
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_KEY",
    "AZURE_ANTHROPIC_ENDPOINT",
    "AZURE_ANTHROPIC_API_KEY",
    "AZURE_SEARCH_ENDPOINT",
    "AZURE_SEARCH_KEY",
    "DEFAULT_SYSTEM_PROMPT",
    "REDIS_URL",
):
    os.environ.pop(_key, None)
