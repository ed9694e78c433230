"""SQL implementations of repository interfaces."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.db.models import Setting


class SqlSettingsStore:
    """SQL implementation of SettingsStore over the settings table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, key: str, default: str | None = None) -> str | None:
        """Get a setting value, or default when the key is absent."""
        result = await self._session.execute(select(Setting.value).where(Setting.key == key))
        value = result.scalar_one_or_none()
        return value if value is not None else default

    async def set(self, key: str, value: str, description: str | None = None) -> None:
        """Create or update a setting and commit."""
        setting = await self._session.get(Setting, key)
        if setting is None:
            setting = Setting(key=key, value=value, description=description)
            self._session.add(setting)
        else:
            setting.value = value
            if description is not None:
                setting.description = description

        await self._session.commit()
