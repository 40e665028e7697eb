"""Settings repository – the singleton ``settings`` row (encrypted values)."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from tablebot.models.settings_row import SETTINGS_ROW_ID, SettingsRow


class SettingsRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def ensure_row(self) -> None:
        """Insert the empty singleton row if it is missing."""
        stmt = (
            sqlite_insert(SettingsRow)
            .values(id=SETTINGS_ROW_ID, bot_id=None, chat_id=None, admin_chat=None)
            .on_conflict_do_nothing(index_elements=["id"])
        )
        await self._s.execute(stmt)
        await self._s.commit()

    async def get(self) -> SettingsRow | None:
        result = await self._s.execute(
            select(SettingsRow)
            .where(SettingsRow.id == SETTINGS_ROW_ID)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update(self, **values: str | None) -> None:
        """Overwrite the given encrypted columns (``bot_id``, ``chat_id``, ``admin_chat``)."""
        if not values:
            return
        await self._s.execute(
            update(SettingsRow).where(SettingsRow.id == SETTINGS_ROW_ID).values(**values)
        )
        await self._s.commit()
