"""Pairing code repository – CRUD for telegram_link_codes.

Datetimes are stored as naive UTC; SQLite has no timezone support.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tablebot.models.pairing_code import PairingCode


class PairingRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def exists(self, code: str) -> bool:
        result = await self._s.execute(
            select(PairingCode.code).where(PairingCode.code == code)
        )
        return result.scalar_one_or_none() is not None

    async def get(self, code: str) -> PairingCode | None:
        result = await self._s.execute(
            select(PairingCode).where(PairingCode.code == code)
        )
        return result.scalar_one_or_none()

    async def create(self, code: str, created_at: datetime, expires_at: datetime) -> None:
        self._s.add(PairingCode(code=code, created_at=created_at, expires_at=expires_at))
        await self._s.commit()

    async def delete(self, code: str) -> None:
        await self._s.execute(delete(PairingCode).where(PairingCode.code == code))
        await self._s.commit()

    async def mark_used(self, code: str, chat_id: str, now: datetime) -> bool:
        """Claim *code* for *chat_id* only if it is still unused and unexpired.

        Returns True if this call claimed the code. Under concurrent calls at
        most one returns True: SQLite serializes the writers and the losers'
        ``WHERE`` no longer matches.
        """
        result = await self._s.execute(
            update(PairingCode)
            .where(
                PairingCode.code == code,
                PairingCode.used_at.is_(None),
                PairingCode.expires_at >= now,
            )
            .values(used_at=now, chat_id=chat_id)
        )
        await self._s.commit()
        return (result.rowcount or 0) == 1

    async def purge_expired(self, now: datetime) -> int:
        """Delete expired codes that were never used. Returns the count."""
        result = await self._s.execute(
            delete(PairingCode).where(
                PairingCode.expires_at < now,
                PairingCode.used_at.is_(None),
            )
        )
        await self._s.commit()
        return result.rowcount or 0
