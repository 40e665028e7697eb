"""Reservation repository – read-only queries over the ``tables`` table."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tablebot.models.reservation import Reservation


class ReservationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._s = session

    async def list_for_date(self, date: str) -> list[Reservation]:
        """Return reservations on *date* (``YYYY-MM-DD``), earliest first."""
        result = await self._s.execute(
            select(Reservation)
            .where(Reservation.date == date)
            .order_by(Reservation.time.asc(), Reservation.id.asc())
        )
        return list(result.scalars().all())
