"""Reservation model – rows of the ``tables`` table, read by /status."""

from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tablebot.db.base import Base


class Reservation(Base):
    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table: Mapped[str | None] = mapped_column("table", Text, nullable=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    person: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time: Mapped[str | None] = mapped_column(Text, nullable=True)  # "HH:MM"
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[str | None] = mapped_column(String(10), nullable=True)  # "YYYY-MM-DD"
    user_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_tables_date", "date"),)

    def __repr__(self) -> str:
        return f"<Reservation {self.id} {self.date} {self.time} table={self.table}>"
