"""SettingsRow model – the singleton row holding encrypted bot settings."""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from tablebot.db.base import Base

SETTINGS_ROW_ID = 1


class SettingsRow(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # All three hold SecretCodec payloads, never plaintext.
    bot_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    chat_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_chat: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (CheckConstraint("id = 1", name="settings_singleton"),)

    def __repr__(self) -> str:
        configured = [name for name in ("bot_id", "chat_id", "admin_chat") if getattr(self, name)]
        return f"<SettingsRow configured={configured}>"
