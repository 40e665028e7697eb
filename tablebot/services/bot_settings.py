"""Bot settings – decrypt/encrypt the singleton settings row."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from tablebot.db.repositories.settings_repo import SettingsRepo
from tablebot.services.secrets import SecretCodec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BotSettings:
    """Plaintext view of the settings row."""

    bot_token: str | None = None
    chat_id: str | None = None  # notify chat
    admin_chat: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        # Key names are the ones the admin UI has always used.
        return {
            "bot_id": self.bot_token,
            "chat_id": self.chat_id,
            "admin_chat": self.admin_chat,
        }


def mask_token(token: str | None) -> str:
    """Return ``123456:****wxyz`` for logs."""
    if not token:
        return "<none>"
    head, _, tail = token.partition(":")
    return f"{head}:****{tail[-4:]}" if tail else "****"


async def load_settings(session: AsyncSession, codec: SecretCodec) -> BotSettings:
    """Read and decrypt the settings row.

    :class:`~tablebot.exceptions.IntegrityError` propagates: a corrupt
    token must stop the caller, not be replaced by a guess.
    """
    row = await SettingsRepo(session).get()
    if row is None:
        return BotSettings()
    return BotSettings(
        bot_token=codec.decrypt(row.bot_id),
        chat_id=codec.decrypt(row.chat_id),
        admin_chat=codec.decrypt(row.admin_chat),
    )


async def save_settings(
    session: AsyncSession,
    codec: SecretCodec,
    *,
    bot_token: str | None = None,
    chat_id: str | None = None,
    admin_chat: str | None = None,
) -> BotSettings:
    """Encrypt and store every non-empty field; empty fields keep their value.

    Returns the resulting plaintext settings.
    """
    values: dict[str, str] = {}
    if bot_token:
        values["bot_id"] = codec.encrypt(bot_token.strip())
    if chat_id:
        values["chat_id"] = codec.encrypt(str(chat_id).strip())
    if admin_chat:
        values["admin_chat"] = codec.encrypt(str(admin_chat).strip())

    repo = SettingsRepo(session)
    await repo.ensure_row()
    await repo.update(**values)
    if values:
        logger.info("Settings updated: %s", ", ".join(sorted(values)))
    return await load_settings(session, codec)


async def store_notify_chat(session: AsyncSession, codec: SecretCodec, chat_id: str) -> None:
    """Encrypt and store the notify chat without decrypting the other fields."""
    repo = SettingsRepo(session)
    await repo.ensure_row()
    await repo.update(chat_id=codec.encrypt(chat_id))
    logger.info("Settings updated: chat_id")
