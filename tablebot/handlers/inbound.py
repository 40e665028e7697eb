"""Inbound message handler – parse, gate, dispatch.

A fresh router is built for every connection: aiogram refuses to attach one
router instance to a second dispatcher, and the manager creates a new
dispatcher whenever the token changes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession

from tablebot.config import settings
from tablebot.db.repositories.reservation_repo import ReservationRepo
from tablebot.services.commands import (
    PAIRED_TEXT,
    REDEEM_ERROR_TEXT,
    PairCommand,
    StatusCommand,
    Unrecognized,
    build_public_link,
    format_status,
    local_today,
    parse_command,
)
from tablebot.services.pairing import redeem_code

if TYPE_CHECKING:
    from tablebot.services.bot_manager import BotManager

logger = logging.getLogger(__name__)


def build_inbound_router() -> Router:
    router = Router(name="inbound")
    router.message.register(on_message)
    return router


async def on_message(message: Message, session: AsyncSession, manager: BotManager) -> None:
    """Single entry point for every inbound message."""
    command = parse_command(message.text)
    chat_id = str(message.chat.id)

    # Pairing is how a chat gets onto the allow-list, so it skips the gate.
    if not isinstance(command, PairCommand) and not manager.is_chat_allowed(chat_id):
        logger.debug("Dropping message from chat %s (not allow-listed)", chat_id)
        return

    match command:
        case PairCommand(code=code):
            await handle_pair(message, session, manager, code)
        case StatusCommand():
            await handle_status(message, session)
        case Unrecognized():
            return


async def handle_pair(
    message: Message, session: AsyncSession, manager: BotManager, code: str
) -> None:
    chat_id = str(message.chat.id)
    result = await redeem_code(session, code, chat_id)
    if result.error is not None:
        await message.answer(REDEEM_ERROR_TEXT[result.error])
        return

    await manager.bind_notify_chat(session, chat_id)
    await message.answer(PAIRED_TEXT)


async def handle_status(message: Message, session: AsyncSession) -> None:
    today = local_today(settings.TIMEZONE)
    reservations = await ReservationRepo(session).list_for_date(today.isoformat())
    await message.answer(
        format_status(today, reservations),
        parse_mode=ParseMode.HTML,
        reply_markup=build_public_link(settings.PUBLIC_URL),
    )
