"""Bot connection manager – the single owner of the Telegram polling loop.

State is one :class:`BotState` behind one lock. ``refresh`` and ``stop`` are
the only ways to change the token or the connection, and they never overlap:
Telegram rejects a second ``getUpdates`` poller on the same token, so the
old loop must be fully stopped before a new one starts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from aiogram import Bot, Dispatcher
from aiogram.client.session.aiohttp import AiohttpSession
from aiogram.types import FSInputFile
from sqlalchemy.ext.asyncio import AsyncSession

from tablebot.db.engine import Datastore
from tablebot.handlers.inbound import build_inbound_router
from tablebot.middleware.db_session_mw import DbSessionMiddleware
from tablebot.middleware.logging_mw import LoggingMiddleware
from tablebot.services.bot_settings import load_settings, mask_token, store_notify_chat
from tablebot.services.secrets import SecretCodec

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """A live polling loop and the Bot it polls with."""

    token: str
    bot: Bot
    task: asyncio.Task


@dataclass
class BotState:
    token: str | None = None
    admin_chat: str | None = None
    notify_chat: str | None = None
    connection: Connection | None = None


class BotManager:
    """Start, stop and hot-swap the bot; deliver notifications and backups."""

    def __init__(
        self,
        datastore: Datastore,
        codec: SecretCodec,
        *,
        local_api_url: str | None = None,
    ) -> None:
        self._datastore = datastore
        self._codec = codec
        self._local_api_url = local_api_url
        self._state = BotState()
        self._lock = asyncio.Lock()

    # ── Read-only views ───────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        connection = self._state.connection
        return connection is not None and not connection.task.done()

    @property
    def admin_chat(self) -> str | None:
        return self._state.admin_chat

    @property
    def notify_chat(self) -> str | None:
        return self._state.notify_chat

    @property
    def can_deliver_archive(self) -> bool:
        return self.is_running and bool(self._state.admin_chat)

    def allowed_chats(self) -> frozenset[str]:
        return frozenset(c for c in (self._state.admin_chat, self._state.notify_chat) if c)

    def is_chat_allowed(self, chat_id: int | str) -> bool:
        """An empty allow-list admits everyone; otherwise membership decides."""
        allowed = self.allowed_chats()
        return not allowed or str(chat_id) in allowed

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def refresh(
        self,
        token: str | None,
        admin_chat: str | None = None,
        notify_chat: str | None = None,
    ) -> None:
        """Bring the connection in line with *token* and the chat targets."""
        async with self._lock:
            if not token:
                await self._teardown()
                return

            state = self._state
            if self.is_running and state.token == token:
                state.admin_chat = admin_chat or None
                state.notify_chat = notify_chat or None
                logger.debug("Bot token unchanged; chat targets updated in place.")
                return

            # A finished polling task still holds its Bot session; release it.
            await self._teardown()
            connection = await self._connect(token)
            self._state = BotState(
                token=token,
                admin_chat=admin_chat or None,
                notify_chat=notify_chat or None,
                connection=connection,
            )
            logger.info("Bot started with token %s", mask_token(token))

    async def stop(self) -> None:
        """Stop polling and forget the token. Safe to call when stopped."""
        async with self._lock:
            await self._teardown()

    async def reload(self) -> None:
        """Re-read the settings row and refresh from it."""
        async with self._datastore.session() as session:
            current = await load_settings(session, self._codec)
        await self.refresh(current.bot_token, current.admin_chat, current.chat_id)

    async def bind_notify_chat(self, session: AsyncSession, chat_id: int | str) -> None:
        """Persist *chat_id* as the notify chat and start using it.

        Writes through the caller's *session*: an update handler already
        holds one, and opening a second would block behind a restore that
        is itself waiting for the first to close.
        """
        chat = str(chat_id)
        await store_notify_chat(session, self._codec, chat)
        async with self._lock:
            self._state.notify_chat = chat
        logger.info("Notify chat bound to %s", chat)

    async def _teardown(self) -> None:
        # Caller holds self._lock.
        connection = self._state.connection
        self._state = BotState()
        if connection is None:
            return
        await self._disconnect(connection)
        logger.info("Bot stopped (token %s)", mask_token(connection.token))

    async def _connect(self, token: str) -> Connection:
        session = None
        if self._local_api_url:
            from aiogram.client.telegram import TelegramAPIServer

            session = AiohttpSession(api=TelegramAPIServer.from_base(self._local_api_url))
        bot = Bot(token=token, session=session)

        dp = Dispatcher()
        dp["manager"] = self
        dp.update.outer_middleware(LoggingMiddleware())
        dp.update.outer_middleware(DbSessionMiddleware(self._datastore))
        dp.include_router(build_inbound_router())

        task = asyncio.create_task(self._poll(bot, dp), name="bot-polling")
        task.add_done_callback(_log_polling_exit)
        return Connection(token=token, bot=bot, task=task)

    async def _poll(self, bot: Bot, dp: Dispatcher) -> None:
        await bot.delete_webhook(drop_pending_updates=True)
        await dp.start_polling(
            bot,
            handle_signals=False,
            close_bot_session=False,
            allowed_updates=["message"],
        )

    async def _disconnect(self, connection: Connection) -> None:
        connection.task.cancel()
        try:
            await connection.task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # Already reported by _log_polling_exit.
            logger.debug("Polling task had failed before teardown: %s", e)
        await connection.bot.session.close()

    # ── Outbound ──────────────────────────────────────────────────────

    async def send(self, text: str, chat_id: int | str | None = None) -> bool:
        """Best-effort text delivery. Returns True if Telegram accepted it.

        Target: *chat_id*, else the notify chat, else the admin chat.
        """
        state = self._state
        if state.connection is None:
            logger.warning("Skip message: bot is not running")
            return False
        target = chat_id or state.notify_chat or state.admin_chat
        if not target:
            logger.warning("Skip message: no chat is configured")
            return False
        try:
            await state.connection.bot.send_message(chat_id=target, text=text)
        except Exception as e:
            logger.error("Failed to send Telegram message to %s: %s", target, e)
            return False
        return True

    async def send_archive(self, path: Path | str, caption: str) -> bool:
        """Send a backup file to the admin chat. Never raises."""
        state = self._state
        if state.connection is None or not state.admin_chat:
            logger.warning("Skip backup delivery: bot or admin chat not configured")
            return False
        try:
            await state.connection.bot.send_document(
                chat_id=state.admin_chat,
                document=FSInputFile(path),
                caption=caption,
            )
        except Exception as e:
            logger.error("Failed to send backup %s: %s", Path(path).name, e)
            return False
        logger.info("Backup %s sent to admin chat", Path(path).name)
        return True


def _log_polling_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Bot polling stopped with error: %s", exc)
    else:
        logger.warning("Bot polling exited")
