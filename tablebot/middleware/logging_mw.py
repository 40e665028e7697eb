"""Logging middleware – one log line per inbound update."""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Update

logger = logging.getLogger("tablebot.updates")


class LoggingMiddleware(BaseMiddleware):
    """Log each update with timing, chat and leading token."""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        start = time.perf_counter()

        update_type = "unknown"
        chat_id = None
        head = ""
        if isinstance(event, Update):
            message = event.message or event.edited_message
            if message is not None:
                update_type = "message" if event.message else "edited_message"
                chat_id = message.chat.id
                text = message.text or ""
                # Only the command name: arguments may be pairing codes.
                head = text.split(maxsplit=1)[0][:32] if text.startswith("/") else ""

        try:
            result = await handler(event, data)
            elapsed = (time.perf_counter() - start) * 1000
            logger.info(
                "update=%s chat=%s cmd=%s elapsed=%.1fms",
                update_type,
                chat_id,
                head or "-",
                elapsed,
            )
            return result
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error(
                "update=%s chat=%s cmd=%s elapsed=%.1fms error=%s",
                update_type,
                chat_id,
                head or "-",
                elapsed,
                e,
            )
            raise
