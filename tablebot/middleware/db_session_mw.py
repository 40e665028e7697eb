"""DB session middleware – injects a datastore session into handler context."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from tablebot.db.engine import Datastore


class DbSessionMiddleware(BaseMiddleware):
    """Inject a fresh session into ``data["session"]`` for each update.

    Sessions come from :meth:`Datastore.session`, so updates arriving during
    a restore wait for the swap instead of touching a closed engine.
    """

    def __init__(self, datastore: Datastore) -> None:
        self._datastore = datastore

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        async with self._datastore.session() as session:
            data["session"] = session
            return await handler(event, data)
