"""Shared fixtures for tablebot tests."""

from __future__ import annotations

import asyncio
import os
from unittest.mock import AsyncMock, MagicMock

# Ensure ENCRYPTION_KEY is set before any tablebot module triggers Settings validation
os.environ.setdefault("ENCRYPTION_KEY", "0123456789abcdef" * 4)

import pytest
import pytest_asyncio

from tablebot.db.engine import Datastore
from tablebot.services.bot_manager import BotManager, Connection
from tablebot.services.secrets import SecretCodec

TEST_KEY = bytes.fromhex("00112233445566778899aabbccddeeff" * 2)


@pytest.fixture
def codec() -> SecretCodec:
    return SecretCodec(TEST_KEY)


@pytest_asyncio.fixture
async def datastore(tmp_path):
    """A real SQLite datastore under tmp_path with the schema created."""
    ds = Datastore(tmp_path / "data" / "database.sqlite")
    ds.open()
    await ds.init_schema()
    yield ds
    if ds.is_open:
        await ds.close()


class RecordingBotManager(BotManager):
    """BotManager whose connections are mocks; records connect/disconnect order."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.events: list[tuple[str, str]] = []
        self.live: set[str] = set()
        self.max_live = 0
        self.bots: dict[str, MagicMock] = {}
        self.tasks: dict[str, asyncio.Future] = {}

    async def _connect(self, token: str) -> Connection:
        await asyncio.sleep(0)  # let a racing refresh run if it could
        self.events.append(("connect", token))
        self.live.add(token)
        self.max_live = max(self.max_live, len(self.live))
        bot = MagicMock()
        bot.send_message = AsyncMock()
        bot.send_document = AsyncMock()
        self.bots[token] = bot
        # Stands in for the polling task: pending until cancelled or failed.
        task = asyncio.get_running_loop().create_future()
        self.tasks[token] = task
        return Connection(token=token, bot=bot, task=task)

    async def _disconnect(self, connection: Connection) -> None:
        connection.task.cancel()
        if connection.task.done() and not connection.task.cancelled():
            connection.task.exception()  # mark a failure as retrieved
        await asyncio.sleep(0)
        self.live.discard(connection.token)
        self.events.append(("disconnect", connection.token))


@pytest_asyncio.fixture
async def manager(datastore, codec):
    mgr = RecordingBotManager(datastore, codec)
    yield mgr
    await mgr.stop()


@pytest.fixture
def make_message():
    """Factory to create a mock aiogram Message with desired attributes."""

    def _make(text: str | None = None, chat_id: int = 100, chat_type: str = "private"):
        msg = MagicMock()
        msg.message_id = 1
        msg.chat = MagicMock()
        msg.chat.id = chat_id
        msg.chat.type = chat_type
        msg.text = text
        msg.answer = AsyncMock()
        return msg

    return _make
