"""Async SQLAlchemy engine over the SQLite datastore file.

The engine is not a plain module global: restore has to close every handle,
swap the file underneath and open it again. :class:`Datastore` owns the
engine and session factory and hands out sessions through a gate that the
restore procedure can close for the duration of the swap.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tablebot.db.base import Base

logger = logging.getLogger(__name__)

# Seconds a writer waits on SQLite's file lock before "database is locked".
BUSY_TIMEOUT = 15


class Datastore:
    """Owner of the live datastore file and every handle opened on it."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None
        self._available = asyncio.Event()
        self._active = 0
        self._idle = asyncio.Condition()
        self._swap_lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Datastore is not open")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> None:
        """Create the engine and let sessions through."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.path}",
            echo=False,
            connect_args={"timeout": BUSY_TIMEOUT},
        )
        self._sessionmaker = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._available.set()
        logger.debug("Datastore opened: %s", self.path)

    async def init_schema(self) -> None:
        """Create missing tables. Safe to run on every start and restore."""
        # Import models so they register on metadata
        from tablebot.models.pairing_code import PairingCode  # noqa: F401
        from tablebot.models.reservation import Reservation  # noqa: F401
        from tablebot.models.settings_row import SettingsRow  # noqa: F401
        from tablebot.db.repositories.settings_repo import SettingsRepo

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with self.session() as session:
            await SettingsRepo(session).ensure_row()

        logger.info("Datastore schema ensured.")

    async def close(self) -> None:
        """Stop handing out sessions, wait for open ones, dispose the engine."""
        self._available.clear()
        await self._drain()
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.debug("Datastore closed: %s", self.path)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session, waiting while a restore holds the file."""
        while not self._available.is_set():
            await self._available.wait()
        if self._sessionmaker is None:
            raise RuntimeError("Datastore is not open")
        self._active += 1
        try:
            async with self._sessionmaker() as session:
                yield session
        finally:
            async with self._idle:
                self._active -= 1
                self._idle.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[Path]:
        """Hold the datastore file with every handle closed.

        New sessions block until the block exits; the engine is reopened and
        the schema re-ensured on every exit path, including exceptions.
        """
        async with self._swap_lock:
            await self.close()
            try:
                yield self.path
            finally:
                self.open()
                await self.init_schema()

    async def _drain(self) -> None:
        async with self._idle:
            await self._idle.wait_for(lambda: self._active == 0)
