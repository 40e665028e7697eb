"""Backup/restore pipeline – archives of the datastore and uploads.

Archive layout (shared with the web UI's download/upload buttons)::

    database.sqlite
    uploads/<asset tree>

Archives are written to a temp file next to their final path and renamed
into place once closed, so a half-written zip is never visible.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sqlite3
import tempfile
import zipfile
import zlib
from contextlib import closing
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from tablebot.db.engine import Datastore
from tablebot.exceptions import (
    ArchiveMissingError,
    DatastoreEntryMissingError,
    DatastoreSwapError,
    InvalidArchiveError,
    InvalidDatastoreError,
)
from tablebot.services.pairing import purge_expired_codes

if TYPE_CHECKING:
    from tablebot.services.bot_manager import BotManager

logger = logging.getLogger(__name__)

DATASTORE_ENTRY = "database.sqlite"
UPLOADS_PREFIX = "uploads"
REQUIRED_TABLES = frozenset({"settings"})
SCHEDULED_CAPTION = "Scheduled backup of database and uploads"


def archive_filename(now: datetime | None = None) -> str:
    """``backup-YYYYMMDD-HHMMSS.zip`` in local time."""
    now = now or datetime.now()
    return f"backup-{now.strftime('%Y%m%d-%H%M%S')}.zip"


# ── Create ────────────────────────────────────────────────────────────


def _readonly_uri(path: Path) -> str:
    return f"{path.resolve().as_uri()}?mode=ro"


def _snapshot_datastore(db_file: Path, dest: Path) -> None:
    """Copy *db_file* to *dest* with SQLite's online backup API.

    One consistent read, even while other connections write.
    """
    with closing(sqlite3.connect(_readonly_uri(db_file), uri=True)) as src:
        with closing(sqlite3.connect(dest)) as dst:
            src.backup(dst)


def create_archive(
    db_file: Path,
    uploads_dir: Path,
    backup_dir: Path,
    *,
    now: datetime | None = None,
) -> Path:
    """Write a new archive into *backup_dir* and return its path.

    A missing datastore or uploads directory is skipped, not an error.
    """
    backup_dir.mkdir(parents=True, exist_ok=True)
    final_path = backup_dir / archive_filename(now)
    fd, tmp_name = tempfile.mkstemp(dir=backup_dir, prefix=".backup-", suffix=".part")
    os.close(fd)
    tmp_path = Path(tmp_name)
    snapshot = tmp_path.with_suffix(".sqlite")

    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            if db_file.is_file():
                _snapshot_datastore(db_file, snapshot)
                zf.write(snapshot, DATASTORE_ENTRY)
            if uploads_dir.is_dir():
                for path in sorted(uploads_dir.rglob("*")):
                    if path.is_file():
                        rel = path.relative_to(uploads_dir).as_posix()
                        zf.write(path, f"{UPLOADS_PREFIX}/{rel}")
        os.replace(tmp_path, final_path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise
    finally:
        snapshot.unlink(missing_ok=True)

    logger.info("Backup archive created: %s", final_path.name)
    return final_path


async def create_archive_async(
    db_file: Path, uploads_dir: Path, backup_dir: Path
) -> Path:
    return await asyncio.to_thread(create_archive, db_file, uploads_dir, backup_dir)


# ── Extract / validate ────────────────────────────────────────────────


def extract_datastore(archive_path: Path, target_path: Path) -> Path:
    """Stream the datastore entry of *archive_path* into *target_path*."""
    if not archive_path.is_file():
        raise ArchiveMissingError(archive_path)
    try:
        zf = zipfile.ZipFile(archive_path)
    except zipfile.BadZipFile as e:
        raise InvalidArchiveError(archive_path) from e

    with zf:
        try:
            info = zf.getinfo(DATASTORE_ENTRY)
        except KeyError as e:
            raise DatastoreEntryMissingError(archive_path, DATASTORE_ENTRY) from e
        try:
            with zf.open(info) as src, open(target_path, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except (zipfile.BadZipFile, zlib.error) as e:
            raise InvalidArchiveError(archive_path) from e
    return target_path


def validate_datastore(path: Path) -> None:
    """Reject files that are not a healthy SQLite database with our schema."""
    try:
        with closing(sqlite3.connect(_readonly_uri(path), uri=True)) as conn:
            row = conn.execute("PRAGMA integrity_check").fetchone()
            if not row or row[0] != "ok":
                raise InvalidDatastoreError(path, f"integrity check failed: {row}")
            tables = {
                name
                for (name,) in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table'"
                )
            }
    except sqlite3.DatabaseError as e:
        raise InvalidDatastoreError(path, str(e)) from e

    missing = REQUIRED_TABLES - tables
    if missing:
        raise InvalidDatastoreError(path, f"missing tables: {', '.join(sorted(missing))}")


# ── Restore ───────────────────────────────────────────────────────────

_SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")


def _swap_in(extracted: Path, live_path: Path) -> None:
    # With every handle closed, a leftover journal belongs to the old file
    # and would be replayed onto the new one.
    for suffix in _SIDECAR_SUFFIXES:
        Path(f"{live_path}{suffix}").unlink(missing_ok=True)
    os.replace(extracted, live_path)


async def restore_from_archive(datastore: Datastore, upload_path: Path) -> None:
    """Replace the live datastore with the one inside *upload_path*.

    Input problems raise an :class:`~tablebot.exceptions.ArchiveError`
    before the live file is touched. A failure while swapping or reopening
    raises :class:`DatastoreSwapError` and is not retried. *upload_path*
    and the extracted copy are deleted on every exit path.
    """
    datastore.path.parent.mkdir(parents=True, exist_ok=True)
    # Same directory as the live file, so the final rename is atomic.
    fd, tmp_name = tempfile.mkstemp(
        dir=datastore.path.parent, prefix=".restore-", suffix=".sqlite"
    )
    os.close(fd)
    extracted = Path(tmp_name)

    try:
        await asyncio.to_thread(extract_datastore, upload_path, extracted)
        await asyncio.to_thread(validate_datastore, extracted)

        try:
            async with datastore.exclusive() as live_path:
                _swap_in(extracted, live_path)
        except Exception as e:
            logger.critical(
                "Datastore swap failed, operator intervention required: %s", e
            )
            raise DatastoreSwapError(f"Restore swap failed: {e}") from e

        logger.info("Datastore restored from %s", upload_path.name)
    finally:
        upload_path.unlink(missing_ok=True)
        extracted.unlink(missing_ok=True)


# ── Scheduled archive + delivery ──────────────────────────────────────


def next_run_at(now: datetime, hours: list[int]) -> datetime:
    """Return the first ``HH:00`` in *hours* strictly after *now*."""
    if not hours:
        raise ValueError("No backup hours configured")
    for hour in sorted(hours):
        candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
        if candidate > now:
            return candidate
    tomorrow = now + timedelta(days=1)
    return tomorrow.replace(hour=min(hours), minute=0, second=0, microsecond=0)


class BackupScheduler:
    """Background task: archive and send to the admin chat at fixed hours."""

    def __init__(
        self,
        manager: BotManager,
        datastore: Datastore,
        *,
        uploads_dir: Path,
        backup_dir: Path,
        hours: list[int],
        tz_name: str,
    ) -> None:
        self._manager = manager
        self._datastore = datastore
        self._uploads_dir = uploads_dir
        self._backup_dir = backup_dir
        self._hours = hours
        self._tz = ZoneInfo(tz_name)
        self._task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="backup-scheduler")
        logger.info(
            "Backup scheduler started (hours=%s, tz=%s).",
            ",".join(str(h) for h in self._hours),
            self._tz.key,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Backup scheduler stopped.")

    async def _loop(self) -> None:
        while self._running:
            now = datetime.now(self._tz)
            wake = next_run_at(now, self._hours)
            await asyncio.sleep((wake - now).total_seconds())
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Scheduled backup failed: %s", e)

    async def run_once(self, caption: str = SCHEDULED_CAPTION) -> bool:
        """Create an archive and deliver it. Returns True if it was sent."""
        async with self._datastore.session() as session:
            await purge_expired_codes(session)

        if not self._manager.can_deliver_archive:
            logger.warning("Skip backup: bot token or admin chat not configured")
            return False

        path = await create_archive_async(
            self._datastore.path, self._uploads_dir, self._backup_dir
        )
        try:
            return await self._manager.send_archive(path, caption)
        finally:
            path.unlink(missing_ok=True)
