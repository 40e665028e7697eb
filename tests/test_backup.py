"""Tests for archive creation, extraction, restore and scheduled delivery."""

from __future__ import annotations

import sqlite3
import zipfile
from contextlib import closing
from datetime import datetime
from pathlib import Path

import pytest

from tablebot.db.repositories.reservation_repo import ReservationRepo
from tablebot.exceptions import (
    ArchiveError,
    ArchiveMissingError,
    DatastoreEntryMissingError,
    DatastoreSwapError,
    InvalidArchiveError,
    InvalidDatastoreError,
)
from tablebot.models.reservation import Reservation
from tablebot.services import backup
from tablebot.services.backup import (
    DATASTORE_ENTRY,
    BackupScheduler,
    archive_filename,
    create_archive,
    extract_datastore,
    next_run_at,
    restore_from_archive,
    validate_datastore,
)

TOKEN = "111111:AAAA-backup"


def _leftovers(directory: Path, prefix: str) -> list[str]:
    return [p.name for p in directory.iterdir() if p.name.startswith(prefix)]


async def _add_reservation(datastore, name: str) -> None:
    async with datastore.session() as session:
        session.add(Reservation(date="2026-03-01", time="19:00", name=name, phone="1"))
        await session.commit()


async def _names(datastore) -> list[str]:
    async with datastore.session() as session:
        return [r.name for r in await ReservationRepo(session).list_for_date("2026-03-01")]


# ── create ────────────────────────────────────────────────────────────


def test_archive_filename():
    assert archive_filename(datetime(2026, 3, 1, 8, 5, 9)) == "backup-20260301-080509.zip"


def test_archive_of_empty_system_is_valid_and_empty(tmp_path):
    out = tmp_path / "backups"
    path = create_archive(tmp_path / "missing.sqlite", tmp_path / "no-uploads", out)

    assert path.parent == out
    with zipfile.ZipFile(path) as zf:
        assert zf.namelist() == []
    assert _leftovers(out, ".backup-") == []


@pytest.mark.asyncio
async def test_archive_contains_datastore_and_uploads(datastore, tmp_path):
    await _add_reservation(datastore, "Anna")
    uploads = tmp_path / "uploads"
    (uploads / "menu").mkdir(parents=True)
    (uploads / "logo.png").write_bytes(b"\x89PNG")
    (uploads / "menu" / "dinner.pdf").write_bytes(b"%PDF")

    path = create_archive(datastore.path, uploads, tmp_path / "backups")

    with zipfile.ZipFile(path) as zf:
        names = set(zf.namelist())
        assert names == {DATASTORE_ENTRY, "uploads/logo.png", "uploads/menu/dinner.pdf"}
        assert zf.read("uploads/menu/dinner.pdf") == b"%PDF"
        snapshot = tmp_path / "snapshot.sqlite"
        snapshot.write_bytes(zf.read(DATASTORE_ENTRY))

    with closing(sqlite3.connect(snapshot)) as conn:
        rows = conn.execute("SELECT name FROM tables").fetchall()
    assert rows == [("Anna",)]


def test_failed_archive_leaves_nothing_behind(tmp_path, monkeypatch):
    db_file = tmp_path / "database.sqlite"
    with closing(sqlite3.connect(db_file)) as conn:
        conn.execute("CREATE TABLE settings (id INTEGER PRIMARY KEY)")

    def boom(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(backup, "_snapshot_datastore", boom)
    out = tmp_path / "backups"
    with pytest.raises(OSError):
        create_archive(db_file, tmp_path / "uploads", out)
    assert list(out.iterdir()) == []


# ── extract / validate ────────────────────────────────────────────────


def test_extract_missing_archive(tmp_path):
    with pytest.raises(ArchiveMissingError):
        extract_datastore(tmp_path / "nope.zip", tmp_path / "out.sqlite")


def test_extract_not_a_zip(tmp_path):
    bogus = tmp_path / "bogus.zip"
    bogus.write_bytes(b"definitely not a zip")
    with pytest.raises(InvalidArchiveError):
        extract_datastore(bogus, tmp_path / "out.sqlite")


def test_extract_zip_without_datastore(tmp_path):
    archive = tmp_path / "uploads-only.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("uploads/logo.png", b"x")
    with pytest.raises(DatastoreEntryMissingError) as exc_info:
        extract_datastore(archive, tmp_path / "out.sqlite")
    assert exc_info.value.entry == DATASTORE_ENTRY


def test_validate_rejects_garbage(tmp_path):
    junk = tmp_path / "junk.sqlite"
    junk.write_bytes(b"\x00garbage" * 512)
    with pytest.raises(InvalidDatastoreError):
        validate_datastore(junk)


def test_validate_rejects_foreign_schema(tmp_path):
    other = tmp_path / "other.sqlite"
    with closing(sqlite3.connect(other)) as conn:
        conn.execute("CREATE TABLE something_else (id INTEGER)")
    with pytest.raises(InvalidDatastoreError) as exc_info:
        validate_datastore(other)
    assert "settings" in exc_info.value.reason


# ── restore ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["missing", "not_zip", "no_entry", "bad_db"])
async def test_bad_input_leaves_live_datastore_untouched(datastore, tmp_path, kind):
    await _add_reservation(datastore, "Anna")
    upload = tmp_path / "upload.zip"
    if kind == "not_zip":
        upload.write_bytes(b"hello")
    elif kind == "no_entry":
        with zipfile.ZipFile(upload, "w") as zf:
            zf.writestr("uploads/a.txt", b"a")
    elif kind == "bad_db":
        with zipfile.ZipFile(upload, "w") as zf:
            zf.writestr(DATASTORE_ENTRY, b"\x00garbage" * 512)

    with pytest.raises(ArchiveError):
        await restore_from_archive(datastore, upload)

    assert await _names(datastore) == ["Anna"]
    assert not upload.exists()
    assert _leftovers(datastore.path.parent, ".restore-") == []


@pytest.mark.asyncio
async def test_restore_replaces_corrupted_datastore(datastore, tmp_path):
    await _add_reservation(datastore, "Anna")
    archive = create_archive(datastore.path, tmp_path / "uploads", tmp_path / "backups")
    upload = tmp_path / "upload.zip"
    archive.rename(upload)

    await datastore.close()
    datastore.path.write_bytes(b"\x00corrupted" * 1024)

    await restore_from_archive(datastore, upload)

    assert datastore.is_open
    assert await _names(datastore) == ["Anna"]
    assert not upload.exists()
    assert _leftovers(datastore.path.parent, ".restore-") == []


@pytest.mark.asyncio
async def test_restore_rolls_back_later_changes(datastore, tmp_path):
    await _add_reservation(datastore, "Anna")
    archive = create_archive(datastore.path, tmp_path / "uploads", tmp_path / "backups")
    await _add_reservation(datastore, "Boris")

    await restore_from_archive(datastore, archive)

    assert await _names(datastore) == ["Anna"]


# ── schedule ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "now, expected",
    [
        (datetime(2026, 3, 1, 7, 59), datetime(2026, 3, 1, 8, 0)),
        (datetime(2026, 3, 1, 8, 0), datetime(2026, 3, 2, 0, 0)),
        (datetime(2026, 3, 1, 23, 30), datetime(2026, 3, 2, 0, 0)),
        (datetime(2026, 3, 1, 0, 0, 1), datetime(2026, 3, 1, 8, 0)),
    ],
)
def test_next_run_at(now, expected):
    assert next_run_at(now, [0, 8]) == expected


def test_next_run_at_needs_hours():
    with pytest.raises(ValueError):
        next_run_at(datetime(2026, 3, 1), [])


def _scheduler(manager, datastore, tmp_path) -> BackupScheduler:
    return BackupScheduler(
        manager,
        datastore,
        uploads_dir=tmp_path / "uploads",
        backup_dir=tmp_path / "backups",
        hours=[0, 8],
        tz_name="Europe/Moscow",
    )


@pytest.mark.asyncio
async def test_run_once_skips_without_admin_chat(manager, datastore, tmp_path):
    await manager.refresh(TOKEN, None, "800")
    sent = await _scheduler(manager, datastore, tmp_path).run_once()
    assert sent is False
    manager.bots[TOKEN].send_document.assert_not_called()
    assert not (tmp_path / "backups").exists()


@pytest.mark.asyncio
async def test_run_once_delivers_and_removes_archive(manager, datastore, tmp_path):
    await manager.refresh(TOKEN, "900", None)
    sent = await _scheduler(manager, datastore, tmp_path).run_once("manual")

    assert sent is True
    kwargs = manager.bots[TOKEN].send_document.call_args.kwargs
    assert kwargs["chat_id"] == "900"
    assert kwargs["caption"] == "manual"
    assert list((tmp_path / "backups").iterdir()) == []


@pytest.mark.asyncio
async def test_swap_failure_reopens_original_datastore(datastore, tmp_path, monkeypatch):
    await _add_reservation(datastore, "Anna")
    archive = create_archive(datastore.path, tmp_path / "uploads", tmp_path / "backups")
    await _add_reservation(datastore, "Boris")

    def fail_swap(extracted, live_path):
        raise OSError("rename failed")

    monkeypatch.setattr(backup, "_swap_in", fail_swap)
    with pytest.raises(DatastoreSwapError):
        await restore_from_archive(datastore, archive)

    assert datastore.is_open
    assert sorted(await _names(datastore)) == ["Anna", "Boris"]
    assert not archive.exists()
    assert _leftovers(datastore.path.parent, ".restore-") == []
