"""Admin HTTP surface – settings, pairing codes, backup and restore.

Thin aiohttp wrappers over the services; every route except ``/health``
requires ``Authorization: Bearer <ADMIN_API_TOKEN>``.
"""

from __future__ import annotations

import hmac
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable

from aiogram.utils.token import TokenValidationError, validate_token
from aiohttp import web

from tablebot.db.engine import Datastore
from tablebot.exceptions import (
    ArchiveError,
    CodeGenerationExhausted,
    DatastoreSwapError,
    IntegrityError,
)
from tablebot.services.backup import BackupScheduler, create_archive_async, restore_from_archive
from tablebot.services.bot_manager import BotManager
from tablebot.services.bot_settings import load_settings, save_settings
from tablebot.services.pairing import CODE_TTL_MINUTES, issue_code
from tablebot.services.secrets import SecretCodec

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 50 * 1024 * 1024
MANUAL_CAPTION = "Manual backup of database and uploads"
PUBLIC_PATHS = frozenset({"/health"})

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


@web.middleware
async def _auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    if request.path in PUBLIC_PATHS:
        return await handler(request)
    expected: str = request.app["admin_token"]
    if not expected:
        return _error(503, "Admin API is disabled (ADMIN_API_TOKEN not set)")
    supplied = request.headers.get("Authorization", "")
    scheme, _, token = supplied.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.encode(), expected.encode()):
        return _error(401, "Unauthorized")
    return await handler(request)


# ── Health ────────────────────────────────────────────────────────────


async def health(request: web.Request) -> web.Response:
    manager: BotManager = request.app["manager"]
    return web.json_response(
        {"status": "ok", "bot": "running" if manager.is_running else "stopped"}
    )


# ── Settings ──────────────────────────────────────────────────────────


async def get_settings(request: web.Request) -> web.Response:
    datastore: Datastore = request.app["datastore"]
    codec: SecretCodec = request.app["codec"]
    try:
        async with datastore.session() as session:
            current = await load_settings(session, codec)
    except IntegrityError:
        logger.error("Stored settings failed the integrity check")
        return _error(500, "Stored settings are corrupt; re-enter them")
    return web.json_response({"settings": current.as_dict()})


async def update_settings(request: web.Request) -> web.Response:
    datastore: Datastore = request.app["datastore"]
    codec: SecretCodec = request.app["codec"]
    manager: BotManager = request.app["manager"]

    try:
        body: dict[str, Any] = await request.json()
    except ValueError:
        return _error(400, "Body must be JSON")
    if not isinstance(body, dict):
        return _error(400, "Body must be a JSON object")

    bot_token = str(body.get("bot_id") or "").strip() or None
    chat_id = str(body.get("chat_id") or "").strip() or None
    admin_chat = str(body.get("admin_chat") or "").strip() or None
    if bot_token:
        try:
            validate_token(bot_token)
        except TokenValidationError:
            return _error(400, "bot_id is not a valid bot token")

    try:
        async with datastore.session() as session:
            current = await save_settings(
                session, codec, bot_token=bot_token, chat_id=chat_id, admin_chat=admin_chat
            )
    except IntegrityError:
        logger.error("Stored settings failed the integrity check")
        return _error(500, "Stored settings are corrupt; re-enter all fields")

    await manager.refresh(current.bot_token, current.admin_chat, current.chat_id)
    return web.json_response({"settings": current.as_dict()})


async def create_link_code(request: web.Request) -> web.Response:
    datastore: Datastore = request.app["datastore"]
    codec: SecretCodec = request.app["codec"]
    try:
        async with datastore.session() as session:
            current = await load_settings(session, codec)
            if not current.bot_token:
                return _error(400, "Configure bot_id before creating a link code")
            issued = await issue_code(session)
    except IntegrityError:
        return _error(500, "Stored settings are corrupt; re-enter them")
    except CodeGenerationExhausted as e:
        return _error(503, e.message)

    return web.json_response(
        {
            "code": issued.code,
            "expires_at": issued.expires_at.isoformat(),
            "ttl_minutes": CODE_TTL_MINUTES,
        }
    )


# ── Backup ────────────────────────────────────────────────────────────


async def download_backup(request: web.Request) -> web.StreamResponse:
    datastore: Datastore = request.app["datastore"]
    path = await create_archive_async(
        datastore.path, request.app["uploads_dir"], request.app["backup_dir"]
    )
    response = web.FileResponse(
        path,
        headers={"Content-Disposition": f'attachment; filename="{path.name}"'},
    )
    try:
        await response.prepare(request)
        await response.write_eof()
    finally:
        path.unlink(missing_ok=True)
    return response


async def _save_upload(request: web.Request, dest_dir: Path) -> Path | None:
    """Store the multipart ``backup`` field; None if the field is absent."""
    reader = await request.multipart()
    while True:
        part = await reader.next()
        if part is None:
            return None
        if getattr(part, "name", None) != "backup":
            continue

        fd, tmp_name = tempfile.mkstemp(dir=dest_dir, prefix=".upload-", suffix=".zip")
        path = Path(tmp_name)
        size = 0
        try:
            with os.fdopen(fd, "wb") as out:
                while chunk := await part.read_chunk():  # type: ignore[union-attr]
                    size += len(chunk)
                    if size > MAX_UPLOAD_BYTES:
                        raise web.HTTPRequestEntityTooLarge(
                            max_size=MAX_UPLOAD_BYTES, actual_size=size
                        )
                    out.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return path


async def restore_backup(request: web.Request) -> web.Response:
    datastore: Datastore = request.app["datastore"]
    manager: BotManager = request.app["manager"]

    datastore.path.parent.mkdir(parents=True, exist_ok=True)
    try:
        upload = await _save_upload(request, datastore.path.parent)
    except web.HTTPRequestEntityTooLarge:
        return _error(413, "Backup file is too large")
    if upload is None:
        return _error(400, "Backup file is required")

    try:
        await restore_from_archive(datastore, upload)
    except ArchiveError as e:
        logger.warning("Restore rejected: %s", e.message)
        return _error(400, e.message)
    except DatastoreSwapError as e:
        return _error(500, e.message)

    try:
        await manager.reload()
    except IntegrityError:
        logger.error("Restored settings failed the integrity check; bot stopped")
        await manager.stop()
    return web.json_response({"success": True})


async def send_backup(request: web.Request) -> web.Response:
    scheduler: BackupScheduler = request.app["scheduler"]
    sent = await scheduler.run_once(MANUAL_CAPTION)
    return web.json_response({"sent": sent})


def create_admin_app(
    *,
    manager: BotManager,
    datastore: Datastore,
    codec: SecretCodec,
    scheduler: BackupScheduler,
    admin_token: str,
    uploads_dir: Path,
    backup_dir: Path,
) -> web.Application:
    app = web.Application(middlewares=[_auth_middleware], client_max_size=MAX_UPLOAD_BYTES + 1024 * 1024)
    app["manager"] = manager
    app["datastore"] = datastore
    app["codec"] = codec
    app["scheduler"] = scheduler
    app["admin_token"] = admin_token
    app["uploads_dir"] = uploads_dir
    app["backup_dir"] = backup_dir

    app.router.add_get("/health", health)
    app.router.add_get("/settings", get_settings)
    app.router.add_post("/settings", update_settings)
    app.router.add_post("/settings/link-code", create_link_code)
    app.router.add_get("/backup/create", download_backup)
    app.router.add_post("/backup/restore", restore_backup)
    app.router.add_post("/backup/send", send_backup)
    return app
