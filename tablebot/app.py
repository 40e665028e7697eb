"""Application wiring – datastore, bot manager, backup scheduler, admin HTTP."""

from __future__ import annotations

import asyncio
import logging

from aiohttp import web

from tablebot.config import settings
from tablebot.db.engine import Datastore
from tablebot.exceptions import IntegrityError
from tablebot.services.backup import BackupScheduler
from tablebot.services.bot_manager import BotManager
from tablebot.services.secrets import SecretCodec
from tablebot.web import create_admin_app

logger = logging.getLogger(__name__)


async def _start_bot(manager: BotManager) -> None:
    """Start the bot from stored settings; a corrupt token leaves it stopped."""
    try:
        await manager.reload()
    except IntegrityError:
        logger.error(
            "Stored bot settings failed the integrity check (wrong ENCRYPTION_KEY?); "
            "bot not started. Re-enter the settings in the admin panel."
        )


async def main() -> None:
    """Entry point."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
    settings.UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
    settings.BACKUP_DIR.mkdir(parents=True, exist_ok=True)

    codec = SecretCodec(settings.encryption_key)
    datastore = Datastore(settings.DATABASE_FILE)
    datastore.open()
    await datastore.init_schema()

    manager = BotManager(datastore, codec, local_api_url=settings.LOCAL_API_URL)
    scheduler = BackupScheduler(
        manager,
        datastore,
        uploads_dir=settings.UPLOADS_DIR,
        backup_dir=settings.BACKUP_DIR,
        hours=settings.backup_hours,
        tz_name=settings.TIMEZONE,
    )
    app = create_admin_app(
        manager=manager,
        datastore=datastore,
        codec=codec,
        scheduler=scheduler,
        admin_token=settings.ADMIN_API_TOKEN,
        uploads_dir=settings.UPLOADS_DIR,
        backup_dir=settings.BACKUP_DIR,
    )
    runner = web.AppRunner(app)

    try:
        await _start_bot(manager)
        await scheduler.start()

        await runner.setup()
        site = web.TCPSite(runner, host=settings.HTTP_HOST, port=settings.HTTP_PORT)
        await site.start()
        logger.info("Admin API listening on %s:%d", settings.HTTP_HOST, settings.HTTP_PORT)
        if not settings.ADMIN_API_TOKEN:
            logger.warning("ADMIN_API_TOKEN is not set; admin routes are disabled.")

        # Keep running until interrupted
        await asyncio.Event().wait()
    finally:
        logger.info("Shutting down…")
        await scheduler.stop()
        await manager.stop()
        await runner.cleanup()
        await datastore.close()
        logger.info("Shutdown complete.")
