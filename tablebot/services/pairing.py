"""Pairing code service – issue short-lived codes, redeem each at most once.

An admin asks for a code in the web UI and types it into the bot chat as
``/link CODE``. The chat that redeems it becomes the notify chat, so neither
the bot token nor a chat id ever has to cross the API.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from tablebot.db.repositories.pairing_repo import PairingRepo
from tablebot.exceptions import CodeGenerationExhausted
from tablebot.utils.enums import RedeemError

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I
CODE_LENGTH = 6
CODE_TTL_MINUTES = 15
MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class IssuedCode:
    code: str
    expires_at: datetime  # aware, UTC


@dataclass(frozen=True)
class RedeemResult:
    code: str
    error: RedeemError | None = None
    used_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _utcnow() -> datetime:
    """Naive UTC, the form stored in SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_naive_utc(value: datetime | None) -> datetime:
    if value is None:
        return _utcnow()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def generate_code(alphabet: str = CODE_ALPHABET, length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


async def issue_code(
    session: AsyncSession,
    *,
    alphabet: str = CODE_ALPHABET,
    length: int = CODE_LENGTH,
    now: datetime | None = None,
) -> IssuedCode:
    """Create and store a fresh pairing code valid for ``CODE_TTL_MINUTES``.

    Raises :class:`CodeGenerationExhausted` if every candidate collided with
    a stored code.
    """
    repo = PairingRepo(session)
    created_at = _to_naive_utc(now)

    for _ in range(MAX_ATTEMPTS):
        candidate = generate_code(alphabet, length)
        if await repo.exists(candidate):
            continue
        expires_at = created_at + timedelta(minutes=CODE_TTL_MINUTES)
        await repo.create(candidate, created_at, expires_at)
        logger.info("Pairing code issued, expires at %s UTC", expires_at.isoformat())
        return IssuedCode(code=candidate, expires_at=expires_at.replace(tzinfo=timezone.utc))

    logger.error("Pairing code generation exhausted after %d attempts", MAX_ATTEMPTS)
    raise CodeGenerationExhausted(MAX_ATTEMPTS)


async def redeem_code(
    session: AsyncSession,
    raw_code: str | None,
    chat_id: int | str,
    *,
    now: datetime | None = None,
) -> RedeemResult:
    """Consume *raw_code* on behalf of *chat_id*.

    The pre-checks give the user a precise error; the conditional update in
    :meth:`PairingRepo.mark_used` is what guarantees a single winner.
    """
    code = (raw_code or "").strip().upper()
    if not code:
        return RedeemResult(code=code, error=RedeemError.CODE_REQUIRED)

    repo = PairingRepo(session)
    record = await repo.get(code)
    if record is None:
        return RedeemResult(code=code, error=RedeemError.NOT_FOUND)

    now = _to_naive_utc(now)
    if record.expires_at < now:
        await repo.delete(code)
        logger.info("Pairing code %s expired; deleted", code)
        return RedeemResult(code=code, error=RedeemError.EXPIRED)
    if record.used_at is not None:
        return RedeemResult(code=code, error=RedeemError.USED)

    if not await repo.mark_used(code, str(chat_id), now):
        logger.warning("Pairing code %s lost a redemption race (chat %s)", code, chat_id)
        return RedeemResult(code=code, error=RedeemError.STALE)

    logger.info("Pairing code %s redeemed by chat %s", code, chat_id)
    return RedeemResult(code=code, used_at=now.replace(tzinfo=timezone.utc))


async def purge_expired_codes(session: AsyncSession, *, now: datetime | None = None) -> int:
    removed = await PairingRepo(session).purge_expired(_to_naive_utc(now))
    if removed:
        logger.info("Purged %d expired pairing codes", removed)
    return removed
