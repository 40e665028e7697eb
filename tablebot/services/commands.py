"""Inbound command parsing and reply texts.

Every incoming text is parsed exactly once into one of the command variants
below; the router then matches on the variant.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import date, datetime
from zoneinfo import ZoneInfo

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from tablebot.models.reservation import Reservation
from tablebot.utils.enums import RedeemError

PAIR_COMMANDS = frozenset({"link", "start"})
STATUS_COMMANDS = frozenset({"status", "today"})


@dataclass(frozen=True)
class PairCommand:
    code: str  # may be empty; redeem reports code_required


@dataclass(frozen=True)
class StatusCommand:
    pass


@dataclass(frozen=True)
class Unrecognized:
    pass


Command = PairCommand | StatusCommand | Unrecognized


def parse_command(text: str | None) -> Command:
    """Classify *text* by its first token.

    ``/Link@MyBot ab12cd`` → ``PairCommand("ab12cd")``. A bare ``/start``
    is not a pairing attempt (Telegram sends it when a chat opens the bot).
    """
    if not text:
        return Unrecognized()
    tokens = text.strip().split()
    if not tokens or not tokens[0].startswith("/"):
        return Unrecognized()

    name = tokens[0][1:].split("@", 1)[0].lower()
    args = tokens[1:]

    if name in PAIR_COMMANDS:
        if name == "start" and not args:
            return Unrecognized()
        return PairCommand(code=args[0] if args else "")
    if name in STATUS_COMMANDS:
        return StatusCommand()
    return Unrecognized()


# ── Pairing replies ───────────────────────────────────────────────────

PAIRED_TEXT = "✅ This chat is now linked. Notifications will arrive here."

REDEEM_ERROR_TEXT: dict[RedeemError, str] = {
    RedeemError.CODE_REQUIRED: "Send the code from the admin panel: /link CODE",
    RedeemError.NOT_FOUND: "❌ Invalid code. Check it and try again.",
    RedeemError.EXPIRED: "⌛ This code has expired. Generate a new one in the admin panel.",
    RedeemError.USED: "This code has already been used. Generate a new one in the admin panel.",
    RedeemError.STALE: "This code is no longer valid. Generate a new one in the admin panel.",
}


# ── Status replies ────────────────────────────────────────────────────

EMPTY_STATUS_TEXT = "No reservations for today."


def local_today(tz_name: str, now: datetime | None = None) -> date:
    """Return the current calendar date in *tz_name*."""
    tz = ZoneInfo(tz_name)
    current = now.astimezone(tz) if now else datetime.now(tz)
    return current.date()


def format_status(day: date, reservations: list[Reservation]) -> str:
    """Return the HTML body of the /status reply."""
    if not reservations:
        return EMPTY_STATUS_TEXT

    lines = [f"<b>Reservations for {day.strftime('%d.%m.%Y')}</b>", ""]
    for i, r in enumerate(reservations, start=1):
        parts = (r.time or "—", r.name or "—", r.phone or "—")
        lines.append(f"{i}. " + " | ".join(html.escape(p) for p in parts))
    return "\n".join(lines)


def build_public_link(url: str) -> InlineKeyboardMarkup | None:
    """Single URL button pointing at the reservation UI, if configured."""
    if not url:
        return None
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="Open reservations", url=url)]]
    )
