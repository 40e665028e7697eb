"""Enums used across the bot."""

from __future__ import annotations

from enum import Enum


class RedeemError(str, Enum):
    CODE_REQUIRED = "code_required"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    USED = "used"
    STALE = "stale"
