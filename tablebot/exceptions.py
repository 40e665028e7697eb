"""Exception hierarchy for tablebot.

Everything raised on purpose by this package derives from
:class:`TablebotError`. Delivery failures towards Telegram are deliberately
absent: they are logged at the send boundary and never raised.
"""

from __future__ import annotations

from pathlib import Path


class TablebotError(Exception):
    """Base exception for all tablebot errors."""

    def __init__(self, message: str = "An error occurred") -> None:
        self.message = message
        super().__init__(self.message)


# ── Secrets ───────────────────────────────────────────────────────────


class IntegrityError(TablebotError):
    """Raised when an encrypted payload is tampered, truncated or malformed.

    Callers must treat this as fatal for the value in question and never
    substitute the raw payload as plaintext.
    """

    def __init__(self, message: str = "Encrypted payload failed authentication") -> None:
        super().__init__(message)


# ── Pairing ───────────────────────────────────────────────────────────


class CodeGenerationExhausted(TablebotError):
    """Raised when no unique pairing code was found within the retry budget.

    Attributes:
        attempts: Number of candidates that collided.
    """

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not generate a unique pairing code after {attempts} attempts")


# ── Backup / restore ──────────────────────────────────────────────────


class ArchiveError(TablebotError):
    """Base class for restore input problems. Live data is untouched."""

    def __init__(self, path: Path | str, message: str) -> None:
        self.path = Path(path)
        super().__init__(message)


class ArchiveMissingError(ArchiveError):
    """The archive to restore from does not exist."""

    def __init__(self, path: Path | str) -> None:
        super().__init__(path, f"Backup archive not found: {path}")


class InvalidArchiveError(ArchiveError):
    """The uploaded file is not a readable zip archive."""

    def __init__(self, path: Path | str) -> None:
        super().__init__(path, f"Not a valid zip archive: {Path(path).name}")


class DatastoreEntryMissingError(ArchiveError):
    """The archive is a zip, but has no datastore entry.

    Attributes:
        entry: The entry name that was expected.
    """

    def __init__(self, path: Path | str, entry: str) -> None:
        self.entry = entry
        super().__init__(path, f"Archive {Path(path).name} has no {entry} entry")


class InvalidDatastoreError(ArchiveError):
    """The extracted datastore is corrupt or lacks the expected schema.

    Attributes:
        reason: What the validation found.
    """

    def __init__(self, path: Path | str, reason: str) -> None:
        self.reason = reason
        super().__init__(path, f"Extracted datastore is not usable: {reason}")


class DatastoreSwapError(TablebotError):
    """Replacing or reopening the live datastore failed mid-restore.

    The process needs operator attention; this is never retried.
    """
