"""Secret codec – AES-256-GCM for values kept encrypted at rest.

Payload format is ``hex(nonce):hex(tag):hex(ciphertext)``, matching what
the reservation backend has always written to the ``settings`` table.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from tablebot.exceptions import IntegrityError

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


class SecretCodec:
    """Reversible authenticated encryption with a process-wide key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, key_hex: str) -> SecretCodec:
        return cls(bytes.fromhex(key_hex))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, payload: str | None) -> str | None:
        """Return the plaintext, or None when there is no stored secret.

        Raises :class:`IntegrityError` for anything that does not
        authenticate.
        """
        if not payload:
            return None

        parts = payload.split(":")
        if len(parts) != 3:
            raise IntegrityError("Encrypted payload must have three fields")
        try:
            nonce, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError as e:
            raise IntegrityError("Encrypted payload is not hex encoded") from e
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise IntegrityError("Encrypted payload is truncated")

        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise IntegrityError() from e
        return plain.decode("utf-8")
