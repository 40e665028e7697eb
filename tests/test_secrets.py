"""Tests for the secret codec."""

from __future__ import annotations

import pytest

from tablebot.exceptions import IntegrityError
from tablebot.services.secrets import SecretCodec


class TestRoundTrip:
    @pytest.mark.parametrize(
        "secret",
        ["123456789:AAE-token_value", "-1001234567890", "", "пароль ✓"],
    )
    def test_decrypt_returns_plaintext(self, codec, secret):
        assert codec.decrypt(codec.encrypt(secret)) == secret

    def test_payload_has_three_hex_fields(self, codec):
        nonce, tag, data = codec.encrypt("hello").split(":")
        assert len(bytes.fromhex(nonce)) == 12
        assert len(bytes.fromhex(tag)) == 16
        assert len(bytes.fromhex(data)) == len("hello")

    def test_nonce_is_random_per_call(self, codec):
        assert codec.encrypt("same") != codec.encrypt("same")

    def test_from_hex(self):
        codec = SecretCodec.from_hex("ab" * 32)
        assert codec.decrypt(codec.encrypt("x")) == "x"

    def test_rejects_short_key(self):
        with pytest.raises(ValueError):
            SecretCodec(b"short")


class TestAbsentSecret:
    def test_none_is_none(self, codec):
        assert codec.decrypt(None) is None

    def test_empty_is_none(self, codec):
        assert codec.decrypt("") is None


class TestTampering:
    def test_flipped_ciphertext_fails(self, codec):
        nonce, tag, data = codec.encrypt("123:token").split(":")
        flipped = f"{int(data[:2], 16) ^ 0x01:02x}" + data[2:]
        with pytest.raises(IntegrityError):
            codec.decrypt(f"{nonce}:{tag}:{flipped}")

    def test_flipped_tag_fails(self, codec):
        nonce, tag, data = codec.encrypt("123:token").split(":")
        flipped = f"{int(tag[:2], 16) ^ 0x80:02x}" + tag[2:]
        with pytest.raises(IntegrityError):
            codec.decrypt(f"{nonce}:{flipped}:{data}")

    def test_truncated_payload_fails(self, codec):
        payload = codec.encrypt("123:token")
        with pytest.raises(IntegrityError):
            codec.decrypt(payload[:-4])

    def test_missing_field_fails(self, codec):
        nonce, tag, _ = codec.encrypt("x").split(":")
        with pytest.raises(IntegrityError):
            codec.decrypt(f"{nonce}:{tag}")

    def test_plaintext_is_not_accepted(self, codec):
        with pytest.raises(IntegrityError):
            codec.decrypt("123456789:AAE-plain-token")

    def test_other_key_fails(self, codec):
        other = SecretCodec(b"\x01" * 32)
        with pytest.raises(IntegrityError):
            other.decrypt(codec.encrypt("secret"))
