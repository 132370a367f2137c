"""Tests for the AES-256-GCM field codec."""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import re

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from psyemr.core.crypto.codec import CodecOutcome, FieldCodec
from psyemr.core.crypto.config import EncryptionConfig
from psyemr.core.crypto.envelope import HEADER_LENGTH, Envelope

BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")


def _flip_byte(envelope_text: str, index: int) -> str:
    raw = bytearray(base64.b64decode(envelope_text))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode()


class TestRoundTrip:
    @pytest.mark.parametrize("plaintext", [
        "Ravi Kumar",
        "a",
        "Major Depressive Disorder, recurrent, F33.1",
        "स्वास्थ्य रिकॉर्ड",
        "line one\nline two\ttabbed",
        "x" * 5000,
    ])
    def test_round_trip(self, field_codec: FieldCodec, plaintext: str):
        stored = field_codec.encrypt_field(plaintext)
        assert stored != plaintext
        assert field_codec.decrypt_field(stored) == plaintext

    def test_round_trip_with_production_kdf(self, registry):
        codec = FieldCodec(EncryptionConfig(master_secret=b"prod-secret", registry=registry))
        stored = codec.encrypt_field("Ravi Kumar")
        assert codec.decrypt_field(stored) == "Ravi Kumar"

    def test_non_string_is_stringified(self, field_codec: FieldCodec):
        stored = field_codec.encrypt_field(560001)
        assert field_codec.decrypt_field(stored) == "560001"


class TestEnvelopeFormat:
    def test_output_is_base64_of_header_plus_ciphertext(self, field_codec: FieldCodec):
        stored = field_codec.encrypt_field("Ravi Kumar")
        assert BASE64_RE.match(stored)
        raw = base64.b64decode(stored)
        assert len(raw) == HEADER_LENGTH + len("Ravi Kumar".encode())

    def test_single_character_is_at_least_128_chars(self, field_codec: FieldCodec):
        assert len(field_codec.encrypt_field("a")) >= 128

    def test_same_plaintext_gives_different_envelopes(self, field_codec: FieldCodec):
        s1 = field_codec.encrypt_field("Ravi Kumar")
        s2 = field_codec.encrypt_field("Ravi Kumar")
        assert s1 != s2
        e1, e2 = Envelope.parse(s1), Envelope.parse(s2)
        assert e1.salt != e2.salt
        assert e1.iv != e2.iv
        assert field_codec.decrypt_field(s1) == field_codec.decrypt_field(s2) == "Ravi Kumar"

    def test_decrypts_envelope_built_independently(self, field_codec: FieldCodec):
        """salt || iv || tag || ciphertext, PBKDF2-SHA512 key, 16-byte GCM IV."""
        salt, iv = os.urandom(64), os.urandom(16)
        key = hashlib.pbkdf2_hmac(
            "sha512",
            field_codec.config.master_secret,
            salt,
            field_codec.config.kdf_iterations,
            32,
        )
        sealed = AESGCM(key).encrypt(iv, "Lithium 300mg".encode(), None)
        stored = base64.b64encode(salt + iv + sealed[-16:] + sealed[:-16]).decode()
        assert field_codec.decrypt_field(stored) == "Lithium 300mg"


class TestPassThrough:
    @pytest.mark.parametrize("value", [None, ""])
    def test_encrypt_empty_unchanged(self, field_codec: FieldCodec, value):
        assert field_codec.encrypt_field(value) is value

    @pytest.mark.parametrize("value", [None, ""])
    def test_decrypt_empty_unchanged(self, field_codec: FieldCodec, value):
        assert field_codec.decrypt_field(value) is value

    def test_empty_is_reported_as_skipped(self, field_codec: FieldCodec):
        assert field_codec.try_encrypt(None).outcome is CodecOutcome.SKIPPED
        assert field_codec.try_decrypt("").outcome is CodecOutcome.SKIPPED


class TestLegacyPlaintext:
    def test_short_plaintext_returned_unchanged(self, field_codec: FieldCodec):
        assert field_codec.decrypt_field("plain unencrypted text") == "plain unencrypted text"

    def test_long_plaintext_with_spaces_returned_unchanged(self, field_codec: FieldCodec):
        text = "Patient reports low mood and poor sleep for three months. " * 5
        result = field_codec.try_decrypt(text)
        assert result.outcome is CodecOutcome.LEGACY_PLAINTEXT
        assert result.value == text

    def test_non_string_returned_unchanged(self, field_codec: FieldCodec):
        assert field_codec.decrypt_field(42) == 42

    def test_legacy_path_does_not_log(self, field_codec: FieldCodec, caplog):
        with caplog.at_level(logging.DEBUG, logger="psyemr.core.crypto.codec"):
            field_codec.decrypt_field("plain unencrypted text")
        assert caplog.records == []


    def test_line_wrapped_envelope_decrypts(self, field_codec: FieldCodec):
        stored = field_codec.encrypt_field("Bipolar affective disorder, current episode manic")
        wrapped = "\r\n".join(stored[i:i + 76] for i in range(0, len(stored), 76))
        result = field_codec.try_decrypt(wrapped)
        assert result.outcome is CodecOutcome.DECRYPTED
        assert result.value == "Bipolar affective disorder, current episode manic"


class TestDecryptFailures:
    def test_flipped_tag_byte_returns_stored_value(self, field_codec: FieldCodec):
        stored = field_codec.encrypt_field("Schizophrenia")
        tampered = _flip_byte(stored, 64 + 16)  # first tag byte
        assert field_codec.decrypt_field(tampered) == tampered

    def test_flipped_ciphertext_byte_fails(self, field_codec: FieldCodec):
        stored = field_codec.encrypt_field("Schizophrenia")
        tampered = _flip_byte(stored, HEADER_LENGTH)
        result = field_codec.try_decrypt(tampered)
        assert not result.ok
        assert result.outcome is CodecOutcome.FAILED
        assert result.raw_value == tampered
        assert "InvalidTag" in result.reason

    def test_wrong_key_returns_stored_value(self, field_codec, other_key_codec):
        stored = field_codec.encrypt_field("Ravi Kumar")
        assert other_key_codec.decrypt_field(stored) == stored

    def test_failure_logged_as_warning(self, field_codec, other_key_codec, caplog):
        stored = field_codec.encrypt_field("Ravi Kumar")
        with caplog.at_level(logging.WARNING, logger="psyemr.core.crypto.codec"):
            other_key_codec.decrypt_field(stored)
        assert any(r.levelno == logging.WARNING for r in caplog.records)
        assert "Ravi Kumar" not in caplog.text

    def test_base64_garbage_of_envelope_length_fails_softly(self, field_codec: FieldCodec):
        garbage = base64.b64encode(os.urandom(120)).decode()
        assert field_codec.decrypt_field(garbage) == garbage


class TestEncryptFailures:
    def test_encrypt_failure_returns_plaintext(self, field_codec, monkeypatch, caplog):
        def _boom(*args, **kwargs):
            raise RuntimeError("kdf unavailable")

        monkeypatch.setattr("psyemr.core.crypto.codec.derive_key", _boom)
        with caplog.at_level(logging.ERROR, logger="psyemr.core.crypto.codec"):
            assert field_codec.encrypt_field("Ravi Kumar") == "Ravi Kumar"
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_encrypt_failure_reported(self, field_codec, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("kdf unavailable")

        monkeypatch.setattr("psyemr.core.crypto.codec.derive_key", _boom)
        result = field_codec.try_encrypt("Ravi Kumar")
        assert result.outcome is CodecOutcome.FAILED
        assert result.value == "Ravi Kumar"
        assert "kdf unavailable" in result.reason
