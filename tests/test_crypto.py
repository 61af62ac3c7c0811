"""Tests for room key derivation and the two payload formats."""

import base64
import json
import os

import pytest

from cipherroom.core.crypto import (
    DecryptionError,
    RoomKey,
    decrypt_bytes,
    decrypt_text,
    derive_room_key,
    encrypt_bytes,
    encrypt_media,
    encrypt_text,
    open_payload,
)


class TestRoundTrip:
    """Decrypting what was encrypted returns the original bytes."""

    @pytest.mark.parametrize("size", [0, 1, 5, 4096, 64 * 1024])
    def test_bytes_round_trip(self, room_key, size):
        plaintext = os.urandom(size)
        assert decrypt_bytes(room_key, encrypt_bytes(room_key, plaintext)) == plaintext

    def test_text_round_trip(self, room_key):
        text = "hello ☕ привет"
        assert decrypt_text(room_key, encrypt_text(room_key, text)) == text

    def test_fresh_nonce_per_call(self, room_key):
        first = encrypt_bytes(room_key, b"same")
        second = encrypt_bytes(room_key, b"same")
        assert first[:12] != second[:12]
        assert first != second

    def test_payload_layout(self, room_key):
        sealed = encrypt_bytes(room_key, b"abc")
        # nonce + ciphertext + 16 byte tag
        assert len(sealed) == 12 + 3 + 16


class TestKeyDerivation:
    """Keys are derived deterministically from the room id."""

    def test_same_room_same_key(self, room_key):
        again = derive_room_key("ABCD1234")
        assert decrypt_bytes(again, encrypt_bytes(room_key, b"payload")) == b"payload"
        assert decrypt_bytes(room_key, encrypt_bytes(again, b"payload")) == b"payload"

    def test_other_room_cannot_decrypt(self, room_key):
        other = derive_room_key("ZZZZ9999")
        with pytest.raises(DecryptionError):
            decrypt_bytes(other, encrypt_bytes(room_key, b"secret"))

    def test_key_bytes_not_exposed(self, room_key):
        assert isinstance(room_key, RoomKey)
        assert not hasattr(room_key, "__dict__")
        assert "ABCD1234" in repr(room_key)


class TestTamperDetection:
    """Any modified ciphertext fails instead of returning bad plaintext."""

    def test_every_bit_flip_is_rejected(self, room_key):
        sealed = encrypt_bytes(room_key, b"hi there")
        for index in range(len(sealed)):
            for bit in range(8):
                tampered = bytearray(sealed)
                tampered[index] ^= 1 << bit
                with pytest.raises(DecryptionError):
                    decrypt_bytes(room_key, bytes(tampered))

    def test_truncated_payload(self, room_key):
        with pytest.raises(DecryptionError):
            decrypt_bytes(room_key, b"short")

    def test_invalid_base64(self, room_key):
        with pytest.raises(DecryptionError):
            decrypt_text(room_key, "not base64 !!")

    def test_authentic_but_not_utf8(self, room_key):
        payload = base64.b64encode(encrypt_bytes(room_key, b"\xff\xfe\xfd")).decode()
        with pytest.raises(DecryptionError):
            decrypt_text(room_key, payload)

    def test_tampered_media_envelope(self, room_key):
        envelope = json.loads(encrypt_media(room_key, b"\x89PNG data", kind="image", mime="image/png"))
        data = bytearray(base64.b64decode(envelope["data"]))
        data[0] ^= 0x01
        envelope["data"] = base64.b64encode(bytes(data)).decode()

        with pytest.raises(DecryptionError):
            open_payload(room_key, json.dumps(envelope))

    def test_tampered_media_nonce(self, room_key):
        envelope = json.loads(encrypt_media(room_key, b"voice note", kind="voice"))
        envelope["iv"][0] ^= 0x80
        with pytest.raises(DecryptionError):
            open_payload(room_key, json.dumps(envelope))


class TestPayloadFormats:
    """open_payload accepts both the raw blob and the media envelope."""

    def test_raw_blob_is_text(self, room_key):
        opened = open_payload(room_key, encrypt_text(room_key, "hello"))
        assert opened.kind == "text"
        assert opened.text == "hello"

    def test_media_envelope_fields(self, room_key):
        data = os.urandom(2048)
        payload = encrypt_media(room_key, data, kind="image", mime="image/png", name="cat.png")
        envelope = json.loads(payload)

        assert envelope["t"] == "image"
        assert envelope["mime"] == "image/png"
        assert envelope["name"] == "cat.png"
        assert envelope["size"] == 2048
        assert len(envelope["iv"]) == 12
        assert all(0 <= b <= 255 for b in envelope["iv"])

        opened = open_payload(room_key, payload)
        assert opened.kind == "image"
        assert opened.data == data
        assert opened.name == "cat.png"
        assert opened.mime == "image/png"

    def test_unknown_media_kind_rejected(self, room_key):
        with pytest.raises(ValueError):
            encrypt_media(room_key, b"x", kind="video")

    @pytest.mark.parametrize("payload", [
        "{not json",
        json.dumps({"t": "file", "data": "AAAA"}),
        json.dumps({"t": "file", "iv": [1, 2, 3], "data": "AAAA"}),
        json.dumps({"t": "file", "iv": [300] * 12, "data": "AAAA"}),
        json.dumps(["iv", "data"]),
    ])
    def test_malformed_envelopes(self, room_key, payload):
        with pytest.raises(DecryptionError):
            open_payload(room_key, payload)
