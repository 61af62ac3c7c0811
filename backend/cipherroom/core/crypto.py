import base64
import binascii
import json
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# ---------- PARAMETERS ----------

# Shared by every client; changing any of these orphans existing rooms
KDF_SALT = b"secure-salt"
KDF_ITERATIONS = 100_000
KEY_LENGTH = 32
NONCE_LENGTH = 12

MEDIA_KINDS = ("image", "audio", "voice", "file")


class DecryptionError(Exception):
    """Ciphertext failed authentication or could not be parsed."""


class RoomKey:
    """
    AES-256-GCM key for one room.

    The raw key bytes are handed straight to the cipher and not kept on
    the instance, so a RoomKey can only encrypt and decrypt.
    """

    __slots__ = ("_aead", "room_id")

    def __init__(self, room_id: str, aead: AESGCM):
        self.room_id = room_id
        self._aead = aead

    def __repr__(self) -> str:
        return f"<RoomKey room={self.room_id!r}>"


@dataclass
class OpenedPayload:
    kind: str  # "text" or one of MEDIA_KINDS
    data: bytes
    mime: str | None = None
    name: str | None = None
    size: int | None = None

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


# ---------- KEY DERIVATION ----------

def derive_room_key(room_id: str) -> RoomKey:
    """
    PBKDF2-HMAC-SHA256(room_id, fixed salt) -> AES-256-GCM key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    return RoomKey(room_id, AESGCM(kdf.derive(room_id.encode("utf-8"))))


# ---------- ENCRYPTION ----------

def encrypt_bytes(key: RoomKey, plaintext: bytes) -> bytes:
    """
    AES-GCM -> nonce (12) + ciphertext + tag (16)
    """
    nonce = os.urandom(NONCE_LENGTH)
    return nonce + key._aead.encrypt(nonce, plaintext, None)


def decrypt_bytes(key: RoomKey, payload: bytes) -> bytes:
    """
    Decrypt nonce + ciphertext + tag, raising DecryptionError on any failure
    """
    if len(payload) < NONCE_LENGTH + 16:
        raise DecryptionError("Payload too short")
    try:
        return key._aead.decrypt(payload[:NONCE_LENGTH], payload[NONCE_LENGTH:], None)
    except InvalidTag as e:
        raise DecryptionError("Authentication tag mismatch") from e


def encrypt_text(key: RoomKey, text: str) -> str:
    return base64.b64encode(encrypt_bytes(key, text.encode("utf-8"))).decode("ascii")


def decrypt_text(key: RoomKey, payload: str) -> str:
    try:
        return decrypt_bytes(key, _b64decode(payload)).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Plaintext is not valid UTF-8") from e


def encrypt_media(
    key: RoomKey,
    data: bytes,
    kind: str = "file",
    mime: str = "application/octet-stream",
    name: str = "",
) -> str:
    """Encrypt a binary attachment into the JSON media envelope."""
    if kind not in MEDIA_KINDS:
        raise ValueError(f"Unsupported media kind: {kind}")

    sealed = encrypt_bytes(key, data)
    return json.dumps({
        "t": kind,
        "mime": mime,
        "name": name,
        "size": len(data),
        "iv": list(sealed[:NONCE_LENGTH]),
        "data": base64.b64encode(sealed[NONCE_LENGTH:]).decode("ascii"),
    })


def open_payload(key: RoomKey, payload: str) -> OpenedPayload:
    """
    Decrypt either wire form: a bare base64 blob (text) or a JSON media envelope.
    """
    if payload.lstrip().startswith("{"):
        return _open_envelope(key, payload)
    return OpenedPayload(kind="text", data=decrypt_bytes(key, _b64decode(payload)))


def _open_envelope(key: RoomKey, payload: str) -> OpenedPayload:
    try:
        envelope = json.loads(payload)
        nonce = bytes(envelope["iv"])
        sealed = _b64decode(envelope["data"])
    except (ValueError, KeyError, TypeError) as e:
        raise DecryptionError(f"Malformed envelope: {e}") from e

    if len(nonce) != NONCE_LENGTH:
        raise DecryptionError("Envelope nonce must be 12 bytes")

    kind = envelope.get("t", "file")
    return OpenedPayload(
        kind=kind if kind in MEDIA_KINDS else "file",
        data=decrypt_bytes(key, nonce + sealed),
        mime=envelope.get("mime"),
        name=envelope.get("name"),
        size=envelope.get("size"),
    )


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise DecryptionError("Payload is not valid base64") from e
