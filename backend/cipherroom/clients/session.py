# cipherroom/clients/session.py

import json
import logging
import os
import secrets
import time
from pathlib import Path

from cipherroom.core.crypto import RoomKey, derive_room_key

logger = logging.getLogger(__name__)

# =========================
# CONFIGURATION
# =========================

STORAGE_KEY = "chatAppData"
STATE_FILE = os.getenv("CIPHERROOM_STATE_FILE", str(Path.home() / ".cipherroom" / "state.json"))

# No 0/O or 1/I so codes survive being read aloud
ROOM_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class NoActiveRoom(Exception):
    """There is no stored room to resume; the caller should go back to room selection."""


def generate_room_id(length: int = 8) -> str:
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


def generate_sender_id() -> str:
    return f"user-{secrets.token_hex(8)}"


class LocalStore:
    """
    Small key-value file standing in for browser storage.

    Everything lives in a single JSON blob under STORAGE_KEY:
    {currentRoomId, senderId, lastActive}.
    """

    def __init__(self, path: str | Path = STATE_FILE):
        self.path = Path(path)

    def load(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, e)
            return {}

        state = data.get(STORAGE_KEY) if isinstance(data, dict) else None
        return dict(state) if isinstance(state, dict) else {}

    def save(self, state: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({STORAGE_KEY: state}), encoding="utf-8")

    def sender_id(self) -> str:
        """The persisted sender id, generated on first use."""
        state = self.load()
        if not state.get("senderId"):
            state["senderId"] = generate_sender_id()
            self.save(state)
        return state["senderId"]


class RoomSession:
    """
    Everything a client needs for one joined room.

    Built when a room is joined or resumed and handed to the engine, the
    sender and the view; nothing about the room is kept globally.
    """

    def __init__(self, room_id: str, sender_id: str, store: LocalStore | None = None,
                 key: RoomKey | None = None):
        if not room_id:
            raise ValueError("room_id is required")
        self.room_id = room_id
        self.sender_id = sender_id
        self.store = store
        self.key = key or derive_room_key(room_id)
        self.visible = True

    def __repr__(self) -> str:
        return f"<RoomSession room={self.room_id!r} sender={self.sender_id!r}>"

    @classmethod
    def join(cls, store: LocalStore, room_id: str) -> "RoomSession":
        room_id = room_id.strip()
        if not room_id:
            raise ValueError("Room ID must not be empty")

        sender_id = store.sender_id()
        state = store.load()
        state.update(currentRoomId=room_id, lastActive=int(time.time() * 1000))
        store.save(state)

        logger.info("Joined room %s as %s", room_id, sender_id)
        return cls(room_id, sender_id, store)

    @classmethod
    def create(cls, store: LocalStore) -> "RoomSession":
        return cls.join(store, generate_room_id())

    @classmethod
    def resume(cls, store: LocalStore) -> "RoomSession":
        state = store.load()
        room_id = state.get("currentRoomId")
        if not room_id:
            raise NoActiveRoom("No room ID stored")
        return cls(room_id, store.sender_id(), store)

    def touch(self):
        if self.store is None:
            return
        state = self.store.load()
        state["lastActive"] = int(time.time() * 1000)
        self.store.save(state)

    def leave(self):
        if self.store is not None:
            state = self.store.load()
            state.pop("currentRoomId", None)
            self.store.save(state)
        logger.info("Left room %s", self.room_id)
