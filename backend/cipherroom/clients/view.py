# cipherroom/clients/view.py

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

SELF_LABEL = "You"
PARTNER_LABEL = "Partner"
DECRYPT_PLACEHOLDER = "[decryption failed]"

PENDING = "pending"
SENT = "sent"
RECEIVED = "received"


@dataclass
class ViewEntry:
    id: str
    sender: str
    text: str
    status: str
    kind: str = "text"
    attachment: bytes | None = None
    mime: str | None = None
    name: str | None = None
    preview: str = ""  # first characters of the ciphertext
    timestamp: int | None = None


@dataclass
class Banner:
    message: str
    level: str = "error"
    shown_at: float = field(default_factory=time.monotonic)


class MessageView:
    """
    Append-only list of rendered messages keyed by message id.

    An id is rendered at most once; optimistic entries keep their position
    when their temporary id is swapped for the server id.
    """

    BANNER_SECONDS = 5.0

    def __init__(self, on_render=None):
        self.on_render = on_render
        self._entries = OrderedDict()
        self._lock = threading.RLock()
        self.render_count = 0
        self.banner = None
        self.selection_mode = False
        self._selected = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id) -> bool:
        return message_id in self._entries

    def entries(self) -> list:
        with self._lock:
            return list(self._entries.values())

    def get(self, message_id: str) -> ViewEntry | None:
        return self._entries.get(message_id)

    # ---------- rendering ----------

    def render_incoming(self, entry: ViewEntry) -> bool:
        with self._lock:
            if entry.id in self._entries:
                return False
            self._entries[entry.id] = entry
            self.render_count += 1
        if self.on_render:
            self.on_render(entry)
        return True

    def add_pending(self, temp_id: str, text: str, kind: str = "text", **extra) -> ViewEntry:
        entry = ViewEntry(id=temp_id, sender=SELF_LABEL, text=text, status=PENDING, kind=kind, **extra)
        with self._lock:
            self._entries[temp_id] = entry
            self.render_count += 1
        return entry

    def confirm(self, temp_id: str, server_id: str, timestamp: int | None = None) -> bool:
        """Swap a pending entry's temporary id for the server id, in place."""
        with self._lock:
            entry = self._entries.get(temp_id)
            if entry is None:
                return False

            # Rebuild to keep the entry at its original position under the new key
            self._entries = OrderedDict(
                (server_id if key == temp_id else key, value)
                for key, value in self._entries.items()
            )
            entry.id = server_id
            entry.status = SENT
            entry.timestamp = timestamp
            return True

    def discard(self, message_id: str) -> bool:
        return self.remove(message_id)

    def remove(self, message_id: str) -> bool:
        with self._lock:
            self._selected.discard(message_id)
            return self._entries.pop(message_id, None) is not None

    # ---------- selection ----------

    def enter_selection_mode(self):
        self.selection_mode = True

    def exit_selection_mode(self):
        self.selection_mode = False
        self._selected.clear()

    def toggle_selected(self, message_id: str) -> bool:
        if not self.selection_mode or message_id not in self._entries:
            return False
        if message_id in self._selected:
            self._selected.discard(message_id)
            return False
        self._selected.add(message_id)
        return True

    @property
    def selected_ids(self) -> list:
        # Keep display order so deletes read top to bottom
        return [key for key in self._entries if key in self._selected]

    # ---------- notifications ----------

    def show_error(self, message: str, level: str = "error"):
        self.banner = Banner(message, level)
        logger.warning("%s", message)

    def current_banner(self) -> Banner | None:
        if self.banner and time.monotonic() - self.banner.shown_at > self.BANNER_SECONDS:
            self.banner = None
        return self.banner
