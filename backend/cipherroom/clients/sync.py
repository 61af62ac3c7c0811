# cipherroom/clients/sync.py

import logging
import threading
from collections import OrderedDict

from cipherroom.clients.transport import Delta, TransportError
from cipherroom.clients.view import (
    DECRYPT_PLACEHOLDER,
    PARTNER_LABEL,
    RECEIVED,
    MessageView,
    ViewEntry,
)
from cipherroom.core.crypto import DecryptionError, open_payload

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0  # seconds
MAX_REMEMBERED_IDS = 10_000
PREVIEW_CHARS = 20


class RecentIdSet:
    """
    Ids remembered together with the timestamp that brought them in.

    The server only returns rows newer than the watermark, so ids strictly
    older than it can never come back and are pruned. max_size caps the
    set even when the watermark stalls.
    """

    def __init__(self, max_size: int = MAX_REMEMBERED_IDS):
        self.max_size = max_size
        self._items = OrderedDict()

    def __contains__(self, item_id) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item_id: str, timestamp: int = 0):
        self._items[item_id] = max(timestamp, self._items.get(item_id, timestamp))
        self._items.move_to_end(item_id)
        while len(self._items) > self.max_size:
            self._items.popitem(last=False)

    def discard(self, item_id: str):
        self._items.pop(item_id, None)

    def prune(self, floor: int) -> int:
        stale = [item_id for item_id, ts in self._items.items() if ts < floor]
        for item_id in stale:
            del self._items[item_id]
        return len(stale)


class ReconciliationEngine:
    """
    Keeps a MessageView in step with the server for one RoomSession.

    Each tick fetches everything newer than the watermark, applies deletes,
    then renders new messages from other senders exactly once.
    """

    def __init__(self, session, transport, view: MessageView | None = None,
                 max_remembered: int = MAX_REMEMBERED_IDS):
        self.session = session
        self.transport = transport
        self.view = view if view is not None else MessageView()
        self.processed = RecentIdSet(max_remembered)
        self.deleted = RecentIdSet(max_remembered)
        self._watermark = 0
        self._in_flight = threading.Lock()
        self._state_lock = threading.RLock()
        self.stopped = False

    @property
    def watermark(self) -> int:
        return self._watermark

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def tick(self) -> bool:
        """
        Run one fetch-and-apply cycle.

        Returns False when the cycle was skipped (room not visible, or a
        previous cycle still running) or failed. Failures never propagate.
        """
        if self.stopped or not self.session.visible:
            return False
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Previous poll still in flight, skipping tick")
            return False

        try:
            delta = self.transport.get_delta(self.session.room_id, self._watermark)
            if self.stopped:
                # Left the room while the request was out
                return False
            self.apply_delta(delta)
            return True
        except TransportError as e:
            logger.error("Polling error: %s", e)
            return False
        except Exception:
            # A bad tick must never stop the poller
            logger.exception("Unexpected polling error")
            return False
        finally:
            self._in_flight.release()

    def apply_delta(self, delta: Delta) -> list:
        """Apply one delta and return the entries rendered by it."""
        rendered = []
        with self._state_lock:
            floor = highest = self._watermark

            # Deletes first: an id deleted here must also block a later insert
            for notice in delta.deletes:
                self.view.remove(notice.id)
                self.deleted.add(notice.id, notice.updated_at)
                self.processed.discard(notice.id)
                highest = max(highest, notice.updated_at)

            for incoming in delta.messages:
                highest = max(highest, incoming.timestamp)

                if incoming.id in self.processed or incoming.id in self.deleted:
                    continue
                if incoming.timestamp < floor:
                    # Older than anything the server still sends; ids this old were pruned
                    continue
                if incoming.sender == self.session.sender_id:
                    # Already on screen from the optimistic send path
                    self.processed.add(incoming.id, incoming.timestamp)
                    continue

                entry = self._decode(incoming)
                if self.view.render_incoming(entry):
                    rendered.append(entry)
                self.processed.add(incoming.id, incoming.timestamp)

            self._watermark = highest
            self.processed.prune(highest)
            self.deleted.prune(highest)

        if rendered:
            logger.debug("Rendered %d new messages in room %s", len(rendered), self.session.room_id)
        return rendered

    def stop(self):
        self.stopped = True

    def mark_processed(self, message_id: str, timestamp: int = 0):
        with self._state_lock:
            self.processed.add(message_id, max(timestamp, self._watermark))

    def mark_deleted(self, message_id: str, timestamp: int = 0):
        with self._state_lock:
            self.deleted.add(message_id, max(timestamp, self._watermark))
            self.processed.discard(message_id)

    def _decode(self, incoming) -> ViewEntry:
        entry = ViewEntry(
            id=incoming.id,
            sender=PARTNER_LABEL,
            text=DECRYPT_PLACEHOLDER,
            status=RECEIVED,
            preview=str(incoming.message)[:PREVIEW_CHARS],
            timestamp=incoming.timestamp,
        )
        if not isinstance(incoming.message, str):
            logger.warning("Message %s has no ciphertext payload", incoming.id)
            return entry
        try:
            opened = open_payload(self.session.key, incoming.message)
        except DecryptionError as e:
            logger.warning("Could not decrypt message %s: %s", incoming.id, e)
            return entry

        entry.kind = opened.kind
        if opened.kind == "text":
            entry.text = opened.text
        else:
            entry.text = opened.name or opened.kind
            entry.attachment = opened.data
            entry.mime = opened.mime
            entry.name = opened.name
        return entry


class Poller:
    """
    Calls tick every interval on a background thread until stopped.

    Ticks never queue up: a tick that finds the previous one still running
    is skipped by the engine.
    """

    def __init__(self, tick, interval: float = POLL_INTERVAL, name: str = "cipherroom-poller"):
        self.tick = tick
        self.interval = interval
        self.name = name
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        self.stop()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop,), name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 1.0):
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def _run(self, stop: threading.Event):
        while not stop.wait(self.interval):
            self.tick()
