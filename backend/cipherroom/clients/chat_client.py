# cipherroom/clients/chat_client.py

import argparse
import logging
import secrets
import time

from cipherroom.clients.session import LocalStore, NoActiveRoom, RoomSession
from cipherroom.clients.sync import POLL_INTERVAL, PREVIEW_CHARS, Poller, ReconciliationEngine
from cipherroom.clients.transport import SERVER_URL, ChatTransport, TransportError
from cipherroom.clients.view import MessageView
from cipherroom.core.crypto import encrypt_media, encrypt_text

logger = logging.getLogger(__name__)


def new_temp_id() -> str:
    return f"temp-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class RoomChatClient:
    """
    One joined room: sends, deletes and the polling loop that keeps the
    view current. Sends and deletes show up locally before the server
    has answered.
    """

    def __init__(self, session: RoomSession, transport: ChatTransport,
                 view: MessageView | None = None, engine: ReconciliationEngine | None = None,
                 poll_interval: float = POLL_INTERVAL):
        self.session = session
        self.transport = transport
        if view is None:
            view = engine.view if engine is not None else MessageView()
        self.view = view
        self.engine = engine if engine is not None else ReconciliationEngine(session, transport, view)
        self.poller = Poller(self.engine.tick, poll_interval)
        self.draft = ""  # restored input after a failed send

    # ---------- polling ----------

    def start(self):
        self.poller.start()
        logger.info("Polling room %s every %.1fs", self.session.room_id, self.poller.interval)

    def stop(self):
        self.poller.stop()

    def poll_once(self) -> bool:
        return self.engine.tick()

    def set_visible(self, visible: bool):
        self.session.visible = visible

    def leave(self):
        self.stop()
        self.engine.stop()
        self.session.leave()
        self.transport.close()

    # ---------- send path ----------

    def send_text(self, text: str) -> str | None:
        """Send a text message; returns the server id, or None if it failed."""
        text = (text or "").strip()
        if not text:
            self.view.show_error("Message must not be empty")
            return None

        temp_id = new_temp_id()
        entry = self.view.add_pending(temp_id, text)
        payload = encrypt_text(self.session.key, text)
        entry.preview = payload[:PREVIEW_CHARS]

        return self._deliver(temp_id, payload, restore=text)

    def send_file(self, data: bytes, kind: str = "file",
                  mime: str = "application/octet-stream", name: str = "") -> str | None:
        """Send an attachment as an encrypted media envelope."""
        payload = encrypt_media(self.session.key, data, kind=kind, mime=mime, name=name)

        temp_id = new_temp_id()
        self.view.add_pending(
            temp_id, name or kind, kind=kind,
            attachment=data, mime=mime, name=name, preview=payload[:PREVIEW_CHARS],
        )
        return self._deliver(temp_id, payload)

    def _deliver(self, temp_id: str, payload: str, restore: str = "") -> str | None:
        try:
            receipt = self.transport.send(
                self.session.room_id, payload,
                message_id=temp_id, sender=self.session.sender_id,
            )
        except TransportError as e:
            logger.error("Send error: %s", e)
            self.view.discard(temp_id)
            self.view.show_error(f"Failed to send: {e}")
            self.draft = restore
            return None

        if receipt.id in self.engine.deleted:
            # A poll already saw this message deleted
            self.view.discard(temp_id)
        else:
            self.view.confirm(temp_id, receipt.id, receipt.timestamp)
            self.engine.mark_processed(receipt.id, receipt.timestamp)
        self.session.touch()
        self.draft = ""
        return receipt.id

    # ---------- delete path ----------

    def delete(self, message_ids) -> list:
        """Remove messages locally right away, then soft-delete them on the server."""
        ids = [message_id for message_id in dict.fromkeys(message_ids) if message_id]
        if not ids:
            return []

        for message_id in ids:
            self.view.remove(message_id)
            self.engine.mark_deleted(message_id)

        try:
            deleted = self.transport.delete(self.session.room_id, ids)
        except TransportError as e:
            # Local removal stays; the server copy may still be live
            logger.error("Delete error: %s", e)
            self.view.show_error("Failed to delete messages on the server, refresh the room")
            return []

        logger.info("Deleted %d messages in room %s", len(deleted), self.session.room_id)
        return deleted

    def delete_selected(self) -> list:
        ids = self.view.selected_ids
        self.view.exit_selection_mode()
        return self.delete(ids)


# =========================
# DEMO USAGE
# =========================

def _print_entry(entry):
    print(f"\n[{entry.sender}] {entry.text}  ({entry.id})")


def main(argv=None):
    from cipherroom.utils.logger import setup_logger

    parser = argparse.ArgumentParser(description="CipherRoom terminal client")
    parser.add_argument("--server", default=SERVER_URL)
    parser.add_argument("--room", help="room ID to join")
    parser.add_argument("--create", action="store_true", help="create a fresh room")
    parser.add_argument("--state-file", default=None)
    args = parser.parse_args(argv)

    setup_logger("WARNING")
    store = LocalStore(args.state_file) if args.state_file else LocalStore()

    if args.create:
        session = RoomSession.create(store)
    elif args.room:
        session = RoomSession.join(store, args.room)
    else:
        try:
            session = RoomSession.resume(store)
        except NoActiveRoom:
            parser.error("no stored room, pass --room or --create")

    client = RoomChatClient(session, ChatTransport(args.server), MessageView(on_render=_print_entry))
    print(f"Room {session.room_id} | /delete <id>... | /leave | /quit")

    client.poll_once()
    client.start()
    try:
        while True:
            line = input("> ").strip()
            if line == "/quit":
                break
            if line == "/leave":
                client.leave()
                return 0
            if line.startswith("/delete "):
                client.delete(line.split()[1:])
            elif line:
                if client.send_text(line) is None:
                    print(f"! {client.view.banner.message} (draft kept: {client.draft})")
    except (EOFError, KeyboardInterrupt):
        pass
    client.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
