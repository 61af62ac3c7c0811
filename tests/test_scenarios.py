"""End-to-end scenarios: two clients talking through the real handler."""

import pytest

from cipherroom.clients.chat_client import RoomChatClient
from cipherroom.clients.transport import Delta, IncomingMessage
from cipherroom.clients.view import PARTNER_LABEL
from cipherroom.core.crypto import encrypt_text


@pytest.fixture
def alice(make_session, make_transport):
    return RoomChatClient(make_session("alice"), make_transport(), poll_interval=60)


@pytest.fixture
def bob(make_session, make_transport):
    return RoomChatClient(make_session("bob"), make_transport(), poll_interval=60)


def partner_texts(client):
    return [e.text for e in client.view.entries() if e.sender == PARTNER_LABEL]


class TestConversation:
    def test_message_reaches_partner_exactly_once(self, alice, bob):
        server_id = alice.send_text("hello")

        assert server_id is not None
        assert [e.id for e in alice.view.entries()] == [server_id]

        assert bob.poll_once() is True
        assert partner_texts(bob) == ["hello"]
        assert bob.view.get(server_id) is not None

        for _ in range(5):
            assert bob.poll_once() is True
        assert partner_texts(bob) == ["hello"]
        assert bob.view.render_count == 1

    def test_sender_never_renders_own_message_from_poll(self, alice, bob):
        alice.send_text("hello")
        bob.send_text("hi alice")

        for _ in range(3):
            alice.poll_once()

        assert [(e.sender, e.text) for e in alice.view.entries()] == [
            ("You", "hello"),
            ("Partner", "hi alice"),
        ]
        assert alice.view.render_count == 2

    def test_watermark_follows_server_timestamps(self, alice, bob):
        alice.send_text("one")
        bob.poll_once()
        first = bob.engine.watermark

        alice.send_text("two")
        bob.poll_once()

        assert first > 0
        assert bob.engine.watermark >= first
        assert partner_texts(bob) == ["one", "two"]

    def test_other_rooms_stay_separate(self, alice, make_session, make_transport):
        outsider = RoomChatClient(make_session("carol", room_id="ELSEWHERE"), make_transport(), poll_interval=60)

        alice.send_text("for ABCD1234 only")
        outsider.poll_once()

        assert len(outsider.view) == 0


class TestDeletion:
    def test_delete_propagates_and_replay_is_ignored(self, alice, bob):
        message_id = alice.send_text("delete me")
        keep_id = alice.send_text("keep me")
        bob.poll_once()
        assert message_id in bob.view

        alice.delete([message_id])
        assert bob.poll_once() is True

        assert message_id not in bob.view
        assert keep_id in bob.view

        # A replayed insert for the deleted id, stamped at the current watermark
        bob.engine.apply_delta(Delta(messages=[
            IncomingMessage(message_id, encrypt_text(bob.session.key, "delete me"),
                            "alice", bob.engine.watermark),
        ]))
        bob.poll_once()

        assert message_id not in bob.view
        assert partner_texts(bob) == ["keep me"]

    def test_delete_before_partner_ever_saw_it(self, alice, bob):
        message_id = alice.send_text("gone before polling")
        alice.delete([message_id])

        bob.poll_once()

        assert message_id not in bob.view
        assert message_id in bob.engine.deleted
        assert len(bob.view) == 0
