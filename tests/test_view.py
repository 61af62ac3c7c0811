"""Tests for the message view model."""

from cipherroom.clients.view import (
    PARTNER_LABEL,
    PENDING,
    RECEIVED,
    SELF_LABEL,
    SENT,
    MessageView,
    ViewEntry,
)


def partner_entry(message_id, text="hi"):
    return ViewEntry(id=message_id, sender=PARTNER_LABEL, text=text, status=RECEIVED)


class TestRendering:
    def test_render_once_per_id(self):
        rendered = []
        view = MessageView(on_render=rendered.append)

        assert view.render_incoming(partner_entry("m1")) is True
        assert view.render_incoming(partner_entry("m1", "again")) is False

        assert view.render_count == 1
        assert view.get("m1").text == "hi"
        assert [e.id for e in rendered] == ["m1"]

    def test_pending_entry_is_confirmed_in_place(self):
        view = MessageView()
        view.render_incoming(partner_entry("m1"))
        view.add_pending("temp-1", "mine")
        view.render_incoming(partner_entry("m2"))

        assert view.get("temp-1").status == PENDING
        assert view.confirm("temp-1", "server-1", 1234)

        assert [e.id for e in view.entries()] == ["m1", "server-1", "m2"]
        entry = view.get("server-1")
        assert entry.sender == SELF_LABEL
        assert entry.status == SENT
        assert entry.timestamp == 1234
        assert "temp-1" not in view

    def test_confirm_unknown_id(self):
        assert MessageView().confirm("temp-x", "server-x") is False

    def test_remove(self):
        view = MessageView()
        view.render_incoming(partner_entry("m1"))
        assert view.remove("m1") is True
        assert view.remove("m1") is False
        assert len(view) == 0


class TestSelection:
    def test_selection_requires_mode(self):
        view = MessageView()
        view.render_incoming(partner_entry("m1"))
        assert view.toggle_selected("m1") is False
        assert view.selected_ids == []

    def test_select_toggle_and_order(self):
        view = MessageView()
        for message_id in ("a", "b", "c"):
            view.render_incoming(partner_entry(message_id))
        view.enter_selection_mode()

        view.toggle_selected("c")
        view.toggle_selected("a")
        view.toggle_selected("b")
        view.toggle_selected("b")
        view.toggle_selected("missing")

        assert view.selected_ids == ["a", "c"]

        view.remove("a")
        assert view.selected_ids == ["c"]

        view.exit_selection_mode()
        assert view.selected_ids == []
        assert not view.selection_mode


class TestBanner:
    def test_banner_expires(self, monkeypatch):
        view = MessageView()
        view.show_error("Failed to send")
        assert view.current_banner().message == "Failed to send"

        monkeypatch.setattr(MessageView, "BANNER_SECONDS", -1)
        assert view.current_banner() is None
