"""Tests for the event model and message content helpers."""

from __future__ import annotations

from matrix_sync_client.events import (
    HTML_FORMAT,
    MSG_NOTICE,
    Event,
    PowerLevels,
    get_html_message,
    strip_html,
)


class TestEvent:
    def test_wire_names(self) -> None:
        event = Event.model_validate(
            {
                "type": "m.room.message",
                "sender": "@alice:example.org",
                "origin_server_ts": 1700000000000,
                "event_id": "$abc",
                "content": {"msgtype": "m.text", "body": "hi"},
                "custom_field": 1,
            }
        )
        assert event.timestamp == 1700000000000
        assert event.body() == "hi"
        assert event.message_type() == "m.text"
        assert not event.is_state
        assert event.model_extra == {"custom_field": 1}

    def test_non_string_body(self) -> None:
        event = Event(type="m.room.message", content={"body": 5})
        assert event.body() is None
        assert event.message_type() is None

    def test_state_event(self) -> None:
        assert Event(type="m.room.name", state_key="").is_state


class TestHTMLMessages:
    def test_strip_html(self) -> None:
        assert strip_html("<b>bold</b> &amp; <i>it</i>") == "bold & it"

    def test_get_html_message(self) -> None:
        msg = get_html_message(MSG_NOTICE, "<p>Hello <b>there</b></p>")
        assert msg.msgtype == MSG_NOTICE
        assert msg.body == "Hello there"
        assert msg.format == HTML_FORMAT
        assert msg.formatted_body == "<p>Hello <b>there</b></p>"


class TestPowerLevels:
    def test_defaults_and_user_level(self) -> None:
        levels = PowerLevels.model_validate({"users": {"@admin:x": 100}, "users_default": 10})
        assert levels.user_level("@admin:x") == 100
        assert levels.user_level("@someone:x") == 10
        assert levels.state_default == 50
        assert levels.notifications.room == 50
