"""Event model and message content helpers."""

from __future__ import annotations

import html
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Event types
EVENT_MESSAGE = "m.room.message"
EVENT_MEMBER = "m.room.member"
EVENT_POWER_LEVELS = "m.room.power_levels"
EVENT_REDACTION = "m.room.redaction"
EVENT_TYPING = "m.typing"
EVENT_RECEIPT = "m.receipt"
EVENT_PRESENCE = "m.presence"

# Message types
MSG_TEXT = "m.text"
MSG_NOTICE = "m.notice"
MSG_EMOTE = "m.emote"
MSG_IMAGE = "m.image"
MSG_VIDEO = "m.video"
MSG_AUDIO = "m.audio"
MSG_FILE = "m.file"
MSG_LOCATION = "m.location"

HTML_FORMAT = "org.matrix.custom.html"

_HTML_TAG = re.compile(r"<[^<]+?>")


class Event(BaseModel):
    """A single Matrix event as delivered by /sync or /messages."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    state_key: str | None = None
    sender: str = ""
    type: str = ""
    timestamp: int = Field(default=0, alias="origin_server_ts")
    event_id: str = ""
    room_id: str = ""
    redacts: str | None = None
    unsigned: dict[str, Any] = Field(default_factory=dict)
    content: dict[str, Any] = Field(default_factory=dict)
    prev_content: dict[str, Any] | None = None

    @property
    def is_state(self) -> bool:
        return self.state_key is not None

    def body(self) -> str | None:
        """Return content["body"] if present and a string."""
        value = self.content.get("body")
        return value if isinstance(value, str) else None

    def message_type(self) -> str | None:
        """Return content["msgtype"] if present and a string."""
        value = self.content.get("msgtype")
        return value if isinstance(value, str) else None


# =============================================================================
# Message content
# =============================================================================


class _Content(BaseModel):
    model_config = ConfigDict(extra="allow")


class TextMessage(_Content):
    msgtype: str = MSG_TEXT
    body: str
    formatted_body: str | None = None
    format: str | None = None


class HTMLMessage(_Content):
    msgtype: str = MSG_TEXT
    body: str
    format: str = HTML_FORMAT
    formatted_body: str


class ThumbnailInfo(_Content):
    h: int | None = None
    w: int | None = None
    mimetype: str | None = None
    size: int | None = None


class ImageInfo(_Content):
    h: int | None = None
    w: int | None = None
    mimetype: str | None = None
    size: int | None = None
    thumbnail_info: ThumbnailInfo | None = None
    thumbnail_url: str | None = None


class VideoInfo(_Content):
    mimetype: str | None = None
    thumbnail_info: ThumbnailInfo | None = None
    thumbnail_url: str | None = None
    h: int | None = None
    w: int | None = None
    duration: int | None = None
    size: int | None = None


class AudioInfo(_Content):
    mimetype: str | None = None
    size: int | None = None
    duration: int | None = None  # ms


class FileInfo(_Content):
    mimetype: str | None = None
    size: int | None = None


class ImageMessage(_Content):
    msgtype: str = MSG_IMAGE
    body: str
    url: str
    info: ImageInfo | None = None


class VideoMessage(_Content):
    msgtype: str = MSG_VIDEO
    body: str
    url: str
    info: VideoInfo | None = None


class AudioMessage(_Content):
    msgtype: str = MSG_AUDIO
    body: str
    url: str
    info: AudioInfo | None = None


class FileMessage(_Content):
    msgtype: str = MSG_FILE
    body: str
    url: str
    filename: str | None = None
    info: FileInfo | None = None
    thumbnail_url: str | None = None
    thumbnail_info: ImageInfo | None = None


class LocationMessage(_Content):
    msgtype: str = MSG_LOCATION
    body: str
    geo_uri: str
    thumbnail_url: str | None = None
    thumbnail_info: ImageInfo | None = None


class NotificationPowerLevels(_Content):
    room: int = 50


class PowerLevels(_Content):
    """Content of an m.room.power_levels state event."""

    ban: int = 50
    invite: int = 0
    kick: int = 50
    redact: int = 50
    events: dict[str, int] = Field(default_factory=dict)
    users: dict[str, int] = Field(default_factory=dict)
    notifications: NotificationPowerLevels = Field(default_factory=NotificationPowerLevels)
    events_default: int = 0
    state_default: int = 50
    users_default: int = 0

    def user_level(self, user_id: str) -> int:
        return self.users.get(user_id, self.users_default)


def strip_html(text: str) -> str:
    """Remove tags and unescape entities."""
    return html.unescape(_HTML_TAG.sub("", text))


def get_html_message(msgtype: str, html_text: str) -> HTMLMessage:
    """Build an HTML message whose plain body is the tag-stripped HTML."""
    return HTMLMessage(
        msgtype=msgtype,
        body=strip_html(html_text),
        format=HTML_FORMAT,
        formatted_body=html_text,
    )
