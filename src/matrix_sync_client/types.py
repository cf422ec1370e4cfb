"""Request and response payloads for the client-server API.

All models allow extra fields so newer homeservers can add keys without
breaking decoding. Optional request fields left as None are dropped when
the body is serialized.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import RespError  # noqa: F401  (re-exported with the other payloads)
from .events import Event


class _Model(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Empty(_Model):
    """Response with no meaningful fields (leave, kick, ban, ...)."""


# =============================================================================
# Sync
# =============================================================================


class RespCreateFilter(_Model):
    filter_id: str


class EventList(_Model):
    events: list[Event] = Field(default_factory=list)


class Timeline(EventList):
    limited: bool = False
    prev_batch: str | None = None


class JoinedRoom(_Model):
    state: EventList = Field(default_factory=EventList)
    timeline: Timeline = Field(default_factory=Timeline)
    ephemeral: EventList = Field(default_factory=EventList)
    account_data: EventList = Field(default_factory=EventList)
    unread_notifications: dict[str, int] | None = None


class InvitedRoom(_Model):
    invite_state: EventList = Field(default_factory=EventList)


class LeftRoom(_Model):
    state: EventList = Field(default_factory=EventList)
    timeline: Timeline = Field(default_factory=Timeline)


class SyncRooms(_Model):
    join: dict[str, JoinedRoom] = Field(default_factory=dict)
    invite: dict[str, InvitedRoom] = Field(default_factory=dict)
    leave: dict[str, LeftRoom] = Field(default_factory=dict)


class RespSync(_Model):
    """One decoded /sync batch."""

    next_batch: str
    account_data: EventList = Field(default_factory=EventList)
    presence: EventList = Field(default_factory=EventList)
    to_device: EventList = Field(default_factory=EventList)
    rooms: SyncRooms = Field(default_factory=SyncRooms)


# =============================================================================
# Authentication / registration
# =============================================================================


class UserIdentifier(_Model):
    type: str = "m.id.user"
    user: str | None = None
    medium: str | None = None
    address: str | None = None


class ReqLogin(_Model):
    type: str = "m.login.password"
    identifier: UserIdentifier | None = None
    password: str | None = None
    token: str | None = None
    device_id: str | None = None
    initial_device_display_name: str | None = None


class RespLogin(_Model):
    access_token: str
    user_id: str
    device_id: str | None = None
    home_server: str | None = None
    well_known: dict[str, Any] | None = None


class ReqRegister(_Model):
    username: str | None = None
    password: str | None = None
    device_id: str | None = None
    initial_device_display_name: str | None = None
    inhibit_login: bool | None = None
    auth: dict[str, Any] | None = None


class RespRegister(_Model):
    user_id: str
    access_token: str | None = None
    device_id: str | None = None
    home_server: str | None = None
    refresh_token: str | None = None


class AuthFlow(_Model):
    stages: list[str] = Field(default_factory=list)


class RespUserInteractive(_Model):
    """401 body describing the interactive-auth flows a server accepts."""

    flows: list[AuthFlow] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)
    session: str | None = None
    completed: list[str] = Field(default_factory=list)
    errcode: str | None = None
    error: str | None = None

    def has_single_stage_flow(self, stage: str) -> bool:
        return any(flow.stages == [stage] for flow in self.flows)


class RespWhoAmI(_Model):
    user_id: str
    device_id: str | None = None


class RespVersions(_Model):
    versions: list[str] = Field(default_factory=list)
    unstable_features: dict[str, bool] = Field(default_factory=dict)


# =============================================================================
# Rooms
# =============================================================================


class ReqInvite3PID(_Model):
    id_server: str
    medium: str
    address: str
    id_access_token: str | None = None


class ReqCreateRoom(_Model):
    visibility: str | None = None
    room_alias_name: str | None = None
    name: str | None = None
    topic: str | None = None
    invite: list[str] | None = None
    invite_3pid: list[ReqInvite3PID] | None = None
    creation_content: dict[str, Any] | None = None
    initial_state: list[dict[str, Any]] | None = None
    preset: str | None = None
    is_direct: bool | None = None
    room_version: str | None = None
    power_level_content_override: dict[str, Any] | None = None


class RespCreateRoom(_Model):
    room_id: str


class RespJoinRoom(_Model):
    room_id: str


class ReqInviteUser(_Model):
    user_id: str
    reason: str | None = None


class ReqKickUser(_Model):
    user_id: str
    reason: str | None = None


class ReqBanUser(_Model):
    user_id: str
    reason: str | None = None


class ReqUnbanUser(_Model):
    user_id: str
    reason: str | None = None


class ReqRedact(_Model):
    reason: str | None = None


class ReqTyping(_Model):
    typing: bool
    timeout: int | None = None


class RespSendEvent(_Model):
    event_id: str


class RespJoinedRooms(_Model):
    joined_rooms: list[str] = Field(default_factory=list)


class JoinedMember(_Model):
    display_name: str | None = None
    avatar_url: str | None = None


class RespJoinedMembers(_Model):
    joined: dict[str, JoinedMember] = Field(default_factory=dict)


class RespMembers(_Model):
    chunk: list[Event] = Field(default_factory=list)


class RespMessages(_Model):
    start: str | None = None
    end: str | None = None
    chunk: list[Event] = Field(default_factory=list)
    state: list[Event] = Field(default_factory=list)


class RespRoomAlias(_Model):
    room_id: str
    servers: list[str] = Field(default_factory=list)


class ReqHierarchy(_Model):
    room_id: str
    suggested_only: bool = False
    limit: int | None = None
    max_depth: int | None = None
    from_: str | None = Field(default=None, alias="from")


class HierarchyRoom(_Model):
    room_id: str
    name: str | None = None
    topic: str | None = None
    canonical_alias: str | None = None
    num_joined_members: int = 0
    room_type: str | None = None
    world_readable: bool = False
    guest_can_join: bool = False
    children_state: list[dict[str, Any]] = Field(default_factory=list)


class RespHierarchy(_Model):
    rooms: list[HierarchyRoom] = Field(default_factory=list)
    next_batch: str | None = None


# =============================================================================
# Profile / presence
# =============================================================================


class RespUserDisplayName(_Model):
    displayname: str | None = None


class RespAvatarURL(_Model):
    avatar_url: str | None = None


class RespUserStatus(_Model):
    presence: str
    status_msg: str | None = None
    last_active_ago: int | None = None
    currently_active: bool | None = None


# =============================================================================
# Account
# =============================================================================


class ReqEmailRequestToken(_Model):
    client_secret: str
    email: str
    send_attempt: int
    next_link: str | None = None
    id_server: str | None = None
    id_access_token: str | None = None


class RespEmailRequestToken(_Model):
    sid: str
    submit_url: str | None = None


class ReqAccountPassword(_Model):
    new_password: str
    logout_devices: bool = True
    auth: dict[str, Any] | None = None


class ThreePIDCreds(_Model):
    client_secret: str
    sid: str
    id_server: str | None = None
    id_access_token: str | None = None


class ReqPostThreePID(_Model):
    three_pid_creds: ThreePIDCreds


class ThreePID(_Model):
    medium: str
    address: str
    added_at: int | None = None
    validated_at: int | None = None


class RespGetThreePID(_Model):
    threepids: list[ThreePID] = Field(default_factory=list)


class Device(_Model):
    device_id: str
    display_name: str | None = None
    last_seen_ip: str | None = None
    last_seen_ts: int | None = None


class RespGetDevices(_Model):
    devices: list[Device] = Field(default_factory=list)


class RespRegisterAvailable(_Model):
    available: bool = False


# =============================================================================
# Directory / media / misc
# =============================================================================


class PublicRoom(_Model):
    room_id: str
    name: str | None = None
    topic: str | None = None
    canonical_alias: str | None = None
    avatar_url: str | None = None
    num_joined_members: int = 0
    world_readable: bool = False
    guest_can_join: bool = False


class RespPublicRooms(_Model):
    chunk: list[PublicRoom] = Field(default_factory=list)
    next_batch: str | None = None
    prev_batch: str | None = None
    total_room_count_estimate: int | None = None


class ReqUserDirectorySearch(_Model):
    search_term: str
    limit: int | None = None


class DirectoryUser(_Model):
    user_id: str
    display_name: str | None = None
    avatar_url: str | None = None


class RespUserDirectorySearch(_Model):
    limited: bool = False
    results: list[DirectoryUser] = Field(default_factory=list)


class RespMediaUpload(_Model):
    content_uri: str


class RespTurnServer(_Model):
    username: str | None = None
    password: str | None = None
    uris: list[str] = Field(default_factory=list)
    ttl: int | None = None
