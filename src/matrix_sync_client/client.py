"""Matrix client - homeserver endpoints plus the sync loop.

Usage:
    async with create_client("https://matrix.example.org", "@bot:example.org", token) as client:
        client.processor.on_event_type("m.room.message", handle_message)
        await client.sync()

Endpoint groups hang off the client as properties:

    client.account    login, registration, devices, 3pids, account data
    client.rooms      membership, sending, state, history
    client.profile    display name, avatar, presence
    client.directory  versions, public rooms, user search, TURN
    client.media      content repository uploads
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from .config import ClientConfig
from .errors import MatrixClientError, ProtocolError, ResponseDecodeError
from .events import (
    EVENT_MESSAGE,
    EVENT_POWER_LEVELS,
    HTML_FORMAT,
    MSG_NOTICE,
    MSG_TEXT,
    ImageMessage,
    PowerLevels,
    TextMessage,
    VideoMessage,
)
from .filter import Filter
from .store import InMemoryStore, TokenStore
from .sync import SyncEngine, SyncState
from .syncer import BatchProcessor, DefaultSyncer
from .transport import HTTPTransport
from .types import (
    ReqAccountPassword,
    ReqBanUser,
    ReqCreateRoom,
    ReqEmailRequestToken,
    ReqInvite3PID,
    ReqInviteUser,
    ReqKickUser,
    ReqLogin,
    ReqPostThreePID,
    ReqRedact,
    ReqRegister,
    ReqTyping,
    ReqUnbanUser,
    ReqUserDirectorySearch,
    RespAvatarURL,
    RespCreateFilter,
    RespCreateRoom,
    RespEmailRequestToken,
    RespGetDevices,
    RespGetThreePID,
    RespHierarchy,
    RespJoinedMembers,
    RespJoinedRooms,
    RespJoinRoom,
    RespLogin,
    RespMediaUpload,
    RespMembers,
    RespMessages,
    RespPublicRooms,
    RespRegister,
    RespRegisterAvailable,
    RespRoomAlias,
    RespSendEvent,
    RespSync,
    RespTurnServer,
    RespUserDirectorySearch,
    RespUserDisplayName,
    RespUserInteractive,
    RespUserStatus,
    RespVersions,
    RespWhoAmI,
    UserIdentifier,
)
from .urls import build_base_url, build_url

logger = logging.getLogger(__name__)

LOGIN_DUMMY = "m.login.dummy"


def new_txn_id() -> str:
    """Unique transaction id for idempotent PUTs."""
    return f"txn_{uuid.uuid4().hex}"


def _parse_user_interactive(contents: bytes | None) -> RespUserInteractive | None:
    if not contents:
        return None
    try:
        return RespUserInteractive.model_validate_json(contents)
    except ValidationError:
        return None


# =============================================================================
# Endpoint groups
# =============================================================================


@dataclass
class AccountAPI:
    """Login, registration and account management."""

    _client: MatrixClient

    async def _register(
        self, url: str, req: ReqRegister
    ) -> tuple[RespRegister | None, RespUserInteractive | None]:
        try:
            resp = await self._client.make_request("POST", url, req, RespRegister)
        except ProtocolError as e:
            if e.code != 401:
                raise
            uia = _parse_user_interactive(e.contents)
            if uia is None:
                raise
            return None, uia
        return resp, None

    async def register(
        self, req: ReqRegister
    ) -> tuple[RespRegister | None, RespUserInteractive | None]:
        """Register with kind=user.

        Returns:
            (response, None) on success, or (None, flows) when the server
            requires interactive authentication
        """
        return await self._register(self._client.build_url("register"), req)

    async def register_guest(
        self, req: ReqRegister
    ) -> tuple[RespRegister | None, RespUserInteractive | None]:
        """Register with kind=guest."""
        url = self._client.build_url_with_query(["register"], {"kind": "guest"})
        return await self._register(url, req)

    async def register_dummy(self, req: ReqRegister) -> RespRegister:
        """Register using the m.login.dummy flow.

        Most development homeservers accept this. Does not set credentials
        on the client; see MatrixClient.set_credentials().

        Raises:
            MatrixClientError: If the server does not offer m.login.dummy
        """
        resp, uia = await self.register(req)
        if uia is not None and uia.has_single_stage_flow(LOGIN_DUMMY):
            auth: dict[str, Any] = {"type": LOGIN_DUMMY}
            if uia.session:
                auth["session"] = uia.session
            resp, _ = await self.register(req.model_copy(update={"auth": auth}))
        if resp is None:
            raise MatrixClientError("registration failed: does this server support m.login.dummy?")
        return resp

    async def login(self, req: ReqLogin) -> RespLogin:
        """Log in. Does not set credentials on the client."""
        return await self._client.make_request("POST", self._client.build_url("login"), req, RespLogin)

    async def login_password(
        self, user: str, password: str, device_id: str | None = None
    ) -> RespLogin:
        """Password login with an m.id.user identifier."""
        req = ReqLogin(
            type="m.login.password",
            identifier=UserIdentifier(type="m.id.user", user=user),
            password=password,
            device_id=device_id,
        )
        return await self.login(req)

    async def logout(self) -> None:
        """Invalidate the current access token. Credentials stay on the client."""
        await self._client.make_request("POST", self._client.build_url("logout"), {})

    async def logout_all(self) -> None:
        await self._client.make_request("POST", self._client.build_url("logout", "all"), {})

    async def whoami(self) -> RespWhoAmI:
        return await self._client.make_request(
            "GET", self._client.build_url("account", "whoami"), response_type=RespWhoAmI
        )

    async def available(self, username: str) -> bool:
        """Check whether a username is free. Taken names raise ProtocolError (M_USER_IN_USE)."""
        url = self._client.build_url_with_query(["register", "available"], {"username": username})
        resp = await self._client.make_request("GET", url, response_type=RespRegisterAvailable)
        return bool(resp and resp.available)

    async def deactivate(self, auth: dict[str, Any] | None = None) -> None:
        body: dict[str, Any] = {"auth": auth} if auth else {}
        await self._client.make_request("POST", self._client.build_url("account", "deactivate"), body)

    async def change_password(self, req: ReqAccountPassword) -> None:
        await self._client.make_request("POST", self._client.build_url("account", "password"), req)

    async def request_3pid_email_token(self, req: ReqEmailRequestToken) -> RespEmailRequestToken:
        url = self._client.build_url("account", "3pid", "email", "requestToken")
        return await self._client.make_request("POST", url, req, RespEmailRequestToken)

    async def request_register_email_token(
        self, req: ReqEmailRequestToken
    ) -> RespEmailRequestToken:
        url = self._client.build_url("register", "email", "requestToken")
        return await self._client.make_request("POST", url, req, RespEmailRequestToken)

    async def request_password_email_token(
        self, req: ReqEmailRequestToken
    ) -> RespEmailRequestToken:
        url = self._client.build_url("account", "password", "email", "requestToken")
        return await self._client.make_request("POST", url, req, RespEmailRequestToken)

    async def get_three_pids(self) -> RespGetThreePID:
        url = self._client.build_url("account", "3pid")
        return await self._client.make_request("GET", url, response_type=RespGetThreePID)

    async def add_three_pid(self, req: ReqPostThreePID) -> None:
        await self._client.make_request("POST", self._client.build_url("account", "3pid"), req)

    async def get_devices(self) -> RespGetDevices:
        url = self._client.build_url("devices")
        return await self._client.make_request("GET", url, response_type=RespGetDevices)

    async def get_account_data(self, data_type: str) -> dict[str, Any]:
        url = self._client.build_url("user", self._client.user_id, "account_data", data_type)
        resp = await self._client.make_request("GET", url, response_type=dict[str, Any])
        return resp or {}

    async def put_account_data(self, data_type: str, data: Mapping[str, Any]) -> None:
        url = self._client.build_url("user", self._client.user_id, "account_data", data_type)
        await self._client.make_request("PUT", url, dict(data))


@dataclass
class RoomsAPI:
    """Room membership, messaging and state."""

    _client: MatrixClient

    async def create(self, req: ReqCreateRoom) -> RespCreateRoom:
        url = self._client.build_url("createRoom")
        return await self._client.make_request("POST", url, req, RespCreateRoom)

    async def join(
        self,
        room_id_or_alias: str,
        server_name: str | None = None,
        content: Any = None,
    ) -> RespJoinRoom:
        """Join a room by id or alias, optionally via a specific server."""
        if server_name:
            url = self._client.build_url_with_query(
                ["join", room_id_or_alias], {"server_name": server_name}
            )
        else:
            url = self._client.build_url("join", room_id_or_alias)
        return await self._client.make_request("POST", url, content, RespJoinRoom)

    async def leave(self, room_id: str) -> None:
        await self._client.make_request("POST", self._client.build_url("rooms", room_id, "leave"), {})

    async def forget(self, room_id: str) -> None:
        await self._client.make_request("POST", self._client.build_url("rooms", room_id, "forget"), {})

    async def invite(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        url = self._client.build_url("rooms", room_id, "invite")
        await self._client.make_request("POST", url, ReqInviteUser(user_id=user_id, reason=reason))

    async def invite_third_party(self, room_id: str, req: ReqInvite3PID) -> None:
        await self._client.make_request("POST", self._client.build_url("rooms", room_id, "invite"), req)

    async def kick(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        url = self._client.build_url("rooms", room_id, "kick")
        await self._client.make_request("POST", url, ReqKickUser(user_id=user_id, reason=reason))

    async def ban(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        url = self._client.build_url("rooms", room_id, "ban")
        await self._client.make_request("POST", url, ReqBanUser(user_id=user_id, reason=reason))

    async def unban(self, room_id: str, user_id: str, reason: str | None = None) -> None:
        url = self._client.build_url("rooms", room_id, "unban")
        await self._client.make_request("POST", url, ReqUnbanUser(user_id=user_id, reason=reason))

    async def typing(self, room_id: str, typing: bool, timeout_ms: int | None = None) -> None:
        url = self._client.build_url("rooms", room_id, "typing", self._client.user_id)
        await self._client.make_request("PUT", url, ReqTyping(typing=typing, timeout=timeout_ms))

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_message_event(
        self, room_id: str, event_type: str, content: Any, txn_id: str | None = None
    ) -> RespSendEvent:
        """Send a message event. A fresh transaction id is used unless one is given."""
        url = self._client.build_url("rooms", room_id, "send", event_type, txn_id or new_txn_id())
        return await self._client.make_request("PUT", url, content, RespSendEvent)

    async def send_state_event(
        self, room_id: str, event_type: str, state_key: str, content: Any
    ) -> RespSendEvent:
        url = self._client.build_url("rooms", room_id, "state", event_type, state_key)
        return await self._client.make_request("PUT", url, content, RespSendEvent)

    async def send_text(self, room_id: str, text: str) -> RespSendEvent:
        return await self.send_message_event(room_id, EVENT_MESSAGE, TextMessage(msgtype=MSG_TEXT, body=text))

    async def send_formatted_text(
        self, room_id: str, text: str, formatted_text: str
    ) -> RespSendEvent:
        content = TextMessage(
            msgtype=MSG_TEXT, body=text, formatted_body=formatted_text, format=HTML_FORMAT
        )
        return await self.send_message_event(room_id, EVENT_MESSAGE, content)

    async def send_notice(self, room_id: str, text: str) -> RespSendEvent:
        return await self.send_message_event(room_id, EVENT_MESSAGE, TextMessage(msgtype=MSG_NOTICE, body=text))

    async def send_image(self, room_id: str, body: str, url: str) -> RespSendEvent:
        return await self.send_message_event(room_id, EVENT_MESSAGE, ImageMessage(body=body, url=url))

    async def send_video(self, room_id: str, body: str, url: str) -> RespSendEvent:
        return await self.send_message_event(room_id, EVENT_MESSAGE, VideoMessage(body=body, url=url))

    async def redact(
        self, room_id: str, event_id: str, reason: str | None = None, txn_id: str | None = None
    ) -> RespSendEvent:
        url = self._client.build_url("rooms", room_id, "redact", event_id, txn_id or new_txn_id())
        return await self._client.make_request("PUT", url, ReqRedact(reason=reason), RespSendEvent)

    async def mark_read(self, room_id: str, event_id: str) -> None:
        """Mark event_id and everything before it as read."""
        url = self._client.build_url("rooms", room_id, "receipt", "m.read", event_id)
        await self._client.make_request("POST", url, {})

    # -------------------------------------------------------------------------
    # State and history
    # -------------------------------------------------------------------------

    async def state_event(
        self, room_id: str, event_type: str, state_key: str = "", response_type: Any = dict[str, Any]
    ) -> Any:
        """Fetch the content of one state event."""
        url = self._client.build_url("rooms", room_id, "state", event_type, state_key)
        return await self._client.make_request("GET", url, response_type=response_type)

    async def power_levels(self, room_id: str) -> PowerLevels:
        return await self.state_event(room_id, EVENT_POWER_LEVELS, "", PowerLevels)

    async def send_power_levels(self, room_id: str, power_levels: PowerLevels) -> RespSendEvent:
        return await self.send_state_event(room_id, EVENT_POWER_LEVELS, "", power_levels)

    async def joined_rooms(self) -> RespJoinedRooms:
        url = self._client.build_url("joined_rooms")
        return await self._client.make_request("GET", url, response_type=RespJoinedRooms)

    async def joined_members(self, room_id: str) -> RespJoinedMembers:
        url = self._client.build_url("rooms", room_id, "joined_members")
        return await self._client.make_request("GET", url, response_type=RespJoinedMembers)

    async def members(self, room_id: str, membership: str | None = None) -> RespMembers:
        if membership:
            url = self._client.build_url_with_query(
                ["rooms", room_id, "members"], {"membership": membership}
            )
        else:
            url = self._client.build_url("rooms", room_id, "members")
        return await self._client.make_request("GET", url, response_type=RespMembers)

    async def left_members(self, room_id: str) -> RespMembers:
        return await self.members(room_id, "leave")

    async def invited_members(self, room_id: str) -> RespMembers:
        return await self.members(room_id, "invite")

    async def messages(
        self,
        room_id: str,
        from_token: str,
        to_token: str | None = None,
        direction: str = "b",
        limit: int | None = None,
    ) -> RespMessages:
        """Paginate room history.

        Args:
            room_id: Room to read
            from_token: Pagination token to start from
            to_token: Optional token to stop at
            direction: "b" (backwards) or "f" (forwards)
            limit: Maximum number of events
        """
        if direction not in ("b", "f"):
            raise ValueError(f"direction must be 'b' or 'f', got {direction!r}")
        query = {"from": from_token, "dir": direction}
        if to_token:
            query["to"] = to_token
        if limit:
            query["limit"] = str(limit)
        url = self._client.build_url_with_query(["rooms", room_id, "messages"], query)
        return await self._client.make_request("GET", url, response_type=RespMessages)

    async def hierarchy(
        self, room_id: str, suggested_only: bool = False, limit: int | None = None
    ) -> RespHierarchy:
        query = {"suggested_only": "true" if suggested_only else "false"}
        if limit:
            query["limit"] = str(limit)
        url = self._client.build_url_with_query(["rooms", room_id, "hierarchy"], query)
        return await self._client.make_request("GET", url, response_type=RespHierarchy)

    async def resolve_alias(self, room_alias: str) -> RespRoomAlias:
        url = self._client.build_url("directory", "room", room_alias)
        return await self._client.make_request("GET", url, response_type=RespRoomAlias)


@dataclass
class ProfileAPI:
    """Display name, avatar and presence."""

    _client: MatrixClient

    async def get_display_name(self, user_id: str) -> RespUserDisplayName:
        url = self._client.build_url("profile", user_id, "displayname")
        return await self._client.make_request("GET", url, response_type=RespUserDisplayName)

    async def get_own_display_name(self) -> RespUserDisplayName:
        return await self.get_display_name(self._client.user_id)

    async def set_display_name(self, display_name: str) -> None:
        url = self._client.build_url("profile", self._client.user_id, "displayname")
        await self._client.make_request("PUT", url, {"displayname": display_name})

    async def get_avatar_url(self, user_id: str | None = None) -> str | None:
        url = self._client.build_url("profile", user_id or self._client.user_id, "avatar_url")
        resp = await self._client.make_request("GET", url, response_type=RespAvatarURL)
        return resp.avatar_url if resp else None

    async def set_avatar_url(self, avatar_url: str) -> None:
        url = self._client.build_url("profile", self._client.user_id, "avatar_url")
        await self._client.make_request("PUT", url, {"avatar_url": avatar_url})

    async def get_status(self, user_id: str) -> RespUserStatus:
        url = self._client.build_url("presence", user_id, "status")
        return await self._client.make_request("GET", url, response_type=RespUserStatus)

    async def get_own_status(self) -> RespUserStatus:
        return await self.get_status(self._client.user_id)

    async def set_status(self, presence: str, status_msg: str = "") -> None:
        url = self._client.build_url("presence", self._client.user_id, "status")
        await self._client.make_request("PUT", url, {"presence": presence, "status_msg": status_msg})


@dataclass
class DirectoryAPI:
    """Server capabilities, room directory and user directory."""

    _client: MatrixClient

    async def versions(self) -> RespVersions:
        url = self._client.build_base_url("_matrix", "client", "versions")
        return await self._client.make_request("GET", url, response_type=RespVersions)

    async def public_rooms(
        self, limit: int | None = None, since: str | None = None, server: str | None = None
    ) -> RespPublicRooms:
        query: dict[str, str] = {}
        if limit:
            query["limit"] = str(limit)
        if since:
            query["since"] = since
        if server:
            query["server"] = server
        url = self._client.build_url_with_query(["publicRooms"], query)
        return await self._client.make_request("GET", url, response_type=RespPublicRooms)

    async def public_rooms_filtered(
        self,
        limit: int | None = None,
        since: str | None = None,
        server: str | None = None,
        search_term: str | None = None,
    ) -> RespPublicRooms:
        """Server-side filtered room directory (POST /publicRooms)."""
        body: dict[str, Any] = {}
        if limit:
            body["limit"] = limit
        if since:
            body["since"] = since
        if search_term:
            body["filter"] = {"generic_search_term": search_term}
        if server:
            url = self._client.build_url_with_query(["publicRooms"], {"server": server})
        else:
            url = self._client.build_url("publicRooms")
        return await self._client.make_request("POST", url, body, RespPublicRooms)

    async def search_users(self, search_term: str, limit: int | None = None) -> RespUserDirectorySearch:
        url = self._client.build_url("user_directory", "search")
        req = ReqUserDirectorySearch(search_term=search_term, limit=limit)
        return await self._client.make_request("POST", url, req, RespUserDirectorySearch)

    async def turn_server(self) -> RespTurnServer:
        url = self._client.build_url("voip", "turnServer")
        return await self._client.make_request("GET", url, response_type=RespTurnServer)


@dataclass
class MediaAPI:
    """Content repository."""

    _client: MatrixClient

    async def upload(self, content: bytes, content_type: str) -> RespMediaUpload:
        """Upload bytes and return the mxc:// URI."""
        url = self._client.build_base_url(self._client.config.media_prefix, "upload")
        return await self._client.transport.upload(url, content, content_type, RespMediaUpload)

    async def upload_link(self, link: str) -> RespMediaUpload:
        """Download an HTTP(S) URL and re-upload it to the content repository."""
        content, content_type = await self._client.transport.fetch(link)
        return await self.upload(content, content_type)


# =============================================================================
# Client
# =============================================================================


class MatrixClient:
    """Client for one user on one homeserver.

    Owns an HTTPTransport for requests and a SyncEngine for the /sync loop.
    The token store and batch processor are injected; an InMemoryStore and
    a DefaultSyncer are used when none are given.
    """

    def __init__(
        self,
        homeserver_url: str = "",
        user_id: str = "",
        access_token: str = "",
        *,
        config: ClientConfig | None = None,
        store: TokenStore | None = None,
        processor: BatchProcessor | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        config = (config or ClientConfig()).merged(
            homeserver_url=homeserver_url or None,
            user_id=user_id or None,
            access_token=access_token or None,
        )
        parsed = urlsplit(config.homeserver_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid homeserver URL: {config.homeserver_url!r}")

        self.config = config
        self.transport = HTTPTransport(
            access_token=config.access_token,
            randomize_x_forwarded_for=config.randomize_x_forwarded_for,
            timeout=config.request_timeout,
            http_client=http_client,
        )
        self.store = store if store is not None else InMemoryStore()
        self._owns_processor = processor is None
        self.processor = processor if processor is not None else DefaultSyncer(config.user_id)
        self._sync_engine = SyncEngine(
            self,
            self.store,
            self.processor,
            timeout_ms=config.sync_timeout_ms,
            set_presence=config.set_presence,
            full_state=config.full_state,
        )
        self._sync_tasks: set[asyncio.Task[None]] = set()

    def __repr__(self) -> str:
        return f"MatrixClient(homeserver_url={self.homeserver_url!r}, user_id={self.user_id!r})"

    # =========================================================================
    # Credentials
    # =========================================================================

    @property
    def homeserver_url(self) -> str:
        return self.config.homeserver_url

    @property
    def user_id(self) -> str:
        return self.config.user_id

    @property
    def access_token(self) -> str:
        return self.transport.access_token

    def set_credentials(self, user_id: str, access_token: str) -> None:
        """Set the user id and access token used for subsequent requests."""
        self.config.user_id = user_id
        self.config.access_token = access_token
        self.transport.access_token = access_token
        if self._owns_processor and isinstance(self.processor, DefaultSyncer):
            self.processor.user_id = user_id

    def clear_credentials(self) -> None:
        self.set_credentials("", "")

    # =========================================================================
    # Endpoint groups
    # =========================================================================

    @property
    def account(self) -> AccountAPI:
        return AccountAPI(_client=self)

    @property
    def rooms(self) -> RoomsAPI:
        return RoomsAPI(_client=self)

    @property
    def profile(self) -> ProfileAPI:
        return ProfileAPI(_client=self)

    @property
    def directory(self) -> DirectoryAPI:
        return DirectoryAPI(_client=self)

    @property
    def media(self) -> MediaAPI:
        return MediaAPI(_client=self)

    # =========================================================================
    # URLs and requests
    # =========================================================================

    def build_url(self, *parts: str) -> str:
        """URL under the client API prefix, e.g. build_url("rooms", room_id, "leave")."""
        return build_url(
            self.homeserver_url,
            self.config.prefix,
            parts,
            app_service_user_id=self.config.app_service_user_id,
        )

    def build_base_url(self, *parts: str) -> str:
        """URL under the homeserver root, e.g. build_base_url("_matrix", "client", "versions")."""
        return build_base_url(
            self.homeserver_url,
            *parts,
            app_service_user_id=self.config.app_service_user_id,
        )

    def build_url_with_query(self, parts: Sequence[str], query: Mapping[str, str]) -> str:
        return build_url(
            self.homeserver_url,
            self.config.prefix,
            parts,
            app_service_user_id=self.config.app_service_user_id,
            query=query,
        )

    async def make_request(
        self,
        method: str,
        url: str,
        body: Any = None,
        response_type: Any = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Perform one authenticated JSON exchange. See HTTPTransport.request()."""
        return await self.transport.request(method, url, body, response_type, timeout=timeout)

    async def create_filter(self, filter_definition: dict[str, Any] | Filter) -> RespCreateFilter:
        """Upload a sync filter for the current user."""
        url = self.build_url("user", self.user_id, "filter")
        return await self.make_request("POST", url, filter_definition, RespCreateFilter)

    async def sync_request(
        self,
        timeout_ms: int,
        since: str | None = None,
        filter_id: str | None = None,
        full_state: bool = False,
        set_presence: str | None = None,
    ) -> RespSync:
        """Issue one /sync long-poll.

        The HTTP timeout is the server wait bound plus the normal request timeout.
        """
        query = {"timeout": str(timeout_ms)}
        if since:
            query["since"] = since
        if filter_id:
            query["filter"] = filter_id
        if set_presence:
            query["set_presence"] = set_presence
        if full_state:
            query["full_state"] = "true"
        url = self.build_url_with_query(["sync"], query)
        http_timeout = timeout_ms / 1000 + self.config.request_timeout
        resp = await self.make_request("GET", url, response_type=RespSync, timeout=http_timeout)
        if resp is None:
            raise ResponseDecodeError(200, "GET", urlsplit(url).path, b"", "empty sync response")
        return resp

    # =========================================================================
    # Sync
    # =========================================================================

    @property
    def sync_engine(self) -> SyncEngine:
        return self._sync_engine

    @property
    def sync_state(self) -> SyncState:
        return self._sync_engine.state

    async def sync(self) -> None:
        """Run the sync loop in the current task.

        Blocks until the run is superseded (returns None) or fails. Calling
        sync() again while a run is active retires the older run.
        """
        await self._sync_engine.run()

    def start_sync(self) -> asyncio.Task[None]:
        """Run the sync loop as a background task and return it.

        Cancel the returned task to abort an in-flight long-poll immediately.
        """
        task = asyncio.create_task(self.sync(), name=f"matrix-sync:{self.user_id}")
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)
        logger.debug(f"Started background sync task for {self.user_id}")
        return task

    def stop_sync(self) -> None:
        """Retire the running sync loop at its next check."""
        self._sync_engine.stop()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def aclose(self) -> None:
        """Stop syncing, cancel every background sync task, and close the transport."""
        self.stop_sync()
        tasks = [task for task in self._sync_tasks if not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.transport.aclose()

    async def __aenter__(self) -> MatrixClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def create_client(
    homeserver_url: str,
    user_id: str = "",
    access_token: str = "",
    **kwargs: Any,
) -> MatrixClient:
    """Create a Matrix client.

    Args:
        homeserver_url: Homeserver base URL (e.g. "https://matrix.org")
        user_id: Fully-qualified user id
        access_token: Access token
        **kwargs: Passed to MatrixClient (config, store, processor, http_client)

    Returns:
        Configured MatrixClient
    """
    return MatrixClient(homeserver_url, user_id, access_token, **kwargs)
