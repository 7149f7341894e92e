from __future__ import annotations

from enum import Enum
from typing import Any, Annotated, Literal, Union

from pydantic import ConfigDict, Field

from rendezvous.models.camel_case import CamelCase

ROOM_SYNC = "room-sync"
DIRECT_PEER = "direct-peer-messaging"


class ErrorCode(str, Enum):
    ROOM_FULL = "room_full"
    INVALID_PASSWORD = "invalid_password"
    ALREADY_IN_ROOM = "already_in_room"


class CloseCode:
    NORMAL = 1000
    GOING_AWAY = 1001
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009


# ===== Client -> Server messages (room-sync) =====


class Join(CamelCase):
    type: Literal["join"]
    app_type: Literal["room-sync"] = ROOM_SYNC
    room: str = Field(min_length=1)
    password: str | None = None
    token: str | None = None
    manual_approval: bool = False
    alias: str | None = None


class Signal(CamelCase):
    type: Literal["signal"]
    app_type: Literal["room-sync"] = ROOM_SYNC
    data: Any = None


class ApprovalResponse(CamelCase):
    type: Literal["approval_response"]
    app_type: Literal["room-sync"] = ROOM_SYNC
    peer_id: str
    approved: bool


class Leave(CamelCase):
    type: Literal["leave"]
    app_type: Literal["room-sync"] = ROOM_SYNC


# ===== Client -> Server messages (direct-peer-messaging) =====


class Register(CamelCase):
    type: Literal["register"]
    app_type: Literal["direct-peer-messaging"] = DIRECT_PEER
    peer_id: str = Field(min_length=1)


class _DirectPayload(CamelCase):
    # offer/answer/candidate bodies are opaque and forwarded as received
    model_config = ConfigDict(extra="allow")

    app_type: Literal["direct-peer-messaging"] = DIRECT_PEER
    target_peer_id: str = Field(min_length=1)
    peer_id: str | None = None


class Offer(_DirectPayload):
    type: Literal["offer"]


class Answer(_DirectPayload):
    type: Literal["answer"]


class Candidate(_DirectPayload):
    type: Literal["candidate"]


# ===== Heartbeat (either mode) =====


class Pong(CamelCase):
    type: Literal["pong"]
    app_type: Literal["room-sync", "direct-peer-messaging"] = ROOM_SYNC


ClientMessage = Annotated[
    Union[
        Join,
        Signal,
        ApprovalResponse,
        Leave,
        Register,
        Offer,
        Answer,
        Candidate,
        Pong,
    ],
    Field(discriminator="type"),
]


# ===== Server -> Client messages =====


class RoomCreated(CamelCase):
    type: Literal["room_created"] = "room_created"
    room: str
    token: str
    peer_id: str


class Joined(CamelCase):
    type: Literal["joined"] = "joined"
    room: str
    peer_id: str


class Approved(CamelCase):
    type: Literal["approved"] = "approved"
    room: str


class Rejected(CamelCase):
    type: Literal["rejected"] = "rejected"
    room: str
    reason: str = "rejected_by_host"


class StartNegotiation(CamelCase):
    type: Literal["start_negotiation"] = "start_negotiation"
    room: str


class ApprovalRequest(CamelCase):
    type: Literal["approval_request"] = "approval_request"
    room: str
    peer_id: str
    alias: str | None = None


class RoomClosed(CamelCase):
    type: Literal["room_closed"] = "room_closed"
    room: str
    reason: str = "host_left"


# Event: a non-host member left a room that is still open
class PeerLeft(CamelCase):
    type: Literal["peer_left"] = "peer_left"
    room: str
    peer_id: str


class Registered(CamelCase):
    type: Literal["registered"] = "registered"
    peer_id: str


class Error(CamelCase):
    type: Literal["error"] = "error"
    code: ErrorCode
    message: str


class Ping(CamelCase):
    type: Literal["ping"] = "ping"


# Discriminated union for server -> client
ServerMessage = Annotated[
    Union[
        RoomCreated,
        Joined,
        Approved,
        Rejected,
        StartNegotiation,
        ApprovalRequest,
        RoomClosed,
        PeerLeft,
        Registered,
        Error,
        Ping,
    ],
    Field(discriminator="type"),
]
