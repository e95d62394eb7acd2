from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
from enum import StrEnum

from .transport import Connection, MediaCall


# Client lifecycle, forward-only
class ClientState(StrEnum):
    INIT                = "INIT"
    TRANSPORT_CONNECTED = "TRANSPORT_CONNECTED"
    ROOM_JOINED         = "ROOM_JOINED"
    PEER_LIST_OBTAINED  = "PEER_LIST_OBTAINED"
    STARTED             = "STARTED"

    @property
    def rank(self) -> int:
        return list(ClientState).index(self)


# Room signaling message types
class RoomMessage(StrEnum):
    ROOM_JOIN       = "ROOM_JOIN"         # client -> server
    ROOM_LEAVE      = "ROOM_LEAVE"        # client -> server
    ROOM_GET_USERS  = "ROOM_GET_USERS"    # client -> server
    ROOM_USER_JOIN  = "ROOM_USER_JOIN"    # server -> client, {roomName, src}
    ROOM_USER_LEAVE = "ROOM_USER_LEAVE"   # server -> client, {roomName, src}
    ROOM_USERS      = "ROOM_USERS"        # server -> client, {roomName, userList}


@dataclass
class Device:
    uuid: str                       # stable application id
    peer_id: str                    # transport-level id
    connection: Connection
    profile: Dict[str, Any] = field(default_factory=dict)
    call: Optional[MediaCall] = None


# ---- decoded inbound frames ----

@dataclass(frozen=True)
class ControlFrame:
    command: str                    # text after the control prefix
    body: Any = None                # parsed JSON when the command is a JSON document


@dataclass(frozen=True)
class DataMessage:
    topic: str
    payload: Any


@dataclass(frozen=True)
class RpcReply:
    topic: str                      # uuid of the replying device
    payload: Dict[str, Any]         # carries transaction_id


@dataclass(frozen=True)
class Unrecognized:
    raw: Any
    reason: str
    topic: Optional[str] = None     # set when the frame was an envelope
    payload: Any = None


InboundFrame = Union[ControlFrame, DataMessage, RpcReply, Unrecognized]
