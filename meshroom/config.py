"""Client configuration: protocol constants plus tunable timeouts."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace as _replace

from .errors import ValidationError

# Control frames (plain strings, never JSON-wrapped)
CONTROL_PREFIX = "SSG:"
PROFILE_REQUEST = CONTROL_PREFIX + "profile/get"
KEEPALIVE = CONTROL_PREFIX + "keepalive,{peer_id}"
STREAM_START = CONTROL_PREFIX + "stream/start,{peer_id}"
STREAM_STOP = CONTROL_PREFIX + "stream/stop"

# Room members whose peer id starts with this are devices
DEVICE_PREFIX = "SSG_"

ROOM_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\-_.=]+$")

DEFAULT_TIMEOUT_S = float(os.getenv("MESHROOM_TIMEOUT_S", "10"))
DEFAULT_KEEPALIVE_S = float(os.getenv("MESHROOM_KEEPALIVE_S", "5"))
DEFAULT_SEND_STREAM_TIMEOUT_S = float(os.getenv("MESHROOM_SEND_STREAM_TIMEOUT_S", "10"))


@dataclass(frozen=True)
class ClientOptions:
    timeout: float = DEFAULT_TIMEOUT_S                 # each bootstrap step, fetch, streaming start/stop
    keepalive_interval: float = DEFAULT_KEEPALIVE_S
    send_stream_timeout: float = DEFAULT_SEND_STREAM_TIMEOUT_S
    device_prefix: str = DEVICE_PREFIX
    audio_codec: str = "opus"
    video_codec: str = "H264"

    def validate(self) -> "ClientOptions":
        for name in ("timeout", "keepalive_interval", "send_stream_timeout"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                raise ValidationError(f"options.{name} must be a positive number, got {value!r}")
        if not isinstance(self.device_prefix, str):
            raise ValidationError("options.device_prefix must be a string")
        return self

    def replace(self, **changes) -> "ClientOptions":
        return _replace(self, **changes).validate()


def validate_room_name(name: object) -> str:
    if not name or not isinstance(name, str):
        raise ValidationError("room name must be a non-empty string")
    if not ROOM_NAME_PATTERN.match(name):
        raise ValidationError("room name must only contain 'a-zA-Z0-9-_.='")
    return name


__all__ = [
    "CONTROL_PREFIX",
    "PROFILE_REQUEST",
    "KEEPALIVE",
    "STREAM_START",
    "STREAM_STOP",
    "DEVICE_PREFIX",
    "ROOM_NAME_PATTERN",
    "DEFAULT_TIMEOUT_S",
    "DEFAULT_KEEPALIVE_S",
    "DEFAULT_SEND_STREAM_TIMEOUT_S",
    "ClientOptions",
    "validate_room_name",
]
