
from __future__ import annotations
from typing import Any, Dict, Protocol as TypingProtocol, Union

import json

import msgpack

from .errors import ValidationError

class Codec(TypingProtocol):
    name: str
    binary: bool
    def dumps(self, obj: Any) -> Union[str, bytes]: ...
    def loads(self, data: Union[str, bytes]) -> Any: ...

class JSONCodec:
    """Compact JSON text frames (the default wire format)."""
    name = "json"
    binary = False
    def dumps(self, obj: Any) -> str:
        return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    def loads(self, data: Union[str, bytes]) -> Any:
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        return json.loads(data)

class MsgPackCodec:
    name = "msgpack"
    binary = True
    def dumps(self, obj: Any) -> bytes:
        return msgpack.packb(obj, use_bin_type=True)
    def loads(self, data: Union[str, bytes]) -> Any:
        if isinstance(data, str):
            # peers that only speak text still reach us
            return json.loads(data)
        return msgpack.unpackb(data, raw=False)

class Codecs:
    _registry: Dict[str, Codec] = {"json": JSONCodec(), "msgpack": MsgPackCodec()}

    @classmethod
    def get(cls, name: str) -> Codec:
        if name not in cls._registry:
            raise ValidationError(f"Unknown codec: {name}")
        return cls._registry[name]

    @classmethod
    def register(cls, codec: Codec) -> None:
        cls._registry[codec.name] = codec

    @classmethod
    def names(cls) -> list[str]:
        return sorted(cls._registry)
