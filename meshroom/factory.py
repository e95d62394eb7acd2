
from __future__ import annotations
from typing import Any, Optional, Union

from .client import MeshRoomClient
from .codecs import Codecs
from .config import ClientOptions
from .errors import ValidationError
from .transport import Transport
from .transports.memory import MemoryHub, MemoryTransport


def MeshRoom(room_name: str,
             *,
             transport: Union[str, Transport] = "inmemory",
             codec: Union[str, Any] = "json",
             options: Optional[ClientOptions] = None,
             **transport_kwargs) -> MeshRoomClient:
    """
    One-liner factory:
      MeshRoom("testroom")                                  # in-process hub
      MeshRoom("testroom", transport="zyre", peer_id="app-1", codec="msgpack")
      MeshRoom("testroom", transport=my_transport, options=ClientOptions(timeout=3))

    - room_name: mesh room to join; letters, digits and -_.= only
    - transport: "inmemory" | "zyre" | Transport instance
    - codec: "json" | "msgpack" | Codec instance
    - options: ClientOptions (timeouts, keepalive interval, device prefix)
    - **transport_kwargs: passed to transport constructor
      ("inmemory" takes hub= and peer_id=, "zyre" takes peer_id=)

    The client is not started; await client.start() or use it as an async
    context manager.
    """
    # Resolve codec
    if isinstance(codec, str):
        codec_obj = Codecs.get(codec)
    else:
        codec_obj = codec

    # Resolve transport
    if isinstance(transport, str):
        tlabel = transport.lower()
        if tlabel == "inmemory":
            hub = transport_kwargs.pop("hub", None) or MemoryHub()
            t = MemoryTransport(hub, **transport_kwargs)
        elif tlabel == "zyre":
            from .transports.zyre import ZyreTransport
            t = ZyreTransport(**transport_kwargs)
        else:
            raise ValidationError(f"Unknown transport label: {transport}")
    else:
        t = transport

    return MeshRoomClient(room_name, t, options=options, codec=codec_obj)
