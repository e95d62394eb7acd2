from __future__ import annotations
import json
from typing import Any, Callable, Dict, Optional

from .codecs import Codec, JSONCodec
from .config import CONTROL_PREFIX
from .errors import FrameDecodeError
from .message import ControlFrame, DataMessage, InboundFrame, RpcReply, Unrecognized
from .transport import Frame

_JSON = JSONCodec()
_BCONTROL = CONTROL_PREFIX.encode("utf-8")


def is_control(frame: Frame) -> bool:
    if isinstance(frame, (bytes, bytearray)):
        return bytes(frame).startswith(_BCONTROL)
    return isinstance(frame, str) and frame.startswith(CONTROL_PREFIX)


def parse_control(frame: Frame) -> ControlFrame:
    """
    Split a control frame into its command text and, when the text is a JSON
    document (profile responses), the parsed body. Other commands keep body=None.
    """
    text = _as_text(frame)
    if not text.startswith(CONTROL_PREFIX):
        raise FrameDecodeError(f"not a control frame: {text[:32]!r}")
    command = text[len(CONTROL_PREFIX):]
    body = None
    if command[:1] in ("{", "["):
        try:
            body = json.loads(command)
        except ValueError:
            body = None
    return ControlFrame(command=command, body=body)


def is_profile_response(body: Any) -> bool:
    return (isinstance(body, dict)
            and body.get("type") == "response"
            and body.get("target") == "profile"
            and body.get("method") == "get"
            and isinstance(body.get("body"), dict)
            and bool(body["body"].get("uuid")))


def pack_envelope(topic: str, payload: Any, codec: Codec = _JSON) -> Frame:
    return codec.dumps({"topic": topic, "payload": payload})


def pack_request(uuid: str, *, method: str, path: str, query: Optional[Dict[str, Any]],
                 body: Any, transaction_id: int, codec: Codec = _JSON) -> Frame:
    payload = {
        "method":         method,
        "path":           path,
        "query":          query if query is not None else {},
        "body":           body,
        "transaction_id": transaction_id,
    }
    return pack_envelope(uuid, payload, codec)


def decode_frame(frame: Frame, codec: Codec = _JSON,
                 is_device: Callable[[str], bool] = lambda _uuid: False) -> InboundFrame:
    """
    Classify one inbound frame, once.
      control prefix          -> ControlFrame
      topic is a device uuid  -> RpcReply (Unrecognized, topic kept, if no transaction_id)
      anything else enveloped -> DataMessage
    Undecodable data raises FrameDecodeError.
    """
    if is_control(frame):
        return parse_control(frame)

    try:
        obj = codec.loads(frame)
    except Exception as ex:
        raise FrameDecodeError(f"cannot decode frame with {codec.name}: {ex}") from ex

    if not isinstance(obj, dict) or not isinstance(obj.get("topic"), str) or "payload" not in obj:
        return Unrecognized(raw=obj, reason="not a {topic, payload} envelope")

    topic, payload = obj["topic"], obj["payload"]
    if is_device(topic):
        if not isinstance(payload, dict) or payload.get("transaction_id") in (None, ""):
            return Unrecognized(raw=obj, reason="transaction_id is not specified",
                                topic=topic, payload=payload)
        return RpcReply(topic=topic, payload=payload)
    return DataMessage(topic=topic, payload=payload)


def _as_text(frame: Frame) -> str:
    if isinstance(frame, (bytes, bytearray)):
        try:
            return bytes(frame).decode("utf-8")
        except UnicodeDecodeError as ex:
            raise FrameDecodeError("control frame is not utf-8") from ex
    return frame
