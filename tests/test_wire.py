from __future__ import annotations

import json

import pytest

from meshroom.codecs import JSONCodec, MsgPackCodec
from meshroom.errors import FrameDecodeError
from meshroom.message import ControlFrame, DataMessage, RpcReply, Unrecognized
from meshroom.wire import decode_frame, is_control, is_profile_response, pack_envelope, pack_request, parse_control


def _is_dev1(uuid: str) -> bool:
    return uuid == "dev1"


def test_control_frames_are_detected_for_text_and_bytes() -> None:
    assert is_control("SSG:keepalive,app-1")
    assert is_control(b"SSG:stream/stop")
    assert not is_control('{"topic":"a","payload":1}')


def test_parse_control_keeps_plain_commands() -> None:
    frame = parse_control("SSG:stream/start,app-1")
    assert frame == ControlFrame(command="stream/start,app-1", body=None)


def test_parse_control_reads_profile_response() -> None:
    profile = {"type": "response", "target": "profile", "method": "get", "body": {"uuid": "dev1"}}
    frame = parse_control("SSG:" + json.dumps(profile))
    assert frame.body == profile
    assert is_profile_response(frame.body)


def test_profile_response_needs_a_uuid() -> None:
    assert not is_profile_response({"type": "response", "target": "profile", "method": "get", "body": {}})
    assert not is_profile_response({"type": "request", "target": "profile", "method": "get",
                                    "body": {"uuid": "x"}})


def test_pack_request_layout() -> None:
    frame = pack_request("dev1", method="GET", path="/echo", query=None, body=None, transaction_id=7)
    assert json.loads(frame) == {
        "topic": "dev1",
        "payload": {"method": "GET", "path": "/echo", "query": {}, "body": None, "transaction_id": 7},
    }


def test_decode_classifies_each_kind_once() -> None:
    assert isinstance(decode_frame("SSG:keepalive,x"), ControlFrame)

    data = decode_frame(pack_envelope("sensor/temp", {"v": 1}), is_device=_is_dev1)
    assert data == DataMessage(topic="sensor/temp", payload={"v": 1})

    reply = decode_frame(pack_envelope("dev1", {"transaction_id": 5, "status": 200}), is_device=_is_dev1)
    assert isinstance(reply, RpcReply)
    assert reply.payload["transaction_id"] == 5


def test_reply_without_transaction_id_is_unrecognized() -> None:
    decoded = decode_frame(pack_envelope("dev1", {"status": 200}), is_device=_is_dev1)
    assert isinstance(decoded, Unrecognized)
    assert decoded.reason == "transaction_id is not specified"
    assert decoded.topic == "dev1"
    assert decoded.payload == {"status": 200}


def test_non_envelope_is_unrecognized() -> None:
    assert isinstance(decode_frame('{"hello":"world"}'), Unrecognized)
    assert isinstance(decode_frame("[1,2,3]"), Unrecognized)


def test_garbage_raises_frame_decode_error() -> None:
    with pytest.raises(FrameDecodeError):
        decode_frame("{not json")


def test_msgpack_frames_decode() -> None:
    codec = MsgPackCodec()
    frame = pack_envelope("sensor/temp", [1, 2], codec)
    assert isinstance(frame, bytes)
    assert decode_frame(frame, codec) == DataMessage(topic="sensor/temp", payload=[1, 2])


def test_json_codec_reads_bytes_frames() -> None:
    frame = pack_envelope("a", "b").encode("utf-8")
    assert decode_frame(frame, JSONCodec()) == DataMessage(topic="a", payload="b")
