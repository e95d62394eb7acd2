from __future__ import annotations

import pytest

from meshroom.codecs import Codecs, JSONCodec, MsgPackCodec
from meshroom.errors import ValidationError


def test_json_codec_is_compact_text() -> None:
    frame = JSONCodec().dumps({"topic": "a", "payload": [1, 2]})
    assert frame == '{"topic":"a","payload":[1,2]}'


def test_json_codec_accepts_bytes() -> None:
    assert JSONCodec().loads(b'{"a":1}') == {"a": 1}


def test_msgpack_codec_produces_bytes_and_reads_text_peers() -> None:
    codec = MsgPackCodec()
    frame = codec.dumps({"topic": "a", "payload": "b"})
    assert isinstance(frame, bytes)
    assert codec.loads(frame) == {"topic": "a", "payload": "b"}
    assert codec.loads('{"topic":"a"}') == {"topic": "a"}


def test_registry_lookup() -> None:
    assert Codecs.get("json").name == "json"
    assert Codecs.get("msgpack").binary is True
    assert {"json", "msgpack"} <= set(Codecs.names())
    with pytest.raises(ValidationError):
        Codecs.get("xml")
