"""Tests for payload decoding and record serialization."""

import json
from datetime import datetime

import pytest

from topic_recorder.records import (
    PayloadDecodeError,
    build_record,
    capture_time,
    decode_payload,
    serialize_record,
)

RECEIVED = datetime(2025, 1, 15, 10, 30, 45)


def test_decode_valid_json():
    assert decode_payload(b'{"speed": 42}') == {"speed": 42}


def test_decode_keeps_finite_floats():
    assert decode_payload(b'{"speed": 12.5, "alt": -3e2}') == {"speed": 12.5, "alt": -300.0}


def test_decode_non_object_json():
    assert decode_payload(b"[1, 2, 3]") == [1, 2, 3]


@pytest.mark.parametrize("payload", [
    b"not json",
    b"{",
    b"\xff\xfe",
    b'{"speed": NaN}',
    b'{"speed": Infinity}',
    b'[-Infinity]',
    b'{"speed": 1e400}',
])
def test_decode_errors(payload):
    with pytest.raises(PayloadDecodeError):
        decode_payload(payload)


def test_capture_time_falls_back_to_received():
    assert capture_time({"speed": 1}, RECEIVED) == RECEIVED
    assert capture_time([1, 2], RECEIVED) == RECEIVED
    assert capture_time({"timestamp": "yesterday"}, RECEIVED) == RECEIVED
    assert capture_time({"timestamp": True}, RECEIVED) == RECEIVED


def test_capture_time_from_seconds_and_millis():
    secs = datetime(2024, 6, 1, 8, 0, 0).timestamp()
    assert capture_time({"timestamp": secs}, RECEIVED) == datetime(2024, 6, 1, 8, 0, 0)
    assert capture_time({"timestamp": secs * 1000}, RECEIVED) == datetime(2024, 6, 1, 8, 0, 0)


def test_build_record_envelope():
    record = build_record({"id": 7}, RECEIVED)
    assert record == {"ext": {"timestamp": "2025-01-15 10:30:45"}, "raw": {"id": 7}}


def test_serialize_is_one_compact_line():
    data = serialize_record(build_record({"msg": "héllo", "n": [1, 2]}, RECEIVED))
    assert data.endswith(b"\n")
    assert data.count(b"\n") == 1
    assert data.startswith(b'{"ext":{"timestamp":"2025-01-15 10:30:45"},"raw":')
    assert json.loads(data.decode("utf-8"))["raw"]["msg"] == "héllo"


def test_serialize_refuses_non_finite_numbers():
    with pytest.raises(ValueError):
        serialize_record(build_record({"speed": float("nan")}, RECEIVED))
