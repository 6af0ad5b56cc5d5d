"""Payload decoding and the JSONL record envelope written for every message."""

import json
import logging
import math
from datetime import datetime

logger = logging.getLogger(__name__)

RECORD_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Payload timestamps above this are taken to be milliseconds.
MILLIS_THRESHOLD = 1e11


class PayloadDecodeError(ValueError):
    """Raised when a bus payload is not valid UTF-8 JSON."""


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant {name}")


def _parse_finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {text}")
    return value


def decode_payload(payload: bytes):
    """Decode raw payload bytes into a JSON value.

    Only strict JSON is accepted: NaN, Infinity and numbers that overflow a
    float are rejected so every recorded line stays parseable.
    """
    try:
        return json.loads(
            payload.decode("utf-8"),
            parse_constant=_reject_constant,
            parse_float=_parse_finite_float,
        )
    except ValueError as e:
        raise PayloadDecodeError(str(e)) from e


def capture_time(value, received_at: datetime) -> datetime:
    """Return the device capture time for a decoded payload.

    Devices stamp their messages with a numeric ``timestamp`` field, in
    seconds or milliseconds since the epoch. When that field is missing or
    unusable the bus arrival time stands in for it.
    """
    if isinstance(value, dict):
        ts = value.get("timestamp")
        if isinstance(ts, (int, float)) and not isinstance(ts, bool):
            secs = ts / 1000.0 if ts > MILLIS_THRESHOLD else ts
            try:
                return datetime.fromtimestamp(int(secs))
            except (OverflowError, OSError, ValueError):
                logger.debug("Ignoring out-of-range payload timestamp %r", ts)
    return received_at


def build_record(value, received_at: datetime) -> dict:
    return {
        "ext": {"timestamp": capture_time(value, received_at).strftime(RECORD_TIME_FORMAT)},
        "raw": value,
    }


def serialize_record(record: dict) -> bytes:
    """Encode a record as one compact JSON line, newline included."""
    line = json.dumps(record, separators=(",", ":"), ensure_ascii=False,
                      allow_nan=False)
    return (line + "\n").encode("utf-8")
