from __future__ import annotations

import cbor2

from .errors import ProtocolError


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(b: bytes):
    try:
        return cbor2.loads(b)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise ProtocolError(f"undecodable payload: {e}") from e


def decode_map(b: bytes) -> dict:
    obj = decode(b)
    if not isinstance(obj, dict):
        raise ProtocolError("event must be a CBOR map")
    return obj
