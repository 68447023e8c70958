"""
Length-prefixed frames for relay streams.

A frame is a 4-byte big-endian length followed by one CBOR message. The
cap is the largest request the relay accepts, so a peer can never make
us buffer more than one maximal signal with its proof.
"""

from __future__ import annotations

import struct
from typing import Any

import trio

from .messages import REQUEST_MAX_BYTES, SchemaError, SizeLimitError

FRAME_HEADER = struct.Struct(">I")
MAX_FRAME_BYTES = REQUEST_MAX_BYTES
READ_TIMEOUT = 5.0
WRITE_TIMEOUT = 5.0


async def read_exact(stream: Any, size: int, timeout: float) -> bytes:
    if size < 0:
        raise SchemaError("invalid read size")
    data = bytearray()
    with trio.fail_after(timeout):
        while len(data) < size:
            chunk = await stream.read(size - len(data))
            if not chunk:
                raise SchemaError(f"stream closed after {len(data)} of {size} bytes")
            data.extend(chunk)
    return bytes(data)


async def read_frame(
    stream: Any, max_bytes: int = MAX_FRAME_BYTES, timeout: float = READ_TIMEOUT
) -> bytes:
    header = await read_exact(stream, FRAME_HEADER.size, timeout)
    (length,) = FRAME_HEADER.unpack(header)
    if length > max_bytes:
        raise SizeLimitError(f"frame of {length} bytes exceeds {max_bytes}")
    return await read_exact(stream, length, timeout)


async def write_frame(
    stream: Any,
    payload: bytes,
    max_bytes: int = MAX_FRAME_BYTES,
    timeout: float = WRITE_TIMEOUT,
) -> None:
    if len(payload) > max_bytes:
        raise SizeLimitError(f"frame of {len(payload)} bytes exceeds {max_bytes}")
    with trio.fail_after(timeout):
        await stream.write(FRAME_HEADER.pack(len(payload)) + payload)
