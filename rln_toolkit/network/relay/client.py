"""Client utilities for the RLN relay."""

from __future__ import annotations

from typing import Any

from ...protocol.snark.codec import WireCodec
from ...protocol.types import RLNFullProof
from .constants import MSG_V, PROTOCOL_ID
from .framing import READ_TIMEOUT, WRITE_TIMEOUT, read_frame, write_frame
from .messages import RelayRequest, RelayResponse, decode_response, encode_request


def build_request(
    proof: RLNFullProof, signal: bytes, codec: WireCodec | None = None
) -> RelayRequest:
    codec = codec if codec is not None else WireCodec()
    return RelayRequest(
        msg_v=MSG_V,
        epoch=proof.epoch,
        signal=bytes(signal),
        proof=codec.serialize(proof),
    )


async def relay_signal(
    host: Any, peer_id: Any, req: RelayRequest, *, timeout: float | None = None
) -> RelayResponse:
    read_timeout = READ_TIMEOUT if timeout is None else timeout
    write_timeout = WRITE_TIMEOUT if timeout is None else timeout
    stream = await host.new_stream(peer_id, [PROTOCOL_ID])
    try:
        await write_frame(stream, encode_request(req), timeout=write_timeout)
        response_blob = await read_frame(stream, timeout=read_timeout)
        return decode_response(response_blob)
    finally:
        try:
            await stream.close()
        except Exception:
            pass
