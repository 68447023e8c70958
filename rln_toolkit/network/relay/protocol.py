"""Stream handler registration for the RLN relay."""

from __future__ import annotations

import logging
from typing import Any

import trio

from .constants import PROTOCOL_ID
from .handler import error_response, handle_relay_request_bytes
from .framing import read_frame, write_frame
from .messages import encode_response
from .validator import RelayValidator

logger = logging.getLogger(__name__)

TOTAL_TIMEOUT = 120.0


async def handle_relay_stream(stream: Any, validator: RelayValidator) -> None:
    try:
        with trio.fail_after(TOTAL_TIMEOUT):
            request_blob = await read_frame(stream)
            response_blob = handle_relay_request_bytes(request_blob, validator)
            await write_frame(stream, response_blob)
    except Exception as exc:
        logger.debug("Relay stream failed: %s", exc)
        try:
            await write_frame(stream, encode_response(error_response(f"protocol error: {exc}")))
        except Exception:
            pass
    finally:
        try:
            await stream.close()
        except Exception:
            pass


def register_rln_relay_protocol(host: Any, validator: RelayValidator) -> None:
    async def _handler(stream: Any) -> None:
        await handle_relay_stream(stream, validator)

    host.set_stream_handler(PROTOCOL_ID, _handler)
