"""Pure request/response handler for the RLN relay."""

from __future__ import annotations

import logging

from .constants import MAX_ERR_CHARS, MSG_V, STATUS_INVALID
from .messages import (
    RelayError,
    RelayResponse,
    SchemaError,
    SizeLimitError,
    decode_request,
    encode_response,
)
from .validator import RelayValidator

logger = logging.getLogger(__name__)


def error_response(err: str) -> RelayResponse:
    return RelayResponse(
        msg_v=MSG_V,
        ok=False,
        status=STATUS_INVALID,
        err=err[:MAX_ERR_CHARS] or "error",
    )


def handle_relay_request_bytes(request_blob: bytes, validator: RelayValidator) -> bytes:
    try:
        req = decode_request(request_blob)
    except (SchemaError, SizeLimitError) as exc:
        try:
            return encode_response(error_response(f"bad request: {exc}"))
        except RelayError:
            return encode_response(error_response("bad request"))
    except Exception:
        return encode_response(error_response("bad request: decode failed"))

    try:
        response = validator.process(req)
    except Exception:
        logger.exception("Relay validator failed")
        response = error_response("validator error")

    try:
        return encode_response(response)
    except RelayError:
        return encode_response(error_response("invalid response"))
