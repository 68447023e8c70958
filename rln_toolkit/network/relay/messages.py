"""CBOR message schemas for the RLN relay."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import cbor2

from ...protocol.config import SNARK_FIELD_SIZE
from ...protocol.exceptions import RLNError
from .constants import (
    MAX_ERR_CHARS,
    MAX_SIGNAL_BYTES,
    MSG_V,
    PROOF_BYTES,
    STATUS_ADDED,
    STATUS_BREACH,
    STATUS_INVALID,
    STATUSES,
)

REQUEST_OVERHEAD_BYTES = 1024
REQUEST_MAX_BYTES = MAX_SIGNAL_BYTES + PROOF_BYTES + REQUEST_OVERHEAD_BYTES
RESPONSE_MAX_BYTES = 2048


class RelayError(RLNError):
    """Malformed or oversized relay traffic."""


class SchemaError(RelayError):
    """A relay message does not match its schema."""


class SizeLimitError(RelayError):
    """A relay message or frame is larger than allowed."""


def _require_bytes(value: Any, field: str) -> bytes:
    if not isinstance(value, (bytes, bytearray)):
        raise SchemaError(f"{field} must be bytes")
    return bytes(value)


def _require_optional_scalar(value: Any, field: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise SchemaError(f"{field} must be an integer")
    if not 0 <= value < SNARK_FIELD_SIZE:
        raise SchemaError(f"{field} out of range")
    return value


def _loads(blob: Any, label: str, limit: int) -> dict:
    if not isinstance(blob, (bytes, bytearray)):
        raise SchemaError(f"{label} blob must be bytes")
    if len(blob) > limit:
        raise SizeLimitError(f"{label} too large")
    try:
        payload = cbor2.loads(bytes(blob))
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise SchemaError(f"{label} is not valid CBOR: {exc}") from exc
    if not isinstance(payload, dict):
        raise SchemaError(f"{label} payload must be a dict")
    return payload


@dataclass(frozen=True)
class RelayRequest:
    """A signal with its wire-encoded RLN proof."""

    msg_v: int
    epoch: int
    signal: bytes
    proof: bytes

    def validate(self) -> None:
        if self.msg_v != MSG_V:
            raise SchemaError("unsupported msg_v")
        if isinstance(self.epoch, bool) or not isinstance(self.epoch, int):
            raise SchemaError("epoch must be an integer")
        if not 0 <= self.epoch < SNARK_FIELD_SIZE:
            raise SchemaError("epoch out of range")
        signal = _require_bytes(self.signal, "signal")
        proof = _require_bytes(self.proof, "proof")
        if len(signal) > MAX_SIGNAL_BYTES:
            raise SizeLimitError("signal too large")
        if len(proof) != PROOF_BYTES:
            raise SchemaError(f"proof must be {PROOF_BYTES} bytes")


@dataclass(frozen=True)
class RelayResponse:
    """
    Verdict on a relayed signal.

    ok is False only for requests that were rejected outright (malformed,
    failed verification); such responses carry status "invalid" and err.
    """

    msg_v: int
    ok: bool
    status: str
    nullifier: Optional[int] = None
    secret: Optional[int] = None
    err: Optional[str] = None

    def validate(self) -> None:
        if self.msg_v != MSG_V:
            raise SchemaError("unsupported msg_v")
        if self.status not in STATUSES:
            raise SchemaError("unknown status")
        _require_optional_scalar(self.nullifier, "nullifier")
        _require_optional_scalar(self.secret, "secret")

        if self.ok:
            if self.status == STATUS_INVALID:
                raise SchemaError("status invalid requires ok=False")
            if self.err not in (None, ""):
                raise SchemaError("err must be empty when ok=True")
            if self.nullifier is None:
                raise SchemaError("nullifier required when ok=True")
            if (self.status == STATUS_BREACH) != (self.secret is not None):
                raise SchemaError("secret is set exactly for breach responses")
        else:
            if self.status != STATUS_INVALID:
                raise SchemaError("ok=False requires status invalid")
            if self.secret is not None:
                raise SchemaError("secret must be empty when ok=False")
            if not isinstance(self.err, str) or not self.err:
                raise SchemaError("err required when ok=False")
            if len(self.err) > MAX_ERR_CHARS:
                raise SchemaError("err too long")

    @property
    def accepted(self) -> bool:
        """True if the relay forwarded the signal."""
        return self.ok and self.status == STATUS_ADDED


def encode_request(req: RelayRequest) -> bytes:
    req.validate()
    payload = {
        "msg_v": req.msg_v,
        "epoch": req.epoch,
        "signal": bytes(req.signal),
        "proof": bytes(req.proof),
    }
    blob = cbor2.dumps(payload)
    if len(blob) > REQUEST_MAX_BYTES:
        raise SizeLimitError("request too large")
    return blob


def decode_request(blob: bytes) -> RelayRequest:
    payload = _loads(blob, "request", REQUEST_MAX_BYTES)
    req = RelayRequest(
        msg_v=payload.get("msg_v", -1),
        epoch=payload.get("epoch", -1),
        signal=_require_bytes(payload.get("signal", b""), "signal"),
        proof=_require_bytes(payload.get("proof", b""), "proof"),
    )
    req.validate()
    return req


def encode_response(resp: RelayResponse) -> bytes:
    resp.validate()
    payload = {
        "msg_v": resp.msg_v,
        "ok": resp.ok,
        "status": resp.status,
        "nullifier": resp.nullifier,
        "secret": resp.secret,
        "err": resp.err or None,
    }
    blob = cbor2.dumps(payload)
    if len(blob) > RESPONSE_MAX_BYTES:
        raise SizeLimitError("response too large")
    return blob


def decode_response(blob: bytes) -> RelayResponse:
    payload = _loads(blob, "response", RESPONSE_MAX_BYTES)
    err = payload.get("err")
    if err is not None and not isinstance(err, str):
        raise SchemaError("err must be a string")
    status = payload.get("status", "")
    if not isinstance(status, str):
        raise SchemaError("status must be a string")
    resp = RelayResponse(
        msg_v=payload.get("msg_v", -1),
        ok=bool(payload.get("ok", False)),
        status=status,
        nullifier=payload.get("nullifier"),
        secret=payload.get("secret"),
        err=err,
    )
    resp.validate()
    return resp
