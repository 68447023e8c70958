"""Unit tests for relay message schemas."""

from __future__ import annotations

import cbor2
import pytest

from rln_toolkit.network.relay.constants import (
    MAX_ERR_CHARS,
    MAX_SIGNAL_BYTES,
    MSG_V,
    PROOF_BYTES,
    STATUS_ADDED,
    STATUS_BREACH,
    STATUS_DUPLICATE,
    STATUS_INVALID,
)
from rln_toolkit.network.relay.messages import (
    RelayRequest,
    RelayResponse,
    SchemaError,
    SizeLimitError,
    decode_request,
    decode_response,
    encode_request,
    encode_response,
)


def _req(**overrides) -> RelayRequest:
    fields = dict(msg_v=MSG_V, epoch=42, signal=b"hello", proof=b"\x00" * PROOF_BYTES)
    fields.update(overrides)
    return RelayRequest(**fields)


def test_request_roundtrip() -> None:
    req = _req()
    assert decode_request(encode_request(req)) == req


def test_request_keys_on_the_wire() -> None:
    payload = cbor2.loads(encode_request(_req()))
    assert set(payload) == {"msg_v", "epoch", "signal", "proof"}


@pytest.mark.parametrize(
    "overrides",
    [
        {"msg_v": 2},
        {"epoch": -1},
        {"epoch": True},
        {"signal": "text"},
        {"proof": b"\x00" * (PROOF_BYTES - 1)},
    ],
)
def test_request_schema_violations(overrides) -> None:
    with pytest.raises(SchemaError):
        encode_request(_req(**overrides))


def test_request_signal_size_limit() -> None:
    with pytest.raises(SizeLimitError):
        encode_request(_req(signal=b"x" * (MAX_SIGNAL_BYTES + 1)))
    encode_request(_req(signal=b"x" * MAX_SIGNAL_BYTES))


def test_decode_request_rejects_garbage() -> None:
    with pytest.raises(SchemaError):
        decode_request(b"not-cbor")
    with pytest.raises(SchemaError):
        decode_request(cbor2.dumps([1, 2, 3]))
    with pytest.raises(SchemaError):
        decode_request(cbor2.dumps({"msg_v": MSG_V, "epoch": 1}))


@pytest.mark.parametrize(
    "resp",
    [
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_ADDED, nullifier=7),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_DUPLICATE, nullifier=7),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_BREACH, nullifier=7, secret=9),
        RelayResponse(msg_v=MSG_V, ok=False, status=STATUS_INVALID, err="proof rejected"),
    ],
)
def test_response_roundtrip(resp: RelayResponse) -> None:
    assert decode_response(encode_response(resp)) == resp


@pytest.mark.parametrize(
    "resp",
    [
        RelayResponse(msg_v=MSG_V, ok=True, status="bogus", nullifier=1),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_INVALID, nullifier=1),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_ADDED),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_ADDED, nullifier=1, secret=2),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_BREACH, nullifier=1),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_ADDED, nullifier=1, err="x"),
        RelayResponse(msg_v=MSG_V, ok=False, status=STATUS_ADDED, err="x"),
        RelayResponse(msg_v=MSG_V, ok=False, status=STATUS_INVALID),
        RelayResponse(msg_v=MSG_V, ok=False, status=STATUS_INVALID, secret=1, err="x"),
        RelayResponse(msg_v=MSG_V, ok=False, status=STATUS_INVALID, err="x" * (MAX_ERR_CHARS + 1)),
        RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_ADDED, nullifier=-1),
    ],
)
def test_response_invariants(resp: RelayResponse) -> None:
    with pytest.raises(SchemaError):
        encode_response(resp)


def test_accepted_only_for_added() -> None:
    assert RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_ADDED, nullifier=1).accepted
    assert not RelayResponse(msg_v=MSG_V, ok=True, status=STATUS_DUPLICATE, nullifier=1).accepted


def test_decode_response_rejects_non_string_err() -> None:
    blob = cbor2.dumps({"msg_v": MSG_V, "ok": False, "status": STATUS_INVALID, "err": 5})
    with pytest.raises(SchemaError):
        decode_response(blob)
