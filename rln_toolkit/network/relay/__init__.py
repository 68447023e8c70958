"""RLN relay protocol: signals travel with proofs, spammers get caught."""

from .client import build_request, relay_signal
from .constants import PROTOCOL_ID
from .handler import handle_relay_request_bytes
from .messages import RelayError, RelayRequest, RelayResponse, SchemaError, SizeLimitError
from .protocol import handle_relay_stream, register_rln_relay_protocol
from .validator import EngineRelayValidator, RelayValidator

__all__ = [
    "PROTOCOL_ID",
    "RelayError",
    "SchemaError",
    "SizeLimitError",
    "RelayRequest",
    "RelayResponse",
    "RelayValidator",
    "EngineRelayValidator",
    "build_request",
    "relay_signal",
    "handle_relay_request_bytes",
    "handle_relay_stream",
    "register_rln_relay_protocol",
]
