"""Protocol constants for the RLN relay."""

from __future__ import annotations

from ...protocol.config import SIZE_WIRE_PROOF

PROTOCOL_ID = "/rln/relay/1.0.0"
MSG_V = 1

PROOF_BYTES = SIZE_WIRE_PROOF
MAX_SIGNAL_BYTES = 65536
MAX_ERR_CHARS = 256
# recent accepted signals kept by a validator
MAX_DELIVERED = 1024

STATUS_ADDED = "added"
STATUS_DUPLICATE = "duplicate"
STATUS_BREACH = "breach"
STATUS_INVALID = "invalid"
STATUSES = frozenset({STATUS_ADDED, STATUS_DUPLICATE, STATUS_BREACH, STATUS_INVALID})
