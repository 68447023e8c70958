"""Relay validators: decide what happens to an incoming signal."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, Optional, Protocol, Tuple

from ...protocol.cache import EvaluatedProof, Status
from ...protocol.engine import RLNEngine
from ...protocol.exceptions import CodecError, RLNError
from ...protocol.snark.codec import WireCodec
from .constants import MAX_DELIVERED, MAX_ERR_CHARS, STATUS_INVALID
from .messages import RelayRequest, RelayResponse

logger = logging.getLogger(__name__)

MessageCallback = Callable[[int, bytes], None]
BreachCallback = Callable[[EvaluatedProof], None]


class RelayValidator(Protocol):
    def process(self, req: RelayRequest) -> RelayResponse:
        ...


def _invalid(req: RelayRequest, err: str, nullifier: Optional[int] = None) -> RelayResponse:
    return RelayResponse(
        msg_v=req.msg_v,
        ok=False,
        status=STATUS_INVALID,
        nullifier=nullifier,
        err=err[:MAX_ERR_CHARS],
    )


class EngineRelayValidator:
    """
    Validate relayed signals with an RLNEngine.

    Each request is decoded with the wire codec, verified against the
    engine's current root, then fed to its cache. Signals that are ADDED
    reach `on_message`; BREACH results reach `on_breach`, which typically
    slashes the member. The last `max_delivered` accepted signals stay in
    `delivered`.
    """

    def __init__(
        self,
        engine: RLNEngine,
        codec: Optional[WireCodec] = None,
        on_message: Optional[MessageCallback] = None,
        on_breach: Optional[BreachCallback] = None,
        max_delivered: int = MAX_DELIVERED,
    ) -> None:
        self.engine = engine
        self.codec = codec if codec is not None else WireCodec(engine.hasher)
        self._on_message = on_message
        self._on_breach = on_breach
        self.delivered: Deque[Tuple[int, bytes]] = deque(maxlen=max_delivered)

    def process(self, req: RelayRequest) -> RelayResponse:
        try:
            proof = self.codec.deserialize(req.proof)
        except CodecError as exc:
            return _invalid(req, f"bad proof: {exc}")

        nullifier = proof.public_signals.nullifier
        try:
            verified = self.engine.verify_proof(proof, req.epoch, req.signal)
        except RLNError as exc:
            logger.warning("Verification unavailable: %s", exc)
            return _invalid(req, "verification failed", nullifier)
        if not verified:
            return _invalid(req, "proof rejected", nullifier)

        try:
            result = self.engine.save_proof(proof)
        except RLNError as exc:
            return _invalid(req, f"cache rejected proof: {exc}", nullifier)
        if result.status is Status.INVALID:
            return _invalid(req, result.msg or "proof rejected by cache", nullifier)

        if result.status is Status.ADDED:
            self.delivered.append((req.epoch, req.signal))
            if self._on_message is not None:
                self._on_message(req.epoch, req.signal)
        elif result.status is Status.BREACH:
            logger.warning("Rate limit breach for nullifier %d in epoch %d", nullifier, req.epoch)
            if self._on_breach is not None:
                self._on_breach(result)

        return RelayResponse(
            msg_v=req.msg_v,
            ok=True,
            status=result.status.value,
            nullifier=nullifier,
            secret=result.secret,
        )
