"""
Proof cache and rate-limit breach detection.

The cache keeps, per epoch and internal nullifier, the shares a member has
published. A second distinct share under the same key means the member
sent more messages than their quota allowed; the two shares lie on the same
line and reveal the member's identity secret.

Proofs must be verified before they reach the cache. The cache performs no
SNARK or Merkle validation of its own.

Breached keys are frozen: once two distinct shares are stored for a key,
later distinct shares are reported as BREACH (with the secret recovered
from the stored pair) but are not stored.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import DEFAULT_CACHE_LENGTH
from .exceptions import CodecError, InvalidInputError
from .field import BN254_FIELD, PrimeField
from .types import RLNFullProof, RLNPublicSignals

logger = logging.getLogger(__name__)

ProofLike = Union[RLNFullProof, RLNPublicSignals]


class Status(Enum):
    """Outcome of feeding a proof to the cache."""

    ADDED = "added"
    DUPLICATE = "duplicate"
    BREACH = "breach"
    INVALID = "invalid"


@dataclass(frozen=True)
class EvaluatedProof:
    status: Status
    nullifier: Optional[int] = None
    secret: Optional[int] = None
    msg: str = ""

    @property
    def is_breach(self) -> bool:
        return self.status is Status.BREACH


def _public_signals(proof: ProofLike) -> RLNPublicSignals:
    if isinstance(proof, RLNFullProof):
        return proof.public_signals
    if isinstance(proof, RLNPublicSignals):
        return proof
    raise TypeError(f"expected RLNFullProof or RLNPublicSignals, got {type(proof)}")


class ProofCache(ABC):
    """Capability interface of a proof cache."""

    @abstractmethod
    def add_proof(self, proof: ProofLike) -> EvaluatedProof:
        ...

    @abstractmethod
    def check_proof(self, proof: ProofLike) -> EvaluatedProof:
        ...


class MemoryCache(ProofCache):
    """
    Epoch-windowed in-memory proof cache.

    Args:
        rln_identifier: Application identifier proofs must carry
        cache_length: Maximum number of tracked epochs, 0 for unbounded
        field: Field used for secret recovery

    Example:
        >>> cache = MemoryCache(rln_identifier=app_id)
        >>> cache.add_proof(first).status
        <Status.ADDED: 'added'>
        >>> cache.add_proof(second).status
        <Status.BREACH: 'breach'>
    """

    def __init__(
        self,
        rln_identifier: int,
        cache_length: int = DEFAULT_CACHE_LENGTH,
        field: PrimeField = BN254_FIELD,
    ):
        if not isinstance(cache_length, int) or cache_length < 0:
            raise InvalidInputError(f"cache length must be >= 0, got {cache_length}")
        self.rln_identifier = rln_identifier
        self.cache_length = cache_length
        self.field = field
        # Insertion order of the dict is the FIFO eviction order
        self._cache: "OrderedDict[int, Dict[int, List[RLNPublicSignals]]]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def epochs(self) -> List[int]:
        return list(self._cache.keys())

    def __len__(self) -> int:
        return len(self._cache)

    def get_proofs(self, epoch: int, nullifier: int) -> List[RLNPublicSignals]:
        return list(self._cache.get(epoch, {}).get(nullifier, []))

    def add_proof(self, proof: ProofLike) -> EvaluatedProof:
        """
        Record a verified proof and check it against earlier ones.

        Returns:
            EvaluatedProof with status ADDED, DUPLICATE, BREACH or INVALID.
            On BREACH `secret` holds the recovered identity secret.

        Raises:
            DegenerateSharesError: If a stored share has the same x but a
                different y (cannot come from a valid proof); nothing is stored
        """
        signals = _public_signals(proof)
        with self._lock:
            if signals.rln_identifier != self.rln_identifier:
                return self._mismatch(signals)
            result, store = self._evaluate(signals)
            if result.status is Status.DUPLICATE:
                return result
            self._track_epoch(signals.epoch)
            if store:
                bucket = self._cache[signals.epoch].setdefault(signals.nullifier, [])
                bucket.append(signals)
            if result.status is Status.BREACH:
                logger.warning(
                    "Rate limit breach at epoch %d for nullifier %d",
                    signals.epoch,
                    signals.nullifier,
                )
            return result

    def check_proof(self, proof: ProofLike) -> EvaluatedProof:
        """Evaluate a proof as `add_proof` would, without storing it."""
        signals = _public_signals(proof)
        with self._lock:
            if signals.rln_identifier != self.rln_identifier:
                return self._mismatch(signals)
            result, _ = self._evaluate(signals)
            return result

    def _mismatch(self, signals: RLNPublicSignals) -> EvaluatedProof:
        return EvaluatedProof(
            status=Status.INVALID,
            nullifier=signals.nullifier,
            msg=(
                f"rln identifier mismatch: expected {self.rln_identifier}, "
                f"got {signals.rln_identifier}"
            ),
        )

    def _evaluate(self, signals: RLNPublicSignals) -> Tuple[EvaluatedProof, bool]:
        stored = self._cache.get(signals.epoch, {}).get(signals.nullifier, [])
        nullifier = signals.nullifier

        if any(p.same_share(signals) for p in stored):
            return EvaluatedProof(Status.DUPLICATE, nullifier, msg="Proof already exists"), False

        if not stored:
            return EvaluatedProof(Status.ADDED, nullifier, msg="Proof added to cache"), True

        first = stored[0]
        second = stored[1] if len(stored) > 1 else signals
        secret = self.field.recover_secret(first.x, first.y, second.x, second.y)
        return (
            EvaluatedProof(
                Status.BREACH,
                nullifier,
                secret=secret,
                msg="Rate limit breach, secret attached",
            ),
            len(stored) == 1,
        )

    def _track_epoch(self, epoch: int) -> None:
        if epoch in self._cache:
            return
        self._cache[epoch] = {}
        if self.cache_length > 0 and len(self._cache) > self.cache_length:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("Evicted epoch %d from proof cache", evicted)

    # ========================================================================
    # PERSISTENCE (JSON)
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "appIdentifier": str(self.rln_identifier),
                "cacheLength": self.cache_length,
                "epochs": [str(epoch) for epoch in self._cache],
                "cache": {
                    str(epoch): {
                        str(nullifier): [p.to_dict() for p in proofs]
                        for nullifier, proofs in bucket.items()
                    }
                    for epoch, bucket in self._cache.items()
                },
            }

    def export(self) -> str:
        """Serialize the cache to JSON with decimal-string field elements."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], field: PrimeField = BN254_FIELD
    ) -> "MemoryCache":
        try:
            cache = cls(
                rln_identifier=int(data["appIdentifier"]),
                cache_length=int(data["cacheLength"]),
                field=field,
            )
            entries = data.get("cache", {})
            for epoch_str in data["epochs"]:
                bucket = entries.get(epoch_str, {})
                cache._cache[int(epoch_str)] = {
                    int(nullifier): [RLNPublicSignals.from_dict(p) for p in proofs]
                    for nullifier, proofs in bucket.items()
                }
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            if isinstance(exc, InvalidInputError):
                raise
            raise CodecError(f"Invalid cache export: {exc}") from exc
        return cache

    @classmethod
    def import_(cls, text: str, field: PrimeField = BN254_FIELD) -> "MemoryCache":
        """Rebuild a cache from `export()` output."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CodecError(f"Invalid cache export: {exc}") from exc
        if not isinstance(data, dict):
            raise CodecError("Invalid cache export: expected an object")
        return cls.from_dict(data, field=field)
