"""
Common types for RLN proofs.

This module provides:
1. Groth16Proof - the SNARK triple (pi_a, pi_b, pi_c) as affine points
2. RLNPublicSignals - public outputs of the RLN circuit plus epoch/identifier
3. RLNFullProof - proof + public signals, with CBOR and JSON serialization
4. RLNWitness - private and public inputs handed to an external prover

Points use plain integers: G1 is (x, y), G2 is ((x_c0, x_c1), (y_c0, y_c1)),
and None is the point at infinity. JSON output follows snarkjs (projective
coordinates as decimal strings).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cbor2

from .config import PROOF_VERSION, SNARK_CURVE, SNARK_PROTOCOL
from .exceptions import CodecError

G1Point = Optional[Tuple[int, int]]
Fp2 = Tuple[int, int]
G2Point = Optional[Tuple[Fp2, Fp2]]


# ============================================================================
# SNARKJS JSON HELPERS
# ============================================================================


def g1_to_json(point: G1Point) -> List[str]:
    if point is None:
        return ["0", "1", "0"]
    return [str(point[0]), str(point[1]), "1"]


def g1_from_json(data: Sequence[Any]) -> G1Point:
    values = [int(v) for v in data]
    if len(values) == 2:
        values.append(1)
    x, y, z = values[:3]
    if z == 0:
        return None
    if z != 1:
        raise CodecError("only affine G1 points are supported")
    return (x, y)


def g2_to_json(point: G2Point) -> List[List[str]]:
    if point is None:
        return [["0", "0"], ["1", "0"], ["0", "0"]]
    (x0, x1), (y0, y1) = point
    return [[str(x0), str(x1)], [str(y0), str(y1)], ["1", "0"]]


def g2_from_json(data: Sequence[Sequence[Any]]) -> G2Point:
    coords = [tuple(int(c) for c in pair) for pair in data]
    z = coords[2] if len(coords) >= 3 else (1, 0)
    if z == (0, 0):
        return None
    if z != (1, 0):
        raise CodecError("only affine G2 points are supported")
    return (coords[0], coords[1])


# ============================================================================
# GROTH16 PROOF
# ============================================================================


@dataclass(frozen=True)
class Groth16Proof:
    """
    Groth16 proof over BN254.

    The core never interprets these points; they are produced by the
    external prover and consumed by the external verifier and the wire codec.
    """

    pi_a: G1Point
    pi_b: G2Point
    pi_c: G1Point
    protocol: str = SNARK_PROTOCOL
    curve: str = SNARK_CURVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pi_a": g1_to_json(self.pi_a),
            "pi_b": g2_to_json(self.pi_b),
            "pi_c": g1_to_json(self.pi_c),
            "protocol": self.protocol,
            "curve": self.curve,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Groth16Proof":
        try:
            return cls(
                pi_a=g1_from_json(data["pi_a"]),
                pi_b=g2_from_json(data["pi_b"]),
                pi_c=g1_from_json(data["pi_c"]),
                protocol=data.get("protocol", SNARK_PROTOCOL),
                curve=data.get("curve", SNARK_CURVE),
            )
        except (KeyError, TypeError, ValueError, IndexError) as e:
            raise CodecError(f"Invalid Groth16 proof: {e}") from e


# ============================================================================
# PUBLIC SIGNALS
# ============================================================================


@dataclass(frozen=True)
class RLNPublicSignals:
    """
    Public signals of one RLN message.

    Attributes:
        x: Signal hash (share x coordinate)
        y: Share y coordinate
        nullifier: Internal nullifier, the per-member per-epoch cache key
        root: Membership tree root the proof was made against
        external_nullifier: Poseidon(epoch, rln_identifier)
        epoch: Epoch the message was sent in
        rln_identifier: Application identifier
    """

    x: int
    y: int
    nullifier: int
    root: int
    external_nullifier: int
    epoch: int
    rln_identifier: int

    def circuit_order(self) -> List[int]:
        """Public signals in circuit output order: y, root, nullifier, x, external nullifier."""
        return [self.y, self.root, self.nullifier, self.x, self.external_nullifier]

    def same_share(self, other: "RLNPublicSignals") -> bool:
        """
        Compare everything but the root.

        The root may legitimately change between two submissions of the
        same message within an epoch.
        """
        return (
            self.x == other.x
            and self.y == other.y
            and self.nullifier == other.nullifier
            and self.external_nullifier == other.external_nullifier
            and self.epoch == other.epoch
            and self.rln_identifier == other.rln_identifier
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "x": str(self.x),
            "y": str(self.y),
            "nullifier": str(self.nullifier),
            "root": str(self.root),
            "externalNullifier": str(self.external_nullifier),
            "epoch": str(self.epoch),
            "rlnIdentifier": str(self.rln_identifier),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RLNPublicSignals":
        try:
            return cls(
                x=int(data["x"]),
                y=int(data["y"]),
                nullifier=int(data["nullifier"]),
                root=int(data["root"]),
                external_nullifier=int(data["externalNullifier"]),
                epoch=int(data["epoch"]),
                rln_identifier=int(data["rlnIdentifier"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CodecError(f"Invalid public signals: {e}") from e


# ============================================================================
# FULL PROOF
# ============================================================================


@dataclass(frozen=True)
class RLNFullProof:
    """
    SNARK proof with the public signals it attests to.

    Serialization:
        - Primary: CBOR with version field (`serialize` / `deserialize`)
        - Interchange: 320-byte wire format (`snark.codec.WireCodec`)
        - JSON: `to_dict` / `from_dict`, decimal strings

    Example:
        >>> data = proof.serialize()
        >>> RLNFullProof.deserialize(data) == proof
        True
    """

    snark_proof: Groth16Proof
    public_signals: RLNPublicSignals

    @property
    def epoch(self) -> int:
        return self.public_signals.epoch

    @property
    def rln_identifier(self) -> int:
        return self.public_signals.rln_identifier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snarkProof": {
                "proof": self.snark_proof.to_dict(),
                "publicSignals": self.public_signals.to_dict(),
            },
            "epoch": str(self.epoch),
            "rlnIdentifier": str(self.rln_identifier),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RLNFullProof":
        try:
            snark = data["snarkProof"]
            proof = snark["proof"]
            signals = dict(snark["publicSignals"])
        except (KeyError, TypeError) as e:
            raise CodecError(f"Invalid RLN proof: {e}") from e
        signals.setdefault("epoch", data.get("epoch"))
        signals.setdefault("rlnIdentifier", data.get("rlnIdentifier"))
        return cls(
            snark_proof=Groth16Proof.from_dict(proof),
            public_signals=RLNPublicSignals.from_dict(signals),
        )

    def serialize(self) -> bytes:
        """
        Serialize proof to bytes using CBOR.

        Raises:
            CodecError: If serialization fails
        """
        try:
            data = {
                "v": PROOF_VERSION,
                "p": self.snark_proof.to_dict(),
                "s": [
                    self.public_signals.x,
                    self.public_signals.y,
                    self.public_signals.nullifier,
                    self.public_signals.root,
                    self.public_signals.external_nullifier,
                    self.public_signals.epoch,
                    self.public_signals.rln_identifier,
                ],
            }
            return cbor2.dumps(data)
        except Exception as e:
            raise CodecError(f"Failed to serialize proof: {e}") from e

    @classmethod
    def deserialize(cls, data: bytes) -> "RLNFullProof":
        """
        Deserialize proof from CBOR bytes.

        Raises:
            CodecError: If the bytes are not a supported proof encoding
        """
        try:
            obj = cbor2.loads(data)
        except Exception as e:
            raise CodecError(f"Failed to deserialize proof: {e}") from e

        if not isinstance(obj, dict) or "p" not in obj or "s" not in obj:
            raise CodecError("Invalid proof format: missing required fields")

        version = obj.get("v", 1)
        if version != PROOF_VERSION:
            raise CodecError(
                f"Unsupported proof version: {version} (expected {PROOF_VERSION})"
            )

        signals = obj["s"]
        if not isinstance(signals, list) or len(signals) != 7:
            raise CodecError("Invalid proof format: expected 7 public signals")
        x, y, nullifier, root, ext, epoch, rln_identifier = (int(v) for v in signals)
        return cls(
            snark_proof=Groth16Proof.from_dict(obj["p"]),
            public_signals=RLNPublicSignals(
                x=x,
                y=y,
                nullifier=nullifier,
                root=root,
                external_nullifier=ext,
                epoch=epoch,
                rln_identifier=rln_identifier,
            ),
        )


# ============================================================================
# WITNESS
# ============================================================================


@dataclass(frozen=True)
class RLNWitness:
    """
    Inputs of the RLN circuit.

    `identity_secret` is private. Never log or transmit a witness.
    """

    identity_secret: int
    user_message_limit: int
    message_id: int
    path_elements: Tuple[int, ...]
    identity_path_index: Tuple[int, ...]
    x: int
    external_nullifier: int
    epoch: int = 0
    rln_identifier: int = 0
    root: int = 0

    def to_circuit_inputs(self) -> Dict[str, Any]:
        """Input JSON for the circom RLN circuit (decimal strings)."""
        return {
            "identitySecret": str(self.identity_secret),
            "userMessageLimit": str(self.user_message_limit),
            "messageId": str(self.message_id),
            "pathElements": [str(e) for e in self.path_elements],
            "identityPathIndex": [int(i) for i in self.identity_path_index],
            "x": str(self.x),
            "externalNullifier": str(self.external_nullifier),
        }

    def __repr__(self) -> str:
        return (
            f"RLNWitness(epoch={self.epoch}, rln_identifier={self.rln_identifier}, "
            f"x={self.x}, message_id={self.message_id}, identity_secret=<redacted>)"
        )
