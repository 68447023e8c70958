"""
320-byte wire format for RLN proofs.

Layout (all little-endian):

    offset  size  field
    0       32    pi_a (compressed G1)
    32      64    pi_b (compressed G2)
    96      32    pi_c (compressed G1)
    128     32    share y
    160     32    internal nullifier
    192     32    merkle root
    224     32    epoch
    256     32    share x (signal hash)
    288     32    rln identifier

The external nullifier is not on the wire; it is recomputed from epoch and
rln identifier on decode.
"""

from __future__ import annotations

from typing import Optional

from ..config import (
    SIZE_FIELD,
    SIZE_G1_COMPRESSED,
    SIZE_G2_COMPRESSED,
    SIZE_SNARK_PROOF,
    SIZE_WIRE_PROOF,
)
from ..exceptions import CodecError, InvalidProofSizeError
from ..hashing import Hasher, external_nullifier, get_hasher
from ..types import Groth16Proof, RLNFullProof, RLNPublicSignals
from .curve import compress_g1, compress_g2, decompress_g1, decompress_g2

OFFSET_PI_A = 0
OFFSET_PI_B = OFFSET_PI_A + SIZE_G1_COMPRESSED
OFFSET_PI_C = OFFSET_PI_B + SIZE_G2_COMPRESSED
OFFSET_SHARE_Y = SIZE_SNARK_PROOF
OFFSET_NULLIFIER = OFFSET_SHARE_Y + SIZE_FIELD
OFFSET_MERKLE_ROOT = OFFSET_NULLIFIER + SIZE_FIELD
OFFSET_EPOCH = OFFSET_MERKLE_ROOT + SIZE_FIELD
OFFSET_SHARE_X = OFFSET_EPOCH + SIZE_FIELD
OFFSET_RLN_IDENTIFIER = OFFSET_SHARE_X + SIZE_FIELD


def serialize_field_le(value: int) -> bytes:
    if not isinstance(value, int) or not 0 <= value < 1 << (8 * SIZE_FIELD):
        raise CodecError(f"value does not fit in {SIZE_FIELD} bytes")
    return value.to_bytes(SIZE_FIELD, "little")


def deserialize_field_le(data: bytes) -> int:
    if len(data) != SIZE_FIELD:
        raise InvalidProofSizeError(f"field element must be {SIZE_FIELD} bytes")
    return int.from_bytes(data, "little")


def serialize_snark_proof(proof: Groth16Proof) -> bytes:
    return compress_g1(proof.pi_a) + compress_g2(proof.pi_b) + compress_g1(proof.pi_c)


def deserialize_snark_proof(data: bytes) -> Groth16Proof:
    if len(data) != SIZE_SNARK_PROOF:
        raise InvalidProofSizeError(
            f"invalid snark proof size: {len(data)} (expected {SIZE_SNARK_PROOF})"
        )
    return Groth16Proof(
        pi_a=decompress_g1(data[OFFSET_PI_A:OFFSET_PI_B]),
        pi_b=decompress_g2(data[OFFSET_PI_B:OFFSET_PI_C]),
        pi_c=decompress_g1(data[OFFSET_PI_C:SIZE_SNARK_PROOF]),
    )


class WireCodec:
    """
    Encode and decode RLN proofs in the 320-byte interchange format.

    Args:
        hasher: Hasher used to recompute the external nullifier on decode

    Example:
        >>> codec = WireCodec()
        >>> data = codec.serialize(proof)
        >>> len(data)
        320
        >>> codec.deserialize(data) == proof
        True
    """

    size = SIZE_WIRE_PROOF

    def __init__(self, hasher: Optional[Hasher] = None):
        self.hasher = hasher if hasher is not None else get_hasher()

    def serialize(self, proof: RLNFullProof) -> bytes:
        signals = proof.public_signals
        data = b"".join(
            [
                serialize_snark_proof(proof.snark_proof),
                serialize_field_le(signals.y),
                serialize_field_le(signals.nullifier),
                serialize_field_le(signals.root),
                serialize_field_le(signals.epoch),
                serialize_field_le(signals.x),
                serialize_field_le(signals.rln_identifier),
            ]
        )
        assert len(data) == SIZE_WIRE_PROOF
        return data

    def deserialize(self, data: bytes) -> RLNFullProof:
        """
        Decode a 320-byte proof.

        Raises:
            InvalidProofSizeError: If data is not exactly 320 bytes
            InvalidCompressionFlagsError: If a point has both flags set
            InvalidPointError: If a point is not on its curve
        """
        if not isinstance(data, (bytes, bytearray)):
            raise CodecError("proof must be bytes")
        data = bytes(data)
        if len(data) != SIZE_WIRE_PROOF:
            raise InvalidProofSizeError(
                f"invalid RLN full proof size: {len(data)} (expected {SIZE_WIRE_PROOF})"
            )

        def field_at(offset: int) -> int:
            return deserialize_field_le(data[offset : offset + SIZE_FIELD])

        snark_proof = deserialize_snark_proof(data[:SIZE_SNARK_PROOF])
        epoch = field_at(OFFSET_EPOCH)
        rln_identifier = field_at(OFFSET_RLN_IDENTIFIER)
        signals = RLNPublicSignals(
            x=field_at(OFFSET_SHARE_X),
            y=field_at(OFFSET_SHARE_Y),
            nullifier=field_at(OFFSET_NULLIFIER),
            root=field_at(OFFSET_MERKLE_ROOT),
            external_nullifier=external_nullifier(epoch, rln_identifier, self.hasher),
            epoch=epoch,
            rln_identifier=rln_identifier,
        )
        return RLNFullProof(snark_proof=snark_proof, public_signals=signals)
