"""Groth16/BN254 helpers: point compression, wire codec, external backends."""

from .codec import WireCodec, deserialize_field_le, serialize_field_le
from .curve import (
    compress_g1,
    compress_g2,
    decompress_g1,
    decompress_g2,
    is_on_curve_g1,
    is_on_curve_g2,
)

__all__ = [
    "WireCodec",
    "serialize_field_le",
    "deserialize_field_le",
    "compress_g1",
    "compress_g2",
    "decompress_g1",
    "decompress_g2",
    "is_on_curve_g1",
    "is_on_curve_g2",
]
