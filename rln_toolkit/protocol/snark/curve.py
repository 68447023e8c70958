"""
BN254 point compression in the arkworks little-endian layout.

A compressed point is its x coordinate, little-endian, with two flags in
the top bits of the last byte:

- bit 7: y is the greater of the two square roots (y > -y)
- bit 6: point at infinity

Both flags set is never valid. G2 x coordinates are written c0 then c1,
so the flags land in the top byte of c1. For Fp2, "greater" compares c1
first and c0 on a tie.

Field arithmetic and curve constants come from py_ecc.
"""

from __future__ import annotations

from typing import Optional

from py_ecc.bn128 import FQ, FQ2, b, b2, field_modulus, is_on_curve

from ..config import (
    FLAG_GREATEST_ROOT,
    FLAG_INFINITY,
    SIZE_FIELD,
    SIZE_G1_COMPRESSED,
    SIZE_G2_COMPRESSED,
)
from ..exceptions import (
    InvalidCompressionFlagsError,
    InvalidPointError,
    InvalidProofSizeError,
)
from ..types import Fp2, G1Point, G2Point

P = field_modulus
_FLAG_MASK = FLAG_GREATEST_ROOT | FLAG_INFINITY


def _coeffs(value: FQ2) -> Fp2:
    c0, c1 = value.coeffs
    return (int(c0), int(c1))


def _fq_sqrt(a: FQ) -> Optional[FQ]:
    # p = 3 (mod 4)
    root = a ** ((P + 1) // 4)
    return root if root * root == a else None


def _fq2_sqrt(a: FQ2) -> Optional[FQ2]:
    """Square root in Fp2 = Fp[i]/(i^2 + 1) for p = 3 (mod 4)."""
    if a == FQ2.zero():
        return FQ2.zero()
    minus_one = FQ2([P - 1, 0])
    a1 = a ** ((P - 3) // 4)
    alpha = a1 * a1 * a
    c0, c1 = _coeffs(alpha)
    # alpha^p is the conjugate of alpha
    a0 = FQ2([c0, -c1]) * alpha
    if a0 == minus_one:
        return None
    x0 = a1 * a
    if alpha == minus_one:
        root = FQ2([0, 1]) * x0
    else:
        root = ((FQ2.one() + alpha) ** ((P - 1) // 2)) * x0
    return root if root * root == a else None


def _fq_is_greatest(y: int) -> bool:
    return y > (P - y) % P


def _fq2_is_greatest(y: Fp2) -> bool:
    y0, y1 = y
    return (y1, y0) > ((P - y1) % P, (P - y0) % P)


def _read_flags(data: bytes) -> tuple[bool, bool]:
    last = data[-1]
    greatest = bool(last & FLAG_GREATEST_ROOT)
    infinity = bool(last & FLAG_INFINITY)
    if greatest and infinity:
        raise InvalidCompressionFlagsError("invalid compression: both flags set")
    return greatest, infinity


def _strip_flags(data: bytes) -> bytes:
    return data[:-1] + bytes([data[-1] & ~_FLAG_MASK & 0xFF])


def _fq_from_le(data: bytes) -> int:
    value = int.from_bytes(data, "little")
    if value >= P:
        raise InvalidPointError("coordinate is not a canonical field element")
    return value


# ============================================================================
# G1
# ============================================================================


def is_on_curve_g1(point: G1Point) -> bool:
    if point is None:
        return True
    return is_on_curve((FQ(point[0]), FQ(point[1])), b)


def compress_g1(point: G1Point) -> bytes:
    """Compress a G1 point to 32 little-endian bytes."""
    if point is None:
        out = bytearray(SIZE_G1_COMPRESSED)
        out[-1] |= FLAG_INFINITY
        return bytes(out)
    x, y = point
    out = bytearray(x.to_bytes(SIZE_G1_COMPRESSED, "little"))
    if _fq_is_greatest(y):
        out[-1] |= FLAG_GREATEST_ROOT
    return bytes(out)


def decompress_g1(data: bytes) -> G1Point:
    """
    Decompress a 32-byte G1 point.

    Raises:
        InvalidProofSizeError: If data is not 32 bytes
        InvalidCompressionFlagsError: If both flags are set
        InvalidPointError: If x is not on the curve
    """
    if len(data) != SIZE_G1_COMPRESSED:
        raise InvalidProofSizeError(f"G1 point must be {SIZE_G1_COMPRESSED} bytes")
    greatest, infinity = _read_flags(data)
    x = _fq_from_le(_strip_flags(data))
    if infinity:
        if x != 0:
            raise InvalidPointError("infinity flag set on a non-zero encoding")
        return None
    fx = FQ(x)
    y = _fq_sqrt(fx * fx * fx + b)
    if y is None:
        raise InvalidPointError("x is not the coordinate of a G1 point")
    y_int = int(y)
    if _fq_is_greatest(y_int) != greatest:
        y_int = (P - y_int) % P
    return (x, y_int)


# ============================================================================
# G2
# ============================================================================


def is_on_curve_g2(point: G2Point) -> bool:
    if point is None:
        return True
    x, y = point
    return is_on_curve((FQ2(list(x)), FQ2(list(y))), b2)


def compress_g2(point: G2Point) -> bytes:
    """Compress a G2 point to 64 little-endian bytes (c0 then c1)."""
    if point is None:
        out = bytearray(SIZE_G2_COMPRESSED)
        out[-1] |= FLAG_INFINITY
        return bytes(out)
    (x0, x1), y = point
    out = bytearray(x0.to_bytes(SIZE_FIELD, "little") + x1.to_bytes(SIZE_FIELD, "little"))
    if _fq2_is_greatest(y):
        out[-1] |= FLAG_GREATEST_ROOT
    return bytes(out)


def decompress_g2(data: bytes) -> G2Point:
    """
    Decompress a 64-byte G2 point.

    Subgroup membership is not checked; the external verifier does that.

    Raises:
        InvalidProofSizeError: If data is not 64 bytes
        InvalidCompressionFlagsError: If both flags are set
        InvalidPointError: If x is not on the twist
    """
    if len(data) != SIZE_G2_COMPRESSED:
        raise InvalidProofSizeError(f"G2 point must be {SIZE_G2_COMPRESSED} bytes")
    greatest, infinity = _read_flags(data)
    stripped = _strip_flags(data)
    x0 = _fq_from_le(stripped[:SIZE_FIELD])
    x1 = _fq_from_le(stripped[SIZE_FIELD:])
    if infinity:
        if x0 != 0 or x1 != 0:
            raise InvalidPointError("infinity flag set on a non-zero encoding")
        return None
    fx = FQ2([x0, x1])
    y = _fq2_sqrt(fx * fx * fx + b2)
    if y is None:
        raise InvalidPointError("x is not the coordinate of a G2 point")
    y_coeffs = _coeffs(y)
    if _fq2_is_greatest(y_coeffs) != greatest:
        y_coeffs = ((P - y_coeffs[0]) % P, (P - y_coeffs[1]) % P)
    return ((x0, x1), y_coeffs)
