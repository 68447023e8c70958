"""
Prime field arithmetic for RLN shares and nullifiers.

A share is a point (x, y) on the line y = a1 * x + secret. Two distinct
shares from the same line determine the secret; `PrimeField.recover_secret`
is the two-point solution used to slash a member who exceeded their quota.
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import SNARK_FIELD_SIZE
from .exceptions import DegenerateSharesError, InvalidInputError


@dataclass(frozen=True)
class PrimeField:
    """
    Arithmetic modulo a prime.

    Instances are immutable and passed explicitly to every component that
    needs field operations.

    Attributes:
        modulus: Field prime

    Example:
        >>> f = PrimeField(97)
        >>> f.div(1, 2)
        49
    """

    modulus: int

    def __post_init__(self) -> None:
        if self.modulus < 2:
            raise InvalidInputError(f"modulus must be >= 2, got {self.modulus}")

    def normalize(self, value: int) -> int:
        return value % self.modulus

    def is_element(self, value: int) -> bool:
        return isinstance(value, int) and 0 <= value < self.modulus

    def add(self, a: int, b: int) -> int:
        return (a + b) % self.modulus

    def sub(self, a: int, b: int) -> int:
        return (a - b) % self.modulus

    def mul(self, a: int, b: int) -> int:
        return (a * b) % self.modulus

    def neg(self, a: int) -> int:
        return (-a) % self.modulus

    def inv(self, a: int) -> int:
        """
        Multiplicative inverse.

        Raises:
            InvalidInputError: If a is congruent to zero
        """
        a = a % self.modulus
        if a == 0:
            raise InvalidInputError("zero has no inverse")
        return pow(a, -1, self.modulus)

    def div(self, a: int, b: int) -> int:
        """
        Compute a / b in the field.

        Raises:
            InvalidInputError: If b is congruent to zero
        """
        return self.mul(a, self.inv(b))

    def evaluate_share(self, secret: int, a1: int, x: int) -> int:
        """
        Evaluate the share line at x.

        Args:
            secret: Identity secret (constant term)
            a1: Line slope derived from the secret and external nullifier
            x: Signal hash

        Returns:
            y = a1 * x + secret (mod p)
        """
        return self.normalize(a1 * x + secret)

    def recover_secret(self, x1: int, y1: int, x2: int, y2: int) -> int:
        """
        Recover the constant term of a line from two of its points.

        Args:
            x1: First signal hash
            y1: First share
            x2: Second signal hash
            y2: Second share

        Returns:
            The identity secret

        Raises:
            DegenerateSharesError: If x1 == x2 (mod p)

        Example:
            >>> f = PrimeField(97)
            >>> f.recover_secret(1, f.evaluate_share(5, 3, 1), 2, f.evaluate_share(5, 3, 2))
            5
        """
        dx = self.sub(x2, x1)
        # Only the public x coordinates are compared
        if dx == 0:
            raise DegenerateSharesError("shares have the same x coordinate")
        slope = self.mul(self.sub(y2, y1), pow(dx, -1, self.modulus))
        return self.sub(y1, self.mul(slope, x1))


BN254_FIELD = PrimeField(SNARK_FIELD_SIZE)
