"""
Randomness for identity secrets and application identifiers.

Secrets must never repeat across processes: a reused identity secret
links every message of the two members, and a reused share line lets
anyone recover the secret.
"""

import os
import secrets

from .config import SNARK_FIELD_SIZE


class RandomnessSource:
    """
    Cryptographically secure randomness with fork detection.

    Example:
        >>> rng = RandomnessSource()
        >>> secret = rng.get_random_field_element()
    """

    def __init__(self):
        self._pid = os.getpid()
        self._rng = secrets.SystemRandom()

    def _check_fork(self) -> None:
        if os.getpid() != self._pid:
            self.__init__()

    def get_random_scalar(self, max_value: int) -> int:
        """
        Get random scalar in [0, max_value).

        Args:
            max_value: Upper bound (exclusive, must be > 1)

        Raises:
            ValueError: If max_value <= 1
        """
        if max_value <= 1:
            raise ValueError(f"max_value must be > 1, got {max_value}")
        self._check_fork()
        return self._rng.randrange(0, max_value)

    def get_random_bytes(self, n: int) -> bytes:
        self._check_fork()
        return secrets.token_bytes(n)

    def get_random_field_element(self) -> int:
        """
        Get a random non-zero element of the SNARK scalar field.

        Zero is excluded: a zero secret or identifier makes every derived
        hash predictable.
        """
        return 1 + self.get_random_scalar(SNARK_FIELD_SIZE - 1)


_default_source = RandomnessSource()


def random_field_element() -> int:
    return _default_source.get_random_field_element()


def generate_rln_identifier() -> int:
    """Draw a fresh application identifier."""
    return random_field_element()
