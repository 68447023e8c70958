"""RLN member identities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .config import SNARK_FIELD_SIZE
from .exceptions import InvalidInputError
from .hashing import Hasher, get_hasher, identity_commitment
from .security import random_field_element


@dataclass(frozen=True)
class Identity:
    """
    A member's secret and its public commitment.

    The secret never leaves the member. Anyone holding two shares from the
    same epoch can recompute it, which is how slashing works.

    Example:
        >>> identity = Identity.generate()
        >>> identity.commitment == identity_commitment(identity.secret, identity.hasher)
        True
    """

    secret: int
    hasher: Hasher = field(default_factory=get_hasher, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.secret, int) or not 0 < self.secret < SNARK_FIELD_SIZE:
            raise InvalidInputError("identity secret must be a non-zero field element")

    @classmethod
    def generate(cls, hasher: Optional[Hasher] = None) -> "Identity":
        if hasher is None:
            hasher = get_hasher()
        return cls(secret=random_field_element(), hasher=hasher)

    @property
    def commitment(self) -> int:
        return identity_commitment(self.secret, self.hasher)

    def __repr__(self) -> str:
        return f"Identity(commitment={self.commitment}, secret=<redacted>)"
