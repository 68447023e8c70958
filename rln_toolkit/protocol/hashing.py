"""
Field hashes used by RLN.

Two hasher backends implement the `Hasher` protocol:

- `PoseidonHasher`: circomlib's Poseidon over the BN254 scalar field, run
  by the `poseidon-hash` package. Round constants and MDS matrices are
  regenerated with the Grain LFSR of the Poseidon reference scripts, so
  outputs match the circom RLN circuit.
- `Sha256FieldHasher`: domain-separated SHA-256 reduced into the field.
  Much faster; useful for tooling and tests that never meet a circuit.

Signal hashes and the registry zero value use Keccak-256 (pycryptodome),
shifted right by 8 bits so the result always fits in the field.
"""

from __future__ import annotations

import contextlib
import hashlib
import io
from collections import deque
from functools import lru_cache
from typing import Iterator, List, Protocol, Sequence, Tuple, Union

import poseidon
from Crypto.Hash import keccak

from .config import (
    POSEIDON_ALPHA,
    POSEIDON_FULL_ROUNDS,
    POSEIDON_MAX_INPUTS,
    POSEIDON_PARTIAL_ROUNDS,
    POSEIDON_SECURITY_LEVEL,
    SHA256_DOMAIN_SEPARATOR,
    SNARK_FIELD_SIZE,
)
from .exceptions import InvalidInputError
from .settings import get_hasher_type


class Hasher(Protocol):
    """Hash a non-empty sequence of field elements to a field element."""

    name: str
    modulus: int

    def hash(self, inputs: Sequence[int]) -> int:
        ...


def _reduce_inputs(inputs: Sequence[int], modulus: int) -> list[int]:
    if len(inputs) == 0:
        raise InvalidInputError("cannot hash an empty input")
    return [int(value) % modulus for value in inputs]


# ============================================================================
# POSEIDON PARAMETERS
# ============================================================================


def _grain_bits(t: int, partial_rounds: int, field_bits: int) -> Iterator[int]:
    """
    Grain LFSR in self-shrinking mode.

    The 80-bit seed encodes a prime field (01), the x^alpha S-box (0000),
    the field size, the width and both round numbers, then thirty ones.
    """
    seed = (
        f"{1:02b}{0:04b}{field_bits:012b}{t:012b}"
        f"{POSEIDON_FULL_ROUNDS:010b}{partial_rounds:010b}" + "1" * 30
    )
    state = deque((int(bit) for bit in seed), maxlen=80)

    def shift() -> int:
        bit = state[62] ^ state[51] ^ state[38] ^ state[23] ^ state[13] ^ state[0]
        state.append(bit)
        return bit

    for _ in range(160):
        shift()
    while True:
        if shift():
            yield shift()
        else:
            shift()


def _take(bits: Iterator[int], count: int) -> int:
    value = 0
    for _ in range(count):
        value = (value << 1) | next(bits)
    return value


@lru_cache(maxsize=None)
def poseidon_parameters(t: int, modulus: int = SNARK_FIELD_SIZE) -> Tuple[List[int], List[List[int]]]:
    """
    circomlib round constants and Cauchy MDS matrix for width `t`.

    Returns:
        (round_constants, mds_matrix) with t * (R_F + R_P) constants

    Raises:
        InvalidInputError: If circomlib defines no instance of this width
    """
    if not 2 <= t <= POSEIDON_MAX_INPUTS + 1:
        raise InvalidInputError(
            f"Poseidon takes 1 to {POSEIDON_MAX_INPUTS} inputs, got {t - 1}"
        )
    partial_rounds = POSEIDON_PARTIAL_ROUNDS[t - 2]
    field_bits = modulus.bit_length()
    bits = _grain_bits(t, partial_rounds, field_bits)

    constants: List[int] = []
    while len(constants) < t * (POSEIDON_FULL_ROUNDS + partial_rounds):
        value = _take(bits, field_bits)
        if value < modulus:
            constants.append(value)

    while True:
        sample = [_take(bits, field_bits) % modulus for _ in range(2 * t)]
        if len(set(sample)) != len(sample):
            continue
        xs, ys = sample[:t], sample[t:]
        if all((x + y) % modulus for x in xs for y in ys):
            break
    mds = [[pow(x + y, -1, modulus) for y in ys] for x in xs]
    return constants, mds


@lru_cache(maxsize=None)
def _poseidon_instance(modulus: int, arity: int) -> "poseidon.Poseidon":
    t = arity + 1
    constants, mds = poseidon_parameters(t, modulus)
    # poseidon-hash reports its setup steps on stdout
    with contextlib.redirect_stdout(io.StringIO()):
        return poseidon.Poseidon(
            p=modulus,
            security_level=POSEIDON_SECURITY_LEVEL,
            alpha=POSEIDON_ALPHA,
            input_rate=arity,
            t=t,
            full_round=POSEIDON_FULL_ROUNDS,
            partial_round=POSEIDON_PARTIAL_ROUNDS[t - 2],
            rc_list=[hex(c) for c in constants],
            mds_matrix=[[hex(m) for m in row] for row in mds],
        )


class PoseidonHasher:
    """
    Poseidon with width t = len(inputs) + 1, as circomlib's `Poseidon(n)`.

    The state starts as [0, *inputs] and the digest is the first element of
    the permuted state. Permutation instances are cached per arity.
    """

    name = "poseidon"

    def __init__(self, modulus: int = SNARK_FIELD_SIZE):
        self.modulus = modulus

    def hash(self, inputs: Sequence[int]) -> int:
        values = _reduce_inputs(inputs, self.modulus)
        instance = _poseidon_instance(self.modulus, len(values))
        instance.run_hash([0, *values])
        return int(instance.state[0])

    def __repr__(self) -> str:
        return f"PoseidonHasher(modulus={self.modulus})"


class Sha256FieldHasher:
    """SHA-256 over length-prefixed 32-byte big-endian inputs, reduced mod p."""

    name = "sha256"

    def __init__(
        self,
        modulus: int = SNARK_FIELD_SIZE,
        domain_sep: bytes = SHA256_DOMAIN_SEPARATOR,
    ):
        if not domain_sep:
            raise InvalidInputError("Domain separator cannot be empty")
        self.modulus = modulus
        self.domain_sep = domain_sep

    def hash(self, inputs: Sequence[int]) -> int:
        values = _reduce_inputs(inputs, self.modulus)
        h = hashlib.sha256()
        h.update(len(self.domain_sep).to_bytes(4, "big"))
        h.update(self.domain_sep)
        h.update(len(values).to_bytes(4, "big"))
        for value in values:
            h.update(value.to_bytes(32, "big"))
        return int.from_bytes(h.digest(), "big") % self.modulus

    def __repr__(self) -> str:
        return f"Sha256FieldHasher(modulus={self.modulus})"


HASHER_REGISTRY = {
    "poseidon": PoseidonHasher,
    "sha256": Sha256FieldHasher,
}


def get_hasher(prefer: str | None = None) -> Hasher:
    """
    Instantiate the configured hasher backend.

    Args:
        prefer: Optional backend name overriding settings and environment

    Returns:
        Hasher instance over the SNARK scalar field
    """
    return HASHER_REGISTRY[get_hasher_type(prefer)]()


# ============================================================================
# KECCAK-BASED HASHES
# ============================================================================


def keccak256(data: bytes) -> bytes:
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def hash_signal(signal: Union[str, bytes]) -> int:
    """
    Hash an application signal to the share x coordinate.

    Args:
        signal: Message text (UTF-8 encoded) or raw bytes

    Returns:
        keccak256(signal) >> 8
    """
    if isinstance(signal, str):
        signal = signal.encode("utf-8")
    elif not isinstance(signal, (bytes, bytearray)):
        raise TypeError(f"signal must be str or bytes, got {type(signal)}")
    return int.from_bytes(keccak256(bytes(signal)), "big") >> 8


def calculate_zero_value(message: Union[int, str, bytes]) -> int:
    """
    Derive a registry zero value nobody knows a preimage for.

    Integers are encoded as 32-byte big-endian two's complement; strings
    and bytes are hashed as-is.

    Raises:
        InvalidInputError: If an integer does not fit in 256 bits
    """
    if isinstance(message, int):
        if not -(2**255) <= message < 2**256:
            raise InvalidInputError("message does not fit in 256 bits")
        data = (message % 2**256).to_bytes(32, "big")
    elif isinstance(message, str):
        data = message.encode("utf-8")
    else:
        data = bytes(message)
    return int.from_bytes(keccak256(data), "big") >> 8


# ============================================================================
# RLN DERIVATIONS
# ============================================================================


def identity_commitment(identity_secret: int, hasher: Hasher) -> int:
    return hasher.hash([identity_secret])


def rate_commitment(commitment: int, message_limit: int, hasher: Hasher) -> int:
    return hasher.hash([commitment, message_limit])


def external_nullifier(epoch: int, rln_identifier: int, hasher: Hasher) -> int:
    return hasher.hash([epoch, rln_identifier])
