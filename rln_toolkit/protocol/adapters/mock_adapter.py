from __future__ import annotations

import hashlib
from typing import List, Optional, Sequence, Tuple

from py_ecc.bn128 import G1, G2, multiply

from ..engine import compute_public_signals
from ..exceptions import ProofGenerationError
from ..field import BN254_FIELD, PrimeField
from ..hashing import Hasher, get_hasher
from ..interfaces import VerificationKey
from ..types import G1Point, G2Point, Groth16Proof, RLNWitness

_MOCK_DOMAIN = b"RLN_TOOLKIT_MOCK_PROOF"


def _scalar_for(public_signals: Sequence[int], tag: bytes) -> int:
    h = hashlib.sha256(_MOCK_DOMAIN + tag)
    for value in public_signals:
        h.update(int(value).to_bytes(32, "big"))
    # Small scalars keep G2 multiplication fast in pure Python
    return int.from_bytes(h.digest()[:8], "big") + 1


def _g1(scalar: int) -> G1Point:
    x, y = multiply(G1, scalar)
    return (int(x), int(y))


def _g2(scalar: int) -> G2Point:
    x, y = multiply(G2, scalar)
    return (
        (int(x.coeffs[0]), int(x.coeffs[1])),
        (int(y.coeffs[0]), int(y.coeffs[1])),
    )


def mock_snark_proof(public_signals: Sequence[int]) -> Groth16Proof:
    """Deterministic curve points bound to the public signals."""
    return Groth16Proof(
        pi_a=_g1(_scalar_for(public_signals, b"a")),
        pi_b=_g2(_scalar_for(public_signals, b"b")),
        pi_c=_g1(_scalar_for(public_signals, b"c")),
    )


class MockProver:
    """
    Prover that evaluates the RLN relation directly instead of proving it.

    Public signals are exactly what the circuit would output for the
    witness. The proof points are valid curve points derived from those
    signals, so they survive the wire codec, but they prove nothing.

    Notes:
    - For tests, demos and tooling only.
    - It does NOT provide zero-knowledge or soundness.
    """

    def __init__(
        self,
        hasher: Optional[Hasher] = None,
        field: PrimeField = BN254_FIELD,
    ) -> None:
        self.hasher = hasher if hasher is not None else get_hasher()
        self.field = field
        self.calls = 0

    def generate_proof(self, witness: RLNWitness) -> Tuple[Groth16Proof, List[int]]:
        if not isinstance(witness, RLNWitness):
            raise ProofGenerationError("witness must be an RLNWitness")
        if witness.message_id >= witness.user_message_limit:
            raise ProofGenerationError("message id exceeds the message limit")
        self.calls += 1
        signals = compute_public_signals(witness, self.hasher, self.field)
        ordered = signals.circuit_order()
        return mock_snark_proof(ordered), ordered


class MockVerifier:
    """Accepts exactly the proofs MockProver would emit for the given signals."""

    def __init__(self) -> None:
        self.calls = 0

    def verify(
        self,
        verification_key: Optional[VerificationKey],
        public_signals: Sequence[int],
        proof: Groth16Proof,
    ) -> bool:
        self.calls += 1
        return mock_snark_proof(list(public_signals)) == proof
