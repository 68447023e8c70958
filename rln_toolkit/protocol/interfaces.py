"""
Collaborator interfaces.

Proof generation, proof verification and the on-chain ledger live outside
the core. The core talks to them only through these protocols and makes
at most one call per logical operation, without retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .types import Groth16Proof, RLNWitness

VerificationKey = Dict[str, Any]


@runtime_checkable
class Prover(Protocol):
    """Turns a witness into a Groth16 proof and its public signals."""

    def generate_proof(self, witness: RLNWitness) -> Tuple[Groth16Proof, List[int]]:
        """
        Returns:
            (proof, public signals) with signals ordered
            [y, root, nullifier, x, external nullifier]

        Raises:
            ProverUnavailableError: If the prover is not configured
            ProofGenerationError: If proving fails
        """
        ...


@runtime_checkable
class Verifier(Protocol):
    """Checks a Groth16 proof against a verification key."""

    def verify(
        self,
        verification_key: Optional[VerificationKey],
        public_signals: Sequence[int],
        proof: Groth16Proof,
    ) -> bool:
        """
        Raises:
            VerifierUnavailableError: If the verifier is not configured
        """
        ...


# ============================================================================
# LEDGER
# ============================================================================


@dataclass(frozen=True)
class LedgerEvent:
    """
    One registry event emitted by the ledger.

    Attributes:
        name: "MemberRegistered", "MemberWithdrawn" or "MemberSlashed"
        index: Tree index the event refers to
        block_number: Block the event was included in
        identity_commitment: Set for MemberRegistered
        message_limit: Set for MemberRegistered
        slasher: Receiver of the slashing reward, set for MemberSlashed
    """

    name: str
    index: int
    block_number: int = 0
    identity_commitment: Optional[int] = None
    message_limit: Optional[int] = None
    slasher: Optional[str] = None


MEMBER_REGISTERED = "MemberRegistered"
MEMBER_WITHDRAWN = "MemberWithdrawn"
MEMBER_SLASHED = "MemberSlashed"


@dataclass(frozen=True)
class LedgerMember:
    identity_commitment: int
    message_limit: int
    index: int
    withdrawing: bool = False


class Ledger(Protocol):
    """
    Asynchronous view of the on-chain RLN registry contract.

    Every call may suspend; callers wrap them in `trio.fail_after` when a
    deadline is needed. Receipts are ledger-native and opaque to the core.
    """

    async def is_registered(self, identity_commitment: int) -> bool:
        ...

    async def get_member(self, identity_commitment: int) -> LedgerMember:
        ...

    async def register(self, identity_commitment: int, message_limit: int) -> Any:
        ...

    async def withdraw(self, identity_commitment: int) -> Any:
        ...

    async def release(self, identity_commitment: int) -> Any:
        ...

    async def slash(self, identity_commitment: int, receiver: str) -> Any:
        ...

    async def get_logs(self, from_block: int = 0) -> List[LedgerEvent]:
        ...
