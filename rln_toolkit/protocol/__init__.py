"""Public API of the RLN protocol core."""

from __future__ import annotations

from .cache import EvaluatedProof, MemoryCache, ProofCache, Status
from .engine import RLNEngine, compute_public_signals, derive_a1
from .exceptions import (
    AlreadyRegisteredError,
    CacheRejection,
    CodecError,
    ConfigurationError,
    InvalidInputError,
    LedgerError,
    MemberNotFoundError,
    MessageLimitExceededError,
    ProofGenerationError,
    ProofVerificationError,
    RLNError,
    SlashedMemberError,
)
from .field import BN254_FIELD, PrimeField
from .hashing import (
    PoseidonHasher,
    Sha256FieldHasher,
    calculate_zero_value,
    external_nullifier,
    get_hasher,
    hash_signal,
    identity_commitment,
    rate_commitment,
)
from .identity import Identity
from .interfaces import Ledger, Prover, Verifier
from .ledger import InMemoryLedger, LedgerBackedRegistry
from .merkle import IncrementalMerkleTree, MerkleProof, verify_merkle_proof
from .message_id import MessageIdCounter
from .registry import MembershipRegistry, MemoryRegistry
from .settings import RLNSettings, get_hasher_type, load_settings, set_hasher_type
from .snark.codec import WireCodec
from .types import Groth16Proof, RLNFullProof, RLNPublicSignals, RLNWitness

__all__ = [
    "RLNEngine",
    "compute_public_signals",
    "derive_a1",
    "MemoryCache",
    "ProofCache",
    "EvaluatedProof",
    "Status",
    "MembershipRegistry",
    "MemoryRegistry",
    "LedgerBackedRegistry",
    "InMemoryLedger",
    "IncrementalMerkleTree",
    "MerkleProof",
    "verify_merkle_proof",
    "Identity",
    "MessageIdCounter",
    "WireCodec",
    "Groth16Proof",
    "RLNFullProof",
    "RLNPublicSignals",
    "RLNWitness",
    "Prover",
    "Verifier",
    "Ledger",
    "PrimeField",
    "BN254_FIELD",
    "PoseidonHasher",
    "Sha256FieldHasher",
    "get_hasher",
    "hash_signal",
    "calculate_zero_value",
    "identity_commitment",
    "rate_commitment",
    "external_nullifier",
    "RLNSettings",
    "load_settings",
    "get_hasher_type",
    "set_hasher_type",
    "RLNError",
    "ConfigurationError",
    "InvalidInputError",
    "MessageLimitExceededError",
    "AlreadyRegisteredError",
    "SlashedMemberError",
    "MemberNotFoundError",
    "CacheRejection",
    "CodecError",
    "ProofGenerationError",
    "ProofVerificationError",
    "LedgerError",
]
