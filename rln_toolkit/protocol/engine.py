"""
RLN engine: derivations, witness building, proof packaging and checks.

The engine ties together one application's registry, proof cache and
collaborators:

    create_proof  -> registry Merkle proof -> witness -> Prover -> RLNFullProof
    verify_proof  -> public-signal checks  -> Verifier
    save_proof    -> ProofCache (ADDED / DUPLICATE / BREACH / INVALID)

Share slope:
    a1 = H(secret, external_nullifier)               if message_limit == 1
    a1 = H(secret, external_nullifier, message_id)   otherwise

With a limit of one every message of an epoch shares a line. With a
larger limit each message id opens its own line, so a member can publish
`message_limit` messages per epoch and is only caught when a message id
is reused.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from .cache import EvaluatedProof, MemoryCache, ProofCache, Status
from .config import DEFAULT_CACHE_LENGTH, DEFAULT_TREE_DEPTH, NUM_PUBLIC_SIGNALS
from .exceptions import (
    ConfigurationError,
    IdentifierMismatchError,
    InvalidInputError,
    MemberNotFoundError,
    ProofGenerationError,
    ProverUnavailableError,
    VerifierUnavailableError,
)
from .field import BN254_FIELD, PrimeField
from .hashing import Hasher, external_nullifier, get_hasher, hash_signal
from .identity import Identity
from .interfaces import Prover, VerificationKey, Verifier
from .merkle import MerkleProof
from .message_id import MessageIdCounter
from .registry import DeletedRecord, MembershipRegistry, MemoryRegistry
from .types import Groth16Proof, RLNFullProof, RLNPublicSignals, RLNWitness

logger = logging.getLogger(__name__)


def derive_a1(
    identity_secret: int,
    external_nullifier_value: int,
    hasher: Hasher,
    message_limit: int = 1,
    message_id: int = 0,
) -> int:
    if message_limit == 1:
        return hasher.hash([identity_secret, external_nullifier_value])
    return hasher.hash([identity_secret, external_nullifier_value, message_id])


def compute_public_signals(
    witness: RLNWitness,
    hasher: Hasher,
    field: PrimeField = BN254_FIELD,
) -> RLNPublicSignals:
    """
    Compute the circuit's public outputs from a witness, without a SNARK.

    The root is recomputed from the witness Merkle path, exactly as the
    circuit constrains it.
    """
    a1 = derive_a1(
        witness.identity_secret,
        witness.external_nullifier,
        hasher,
        witness.user_message_limit,
        witness.message_id,
    )
    commitment = hasher.hash([witness.identity_secret])
    node = hasher.hash([commitment, witness.user_message_limit])
    for sibling, direction in zip(witness.path_elements, witness.identity_path_index):
        node = hasher.hash([node, sibling] if direction == 0 else [sibling, node])
    return RLNPublicSignals(
        x=field.normalize(witness.x),
        y=field.evaluate_share(witness.identity_secret, a1, witness.x),
        nullifier=hasher.hash([a1, witness.rln_identifier]),
        root=node,
        external_nullifier=witness.external_nullifier,
        epoch=witness.epoch,
        rln_identifier=witness.rln_identifier,
    )


class RLNEngine:
    """
    One application's view of RLN.

    Args:
        rln_identifier: Application identifier
        registry: Membership registry (default: fresh MemoryRegistry)
        cache: Proof cache (default: fresh MemoryCache for rln_identifier)
        prover: Proof generation backend, required by create_proof
        verifier: Proof verification backend, required by verify_proof
        verification_key: Key passed through to the verifier
        identity: The local member, required by create_proof
        hasher: Field hasher (default: the registry's, else configured backend)
        field: Scalar field
        tree_depth: Depth for the default registry
        cache_length: Epoch window for the default cache

    Example:
        >>> engine = RLNEngine(rln_identifier=app_id, prover=prover, verifier=verifier,
        ...                    identity=Identity.generate())
        >>> engine.register(message_limit=1)
        >>> proof = engine.create_proof(epoch=1, signal="hello")
        >>> engine.verify_proof(proof, epoch=1, signal="hello")
        True
    """

    def __init__(
        self,
        rln_identifier: int,
        registry: Optional[MembershipRegistry] = None,
        cache: Optional[ProofCache] = None,
        prover: Optional[Prover] = None,
        verifier: Optional[Verifier] = None,
        verification_key: Optional[VerificationKey] = None,
        identity: Optional[Identity] = None,
        hasher: Optional[Hasher] = None,
        field: PrimeField = BN254_FIELD,
        tree_depth: int = DEFAULT_TREE_DEPTH,
        cache_length: int = DEFAULT_CACHE_LENGTH,
    ):
        if not field.is_element(rln_identifier):
            raise InvalidInputError("rln identifier must be a field element")
        if hasher is None:
            hasher = getattr(registry, "hasher", None) or get_hasher()
        self.rln_identifier = rln_identifier
        self.hasher = hasher
        self.field = field
        self.registry = registry if registry is not None else MemoryRegistry(
            tree_depth=tree_depth, hasher=hasher
        )
        self.cache = cache if cache is not None else MemoryCache(
            rln_identifier, cache_length=cache_length, field=field
        )
        self.prover = prover
        self.verifier = verifier
        self.verification_key = verification_key
        self.identity = identity
        self.message_id_counter: Optional[MessageIdCounter] = None
        if identity is not None and self.registry.is_registered(identity.commitment):
            self.message_id_counter = MessageIdCounter(
                self.registry.get_message_limit(identity.commitment)
            )

    # ========================================================================
    # DERIVATIONS
    # ========================================================================

    def derive_external_nullifier(
        self, epoch: int, rln_identifier: Optional[int] = None
    ) -> int:
        if rln_identifier is None:
            rln_identifier = self.rln_identifier
        return external_nullifier(epoch, rln_identifier, self.hasher)

    def derive_internal_nullifier(
        self, a1: int, rln_identifier: Optional[int] = None
    ) -> int:
        if rln_identifier is None:
            rln_identifier = self.rln_identifier
        return self.hasher.hash([a1, rln_identifier])

    def signal_hash(self, signal: Union[str, bytes]) -> int:
        return hash_signal(signal)

    # ========================================================================
    # WITNESS
    # ========================================================================

    def build_witness(
        self,
        identity_secret: int,
        merkle_proof: MerkleProof,
        epoch: int,
        signal_hash: int,
        rln_identifier: Optional[int] = None,
        message_limit: int = 1,
        message_id: int = 0,
    ) -> RLNWitness:
        """
        Assemble the prover input for one message.

        Raises:
            InvalidInputError: If signal_hash is zero (y would equal the
                secret), or the message id is outside [0, message_limit)
        """
        if self.field.normalize(signal_hash) == 0:
            raise InvalidInputError("signal hash must not be zero")
        if not isinstance(message_limit, int) or message_limit <= 0:
            raise InvalidInputError(f"message limit must be positive, got {message_limit}")
        if not 0 <= message_id < message_limit:
            raise InvalidInputError(
                f"message id {message_id} outside [0, {message_limit})"
            )
        if rln_identifier is None:
            rln_identifier = self.rln_identifier
        return RLNWitness(
            identity_secret=identity_secret,
            user_message_limit=message_limit,
            message_id=message_id,
            path_elements=tuple(merkle_proof.siblings),
            identity_path_index=tuple(merkle_proof.path_indices),
            x=signal_hash,
            external_nullifier=self.derive_external_nullifier(epoch, rln_identifier),
            epoch=epoch,
            rln_identifier=rln_identifier,
            root=merkle_proof.root,
        )

    # ========================================================================
    # MEMBERSHIP
    # ========================================================================

    def register(self, message_limit: int = 1) -> None:
        """Register the engine's identity in a MemoryRegistry."""
        identity = self._require_identity()
        register_member = getattr(self.registry, "register_member", None)
        if register_member is None:
            raise ConfigurationError(
                "registry does not accept direct registration; use its ledger"
            )
        register_member(identity.commitment, message_limit)
        self.message_id_counter = MessageIdCounter(message_limit)

    def slash_breached(self, evaluated: EvaluatedProof) -> DeletedRecord:
        """Slash the member whose secret a BREACH result revealed."""
        if evaluated.status is not Status.BREACH or evaluated.secret is None:
            raise InvalidInputError("only a BREACH result carries a secret")
        slash_member = getattr(self.registry, "slash_member", None)
        if slash_member is None:
            raise ConfigurationError("registry does not support direct slashing")
        return slash_member(evaluated.secret)

    # ========================================================================
    # PROOFS
    # ========================================================================

    def create_proof(self, epoch: int, signal: Union[str, bytes]) -> RLNFullProof:
        """
        Produce a full proof for `signal` in `epoch`.

        Raises:
            ProverUnavailableError: If no prover is configured
            MemberNotFoundError: If the identity is not registered
            MessageLimitExceededError: If the epoch's quota is used up
            ProofGenerationError: If the prover returns malformed data
        """
        if self.prover is None:
            raise ProverUnavailableError("Prover is not initialized")
        identity = self._require_identity()
        if not self.registry.is_registered(identity.commitment):
            raise MemberNotFoundError("User has not registered before")
        message_limit = self.registry.get_message_limit(identity.commitment)
        if self.message_id_counter is None:
            self.message_id_counter = MessageIdCounter(message_limit)

        merkle_proof = self.registry.member_merkle_proof(identity.commitment)
        message_id = self.message_id_counter.get_message_id_and_increment(epoch)
        witness = self.build_witness(
            identity.secret,
            merkle_proof,
            epoch,
            self.signal_hash(signal),
            message_limit=message_limit,
            message_id=message_id,
        )
        logger.debug("Generating proof for epoch %d, message id %d", epoch, message_id)
        snark_proof, public_signals = self.prover.generate_proof(witness)
        return self._package(snark_proof, public_signals, epoch)

    def _package(
        self, snark_proof: Groth16Proof, public_signals: Sequence[int], epoch: int
    ) -> RLNFullProof:
        if len(public_signals) != NUM_PUBLIC_SIGNALS:
            raise ProofGenerationError(
                f"prover returned {len(public_signals)} public signals, "
                f"expected {NUM_PUBLIC_SIGNALS}"
            )
        try:
            signals = public_signals_from_list(public_signals, epoch, self.rln_identifier)
        except (TypeError, ValueError) as exc:
            raise ProofGenerationError(f"malformed public signals: {exc}") from exc
        return RLNFullProof(snark_proof=snark_proof, public_signals=signals)

    def verify_public_signals(
        self,
        proof: RLNFullProof,
        expected_epoch: int,
        expected_rln_identifier: int,
        expected_signal_hash: int,
        expected_root: int,
    ) -> bool:
        """
        Check a proof's public signals against what the verifier expects.

        A proof failing this check is invalid whatever its SNARK says.
        """
        signals = proof.public_signals
        return (
            signals.epoch == expected_epoch
            and signals.rln_identifier == expected_rln_identifier
            and signals.x == expected_signal_hash
            and signals.root == expected_root
            and signals.external_nullifier
            == self.derive_external_nullifier(expected_epoch, expected_rln_identifier)
        )

    def verify_proof(
        self,
        proof: RLNFullProof,
        epoch: int,
        signal: Union[str, bytes],
        root: Optional[int] = None,
    ) -> bool:
        """
        Verify a proof for `signal` in `epoch` against the current root.

        Raises:
            VerifierUnavailableError: If no verifier is configured
        """
        if self.verifier is None:
            raise VerifierUnavailableError("Verifier is not initialized")
        expected_root = self.registry.root if root is None else root
        if not self.verify_public_signals(
            proof, epoch, self.rln_identifier, self.signal_hash(signal), expected_root
        ):
            logger.debug("Public signals mismatch for epoch %d", epoch)
            return False
        return bool(
            self.verifier.verify(
                self.verification_key,
                proof.public_signals.circuit_order(),
                proof.snark_proof,
            )
        )

    def save_proof(self, proof: RLNFullProof) -> EvaluatedProof:
        """Feed a verified proof to the cache."""
        return self.cache.add_proof(proof)

    def retrieve_secret(self, proof1: RLNFullProof, proof2: RLNFullProof) -> int:
        """
        Recover the secret behind two proofs from the same member and epoch.

        Raises:
            IdentifierMismatchError: If a proof belongs to another application
            InvalidInputError: If the proofs are not from the same epoch
                and member
            DegenerateSharesError: If both proofs have the same x
        """
        s1, s2 = proof1.public_signals, proof2.public_signals
        for signals in (s1, s2):
            if signals.rln_identifier != self.rln_identifier:
                raise IdentifierMismatchError(
                    f"proof is for RLN identifier {signals.rln_identifier}, "
                    f"not {self.rln_identifier}"
                )
        if (
            s1.epoch != s2.epoch
            or s1.rln_identifier != s2.rln_identifier
            or s1.external_nullifier != s2.external_nullifier
        ):
            raise InvalidInputError("Proofs have different external nullifiers")
        if s1.nullifier != s2.nullifier:
            raise InvalidInputError("Proofs have different internal nullifiers")
        return self.field.recover_secret(s1.x, s1.y, s2.x, s2.y)

    def _require_identity(self) -> Identity:
        if self.identity is None:
            raise ConfigurationError("engine has no identity")
        return self.identity


def public_signals_from_list(
    values: Sequence[int], epoch: int, rln_identifier: int
) -> RLNPublicSignals:
    """Map circuit-ordered public signals to RLNPublicSignals."""
    y, root, nullifier, x, ext = (int(v) for v in values)
    return RLNPublicSignals(
        x=x,
        y=y,
        nullifier=nullifier,
        root=root,
        external_nullifier=ext,
        epoch=epoch,
        rln_identifier=rln_identifier,
    )
