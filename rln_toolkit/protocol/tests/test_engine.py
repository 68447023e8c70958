import pytest

from rln_toolkit.protocol.adapters.mock_adapter import MockProver, MockVerifier
from rln_toolkit.protocol.cache import EvaluatedProof, Status
from rln_toolkit.protocol.config import SNARK_FIELD_SIZE
from rln_toolkit.protocol.engine import RLNEngine, compute_public_signals, derive_a1
from rln_toolkit.protocol.exceptions import (
    ConfigurationError,
    IdentifierMismatchError,
    InvalidInputError,
    MemberNotFoundError,
    MessageLimitExceededError,
    ProofGenerationError,
    ProverUnavailableError,
    VerifierUnavailableError,
)
from rln_toolkit.protocol.hashing import external_nullifier
from rln_toolkit.protocol.identity import Identity


class ShortProver(MockProver):
    def generate_proof(self, witness):
        proof, signals = super().generate_proof(witness)
        return proof, signals[:4]


def test_proof_verifies(prover_engine, verifier_engine):
    proof = prover_engine.create_proof(epoch=1, signal="hello")
    assert proof.epoch == 1
    assert proof.rln_identifier == prover_engine.rln_identifier
    assert verifier_engine.verify_proof(proof, epoch=1, signal="hello")
    assert verifier_engine.verifier.calls == 1


def test_wrong_signal_or_epoch_rejected_before_snark(prover_engine, verifier_engine):
    proof = prover_engine.create_proof(epoch=1, signal="hello")
    assert not verifier_engine.verify_proof(proof, epoch=1, signal="other")
    assert not verifier_engine.verify_proof(proof, epoch=2, signal="hello")
    assert verifier_engine.verifier.calls == 0


def test_stale_root_rejected_unless_given(prover_engine, verifier_engine, registry, hasher):
    proof = prover_engine.create_proof(epoch=1, signal="hello")
    old_root = registry.root
    registry.register_member(Identity(secret=7, hasher=hasher).commitment, 1)
    assert registry.root != old_root
    assert not verifier_engine.verify_proof(proof, epoch=1, signal="hello")
    assert verifier_engine.verify_proof(proof, epoch=1, signal="hello", root=old_root)


def test_tampered_snark_rejected(prover_engine, verifier_engine):
    proof = prover_engine.create_proof(epoch=1, signal="hello")
    other = prover_engine.create_proof(epoch=2, signal="hello")
    forged = type(proof)(snark_proof=other.snark_proof, public_signals=proof.public_signals)
    assert not verifier_engine.verify_proof(forged, epoch=1, signal="hello")


def test_public_signals_match_registry(prover_engine, registry, member):
    proof = prover_engine.create_proof(epoch=5, signal=b"raw bytes")
    signals = proof.public_signals
    assert signals.root == registry.root
    assert signals.external_nullifier == external_nullifier(
        5, prover_engine.rln_identifier, prover_engine.hasher
    )
    a1 = derive_a1(member.secret, signals.external_nullifier, prover_engine.hasher)
    assert signals.nullifier == prover_engine.derive_internal_nullifier(a1)
    assert signals.y == (a1 * signals.x + member.secret) % SNARK_FIELD_SIZE


def test_limit_one_allows_one_message_per_epoch(prover_engine):
    prover_engine.create_proof(epoch=1, signal="first")
    with pytest.raises(MessageLimitExceededError):
        prover_engine.create_proof(epoch=1, signal="second")
    prover_engine.create_proof(epoch=2, signal="second")


def test_limit_two_uses_distinct_lines(app_id, registry, hasher, verifier_engine):
    engine = RLNEngine(
        rln_identifier=app_id,
        registry=registry,
        prover=MockProver(hasher),
        identity=Identity(secret=99, hasher=hasher),
        hasher=hasher,
    )
    engine.register(message_limit=2)
    first = engine.create_proof(epoch=3, signal="a")
    second = engine.create_proof(epoch=3, signal="b")
    assert first.public_signals.nullifier != second.public_signals.nullifier
    for proof, signal in ((first, "a"), (second, "b")):
        assert verifier_engine.verify_proof(proof, epoch=3, signal=signal)
        assert verifier_engine.save_proof(proof).status is Status.ADDED
    with pytest.raises(MessageLimitExceededError):
        engine.create_proof(epoch=3, signal="c")


def test_message_id_enters_a1_only_above_limit_one(hasher):
    assert derive_a1(5, 6, hasher, 1, 0) == derive_a1(5, 6, hasher, 1, 3)
    assert derive_a1(5, 6, hasher, 2, 0) != derive_a1(5, 6, hasher, 2, 1)
    assert derive_a1(5, 6, hasher, 1, 0) == hasher.hash([5, 6])


def test_double_signal_breach_and_slash(prover_engine, verifier_engine, registry, member):
    first = prover_engine.create_proof(epoch=1, signal="one")
    prover_engine.message_id_counter = None
    second = prover_engine.create_proof(epoch=1, signal="two")

    assert verifier_engine.save_proof(first).status is Status.ADDED
    assert verifier_engine.save_proof(first).status is Status.DUPLICATE
    result = verifier_engine.save_proof(second)
    assert result.status is Status.BREACH
    assert result.secret == member.secret
    assert verifier_engine.retrieve_secret(first, second) == member.secret

    deleted = verifier_engine.slash_breached(result)
    assert deleted.slashed
    assert deleted.identity_commitment == member.commitment
    assert not registry.is_registered(member.commitment)
    with pytest.raises(MemberNotFoundError):
        prover_engine.create_proof(epoch=2, signal="again")


def test_retrieve_secret_needs_matching_nullifiers(prover_engine, verifier_engine):
    first = prover_engine.create_proof(epoch=1, signal="one")
    other_epoch = prover_engine.create_proof(epoch=2, signal="two")
    with pytest.raises(InvalidInputError):
        verifier_engine.retrieve_secret(first, other_epoch)


def test_retrieve_secret_rejects_foreign_application(
    app_id, registry, hasher, member, prover_engine
):
    foreign = RLNEngine(app_id + 1, registry=registry, verifier=MockVerifier(), hasher=hasher)
    first = prover_engine.create_proof(epoch=1, signal="one")
    prover_engine.message_id_counter = None
    second = prover_engine.create_proof(epoch=1, signal="two")
    with pytest.raises(IdentifierMismatchError):
        foreign.retrieve_secret(first, second)


def test_slash_breached_requires_breach(verifier_engine):
    with pytest.raises(InvalidInputError):
        verifier_engine.slash_breached(EvaluatedProof(Status.ADDED, nullifier=1))


def test_missing_collaborators(app_id, registry, hasher, member, prover_engine):
    no_prover = RLNEngine(app_id, registry=registry, identity=member, hasher=hasher)
    with pytest.raises(ProverUnavailableError):
        no_prover.create_proof(epoch=1, signal="x")

    no_identity = RLNEngine(app_id, registry=registry, prover=MockProver(hasher), hasher=hasher)
    with pytest.raises(ConfigurationError):
        no_identity.create_proof(epoch=1, signal="x")

    proof = prover_engine.create_proof(epoch=1, signal="x")
    with pytest.raises(VerifierUnavailableError):
        no_identity.verify_proof(proof, epoch=1, signal="x")


def test_unregistered_identity(app_id, registry, hasher):
    engine = RLNEngine(
        app_id,
        registry=registry,
        prover=MockProver(hasher),
        identity=Identity(secret=5, hasher=hasher),
        hasher=hasher,
    )
    with pytest.raises(MemberNotFoundError):
        engine.create_proof(epoch=1, signal="x")


def test_counter_restored_for_registered_identity(app_id, registry, hasher, member, prover_engine):
    engine = RLNEngine(app_id, registry=registry, identity=member, hasher=hasher)
    assert engine.message_id_counter is not None
    assert engine.message_id_counter.message_limit == 1


def test_malformed_prover_output(app_id, registry, hasher, member):
    engine = RLNEngine(
        app_id, registry=registry, prover=ShortProver(hasher), identity=member, hasher=hasher
    )
    engine.register(message_limit=1)
    with pytest.raises(ProofGenerationError):
        engine.create_proof(epoch=1, signal="x")


def test_build_witness_checks(prover_engine, registry, member):
    merkle_proof = registry.member_merkle_proof(member.commitment)
    with pytest.raises(InvalidInputError):
        prover_engine.build_witness(member.secret, merkle_proof, 1, 0)
    with pytest.raises(InvalidInputError):
        prover_engine.build_witness(member.secret, merkle_proof, 1, SNARK_FIELD_SIZE)
    with pytest.raises(InvalidInputError):
        prover_engine.build_witness(member.secret, merkle_proof, 1, 5, message_limit=2, message_id=2)

    witness = prover_engine.build_witness(member.secret, merkle_proof, 1, 5)
    signals = compute_public_signals(witness, prover_engine.hasher)
    assert signals.root == registry.root
    assert signals.x == 5


def test_rln_identifier_must_be_field_element(hasher):
    with pytest.raises(InvalidInputError):
        RLNEngine(SNARK_FIELD_SIZE, hasher=hasher)


def test_default_registry_uses_engine_hasher(hasher):
    engine = RLNEngine(1, hasher=hasher, tree_depth=16)
    assert engine.registry.hasher is hasher
    assert engine.cache.rln_identifier == 1
