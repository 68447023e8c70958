"""
End-to-end RLN flow with the Poseidon hasher.

Members register, publish through the relay handler in the 320-byte wire
format, a spammer is caught and slashed, and a verifier restarted from
exported state keeps catching double signals.
"""
import pytest

from rln_toolkit.network.relay.client import build_request
from rln_toolkit.network.relay.constants import STATUS_ADDED, STATUS_BREACH, STATUS_DUPLICATE
from rln_toolkit.network.relay.handler import handle_relay_request_bytes
from rln_toolkit.network.relay.messages import decode_response, encode_request
from rln_toolkit.network.relay.validator import EngineRelayValidator
from rln_toolkit.protocol import (
    Identity,
    MemoryCache,
    MemoryRegistry,
    PoseidonHasher,
    RLNEngine,
    SlashedMemberError,
    WireCodec,
)
from rln_toolkit.protocol.adapters import MockProver, MockVerifier
from rln_toolkit.protocol.settings import set_hasher_type

APP_ID = 0xABCDEF


@pytest.fixture
def poseidon():
    set_hasher_type("poseidon")
    return PoseidonHasher()


@pytest.fixture
def network(poseidon):
    registry = MemoryRegistry(tree_depth=16, hasher=poseidon)
    verifier = RLNEngine(APP_ID, registry=registry, verifier=MockVerifier(), hasher=poseidon)
    return registry, verifier


def _member(registry, hasher, secret, limit):
    engine = RLNEngine(
        APP_ID,
        registry=registry,
        prover=MockProver(hasher),
        identity=Identity(secret=secret, hasher=hasher),
        hasher=hasher,
    )
    engine.register(message_limit=limit)
    return engine


def _relay(validator, engine, epoch, signal):
    proof = engine.create_proof(epoch, signal)
    blob = encode_request(build_request(proof, signal, validator.codec))
    return decode_response(handle_relay_request_bytes(blob, validator))


def test_spammer_is_caught_and_slashed(network, poseidon):
    registry, verifier = network
    honest = _member(registry, poseidon, secret=1111, limit=2)
    spammer = _member(registry, poseidon, secret=2222, limit=1)
    validator = EngineRelayValidator(verifier, on_breach=verifier.slash_breached)

    assert _relay(validator, honest, 1, b"a").status == STATUS_ADDED
    assert _relay(validator, honest, 1, b"b").status == STATUS_ADDED
    assert _relay(validator, spammer, 1, b"spam-1").status == STATUS_ADDED

    spammer.message_id_counter = None
    breach = _relay(validator, spammer, 1, b"spam-2")
    assert breach.status == STATUS_BREACH
    assert breach.secret == 2222
    assert not registry.is_registered(spammer.identity.commitment)
    assert registry.slashed_members == [registry.deleted[0].leaf]

    with pytest.raises(SlashedMemberError):
        registry.register_member(spammer.identity.commitment, 1)

    # the honest member re-proves against the new root
    assert _relay(validator, honest, 2, b"c").status == STATUS_ADDED
    assert list(validator.delivered) == [(1, b"a"), (1, b"b"), (1, b"spam-1"), (2, b"c")]


def test_wire_format_is_stable(network, poseidon):
    registry, verifier = network
    member = _member(registry, poseidon, secret=3333, limit=1)
    proof = member.create_proof(7, b"payload")
    codec = WireCodec(poseidon)
    data = codec.serialize(proof)
    assert len(data) == 320
    decoded = codec.deserialize(data)
    assert decoded == proof
    assert verifier.verify_proof(decoded, 7, b"payload")


def test_restarted_verifier_keeps_state(network, poseidon):
    registry, verifier = network
    member = _member(registry, poseidon, secret=4444, limit=1)
    first = member.create_proof(3, b"one")
    assert verifier.save_proof(first).status.value == STATUS_ADDED

    restored_registry = MemoryRegistry.import_(registry.export())
    assert restored_registry.root == registry.root
    restored = RLNEngine(
        APP_ID,
        registry=restored_registry,
        cache=MemoryCache.import_(verifier.cache.export()),
        verifier=MockVerifier(),
        hasher=poseidon,
    )
    assert restored.save_proof(first).status.value == STATUS_DUPLICATE

    member.message_id_counter = None
    second = member.create_proof(3, b"two")
    assert restored.verify_proof(second, 3, b"two")
    result = restored.save_proof(second)
    assert result.is_breach
    assert result.secret == 4444
    restored.slash_breached(result)
    assert not restored_registry.is_registered(member.identity.commitment)
    assert registry.is_registered(member.identity.commitment)
