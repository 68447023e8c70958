"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from rln_toolkit.protocol import settings
from rln_toolkit.protocol.adapters.mock_adapter import MockProver, MockVerifier
from rln_toolkit.protocol.engine import RLNEngine
from rln_toolkit.protocol.hashing import Sha256FieldHasher
from rln_toolkit.protocol.identity import Identity
from rln_toolkit.protocol.registry import MemoryRegistry

APP_ID = 1234567890123456789


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "network: opt-in tests that open real libp2p connections"
    )


@pytest.fixture(autouse=True)
def _reset_hasher_override():
    yield
    settings.set_hasher_type(None)


@pytest.fixture
def hasher():
    return Sha256FieldHasher()


@pytest.fixture
def app_id():
    return APP_ID


@pytest.fixture
def registry(hasher):
    return MemoryRegistry(tree_depth=16, hasher=hasher)


@pytest.fixture
def member(hasher):
    return Identity(secret=424242, hasher=hasher)


@pytest.fixture
def prover_engine(app_id, registry, member, hasher):
    """A registered member with a limit of one message per epoch."""
    engine = RLNEngine(
        rln_identifier=app_id,
        registry=registry,
        prover=MockProver(hasher),
        identity=member,
        hasher=hasher,
    )
    engine.register(message_limit=1)
    return engine


@pytest.fixture
def verifier_engine(app_id, registry, hasher):
    return RLNEngine(
        rln_identifier=app_id,
        registry=registry,
        verifier=MockVerifier(),
        hasher=hasher,
    )
