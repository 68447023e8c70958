import pytest

from rln_toolkit.protocol.cache import MemoryCache, Status
from rln_toolkit.protocol.exceptions import CodecError, DegenerateSharesError, InvalidInputError
from rln_toolkit.protocol.field import BN254_FIELD
from rln_toolkit.protocol.types import RLNPublicSignals

APP = 77
SECRET = 123456789
A1 = 987654321
NULLIFIER = 555


def _signals(x, epoch=1, nullifier=NULLIFIER, root=1000, rln_identifier=APP, y=None):
    if y is None:
        y = BN254_FIELD.evaluate_share(SECRET, A1, x)
    return RLNPublicSignals(
        x=x,
        y=y,
        nullifier=nullifier,
        root=root,
        external_nullifier=epoch * 31,
        epoch=epoch,
        rln_identifier=rln_identifier,
    )


def test_first_proof_is_added():
    cache = MemoryCache(APP)
    result = cache.add_proof(_signals(10))
    assert result.status is Status.ADDED
    assert result.nullifier == NULLIFIER
    assert result.secret is None
    assert cache.epochs == [1]


def test_same_proof_is_duplicate():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10))
    result = cache.add_proof(_signals(10))
    assert result.status is Status.DUPLICATE
    assert len(cache.get_proofs(1, NULLIFIER)) == 1


def test_root_change_does_not_make_a_new_proof():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10, root=1))
    assert cache.add_proof(_signals(10, root=2)).status is Status.DUPLICATE


def test_second_share_reveals_secret():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10))
    result = cache.add_proof(_signals(20))
    assert result.status is Status.BREACH
    assert result.is_breach
    assert result.secret == SECRET


def test_cache_freezes_after_breach():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10))
    cache.add_proof(_signals(20))
    result = cache.add_proof(_signals(30))
    assert result.status is Status.BREACH
    assert result.secret == SECRET
    assert [p.x for p in cache.get_proofs(1, NULLIFIER)] == [10, 20]


def test_different_nullifiers_do_not_collide():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10))
    assert cache.add_proof(_signals(20, nullifier=556)).status is Status.ADDED


def test_same_nullifier_in_another_epoch_is_added():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10, epoch=1))
    assert cache.add_proof(_signals(20, epoch=2)).status is Status.ADDED


def test_foreign_application_is_invalid():
    cache = MemoryCache(APP)
    result = cache.add_proof(_signals(10, rln_identifier=APP + 1))
    assert result.status is Status.INVALID
    assert "mismatch" in result.msg
    assert len(cache) == 0


def test_same_x_different_y_is_rejected_without_storing():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10))
    with pytest.raises(DegenerateSharesError):
        cache.add_proof(_signals(10, y=42))
    assert len(cache.get_proofs(1, NULLIFIER)) == 1


def test_oldest_epoch_is_evicted():
    cache = MemoryCache(APP, cache_length=2)
    for epoch in (1, 2, 3):
        cache.add_proof(_signals(10, epoch=epoch))
    assert cache.epochs == [2, 3]
    assert cache.get_proofs(1, NULLIFIER) == []
    # An evicted epoch starts over
    assert cache.add_proof(_signals(20, epoch=1)).status is Status.ADDED
    assert cache.epochs == [3, 1]


def test_zero_cache_length_keeps_everything():
    cache = MemoryCache(APP, cache_length=0)
    for epoch in range(1, 120):
        cache.add_proof(_signals(10, epoch=epoch))
    assert len(cache) == 119


def test_negative_cache_length_rejected():
    with pytest.raises(InvalidInputError):
        MemoryCache(APP, cache_length=-1)


def test_check_proof_does_not_store():
    cache = MemoryCache(APP)
    cache.add_proof(_signals(10))
    result = cache.check_proof(_signals(20))
    assert result.status is Status.BREACH
    assert result.secret == SECRET
    assert len(cache.get_proofs(1, NULLIFIER)) == 1
    assert cache.check_proof(_signals(5, epoch=9)).status is Status.ADDED
    assert cache.epochs == [1]


def test_export_import_roundtrip():
    cache = MemoryCache(APP, cache_length=5)
    cache.add_proof(_signals(10, epoch=1))
    cache.add_proof(_signals(11, epoch=2))

    restored = MemoryCache.import_(cache.export())

    assert restored.cache_length == 5
    assert restored.epochs == [1, 2]
    assert restored.add_proof(_signals(20, epoch=1)).secret == SECRET


def test_import_rejects_garbage():
    with pytest.raises(CodecError):
        MemoryCache.import_("{")
    with pytest.raises(CodecError):
        MemoryCache.import_('{"cacheLength": 3}')
