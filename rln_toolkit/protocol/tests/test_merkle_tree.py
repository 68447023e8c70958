import pytest

from rln_toolkit.protocol.exceptions import InvalidInputError, LeafNotFoundError
from rln_toolkit.protocol.hashing import Sha256FieldHasher
from rln_toolkit.protocol.merkle import (
    IncrementalMerkleTree,
    MerkleProof,
    build_tree,
    verify_merkle_proof,
)

H = Sha256FieldHasher()


def test_empty_root_is_zero_subtree():
    tree = IncrementalMerkleTree(4, zero_value=0, hasher=H)
    z = 0
    for _ in range(4):
        z = H.hash([z, z])
    assert tree.root == z
    assert tree.zeroes[-1] == z
    assert len(tree) == 0


def test_depth_one_roots():
    tree = IncrementalMerkleTree(1, hasher=H)
    tree.insert(10)
    assert tree.root == H.hash([10, 0])
    tree.insert(20)
    assert tree.root == H.hash([10, 20])


def test_depth_two_root_matches_manual_hashing():
    tree = build_tree([1, 2, 3], depth=2, hasher=H)
    expected = H.hash([H.hash([1, 2]), H.hash([3, 0])])
    assert tree.root == expected


def test_insert_returns_sequential_indices():
    tree = IncrementalMerkleTree(3, hasher=H)
    assert [tree.insert(v) for v in (5, 6, 7)] == [0, 1, 2]
    assert tree.leaves == (5, 6, 7)
    assert tree.index_of(6) == 1
    assert tree.index_of(99) == -1


def test_full_tree_rejects_insert():
    tree = IncrementalMerkleTree(1, hasher=H)
    tree.insert(1)
    tree.insert(2)
    with pytest.raises(InvalidInputError):
        tree.insert(3)


@pytest.mark.parametrize("depth", [0, 33])
def test_depth_bounds(depth):
    with pytest.raises(InvalidInputError):
        IncrementalMerkleTree(depth, hasher=H)


def test_proofs_verify_for_every_leaf():
    tree = build_tree([11, 22, 33, 44, 55], depth=4, hasher=H)
    for index in range(5):
        proof = tree.proof(index)
        assert proof.depth == 4
        assert proof.leaf == tree.leaves[index]
        assert proof.root == tree.root
        assert verify_merkle_proof(proof, H)


def test_path_indices_follow_leaf_index_bits():
    tree = build_tree(list(range(1, 7)), depth=3, hasher=H)
    assert tree.proof(5).path_indices == (1, 0, 1)


def test_tampered_proof_fails():
    tree = build_tree([11, 22, 33], depth=4, hasher=H)
    proof = tree.proof(1)
    forged = MerkleProof(
        root=proof.root,
        leaf=proof.leaf + 1,
        leaf_index=proof.leaf_index,
        siblings=proof.siblings,
        path_indices=proof.path_indices,
    )
    assert not verify_merkle_proof(forged, H)


def test_delete_resets_leaf_to_zero_value():
    tree = build_tree([11, 22, 33], depth=4, zero_value=7, hasher=H)
    tree.delete(1)
    assert tree.leaves == (11, 7, 33)
    assert tree.root == build_tree([11, 7, 33], depth=4, zero_value=7, hasher=H).root


def test_update_changes_root():
    tree = build_tree([11, 22], depth=4, hasher=H)
    before = tree.root
    tree.update(0, 99)
    assert tree.root != before
    assert tree.root == build_tree([99, 22], depth=4, hasher=H).root


def test_proof_outside_filled_leaves():
    tree = build_tree([1], depth=4, hasher=H)
    with pytest.raises(LeafNotFoundError):
        tree.proof(1)
    with pytest.raises(LeafNotFoundError):
        tree.update(-1, 3)


def test_proof_dict_roundtrip():
    proof = build_tree([1, 2, 3], depth=4, hasher=H).proof(2)
    data = proof.to_dict()
    assert data["leafIndex"] == 2
    assert MerkleProof.from_dict(data) == proof


def test_index_of_follows_updates_and_deletes():
    tree = build_tree([11, 22, 33], depth=4, zero_value=7, hasher=H)
    tree.update(0, 44)
    assert tree.index_of(11) == -1
    assert tree.index_of(44) == 0
    tree.delete(1)
    assert tree.index_of(22) == -1
    assert tree.index_of(7) == -1
    assert tree.insert(22) == 3
    assert tree.index_of(22) == 3


def test_leaf_reads_one_slot():
    tree = build_tree([11, 22], depth=4, hasher=H)
    assert tree.leaf(1) == 22
    with pytest.raises(LeafNotFoundError):
        tree.leaf(2)
