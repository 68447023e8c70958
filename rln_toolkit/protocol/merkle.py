"""
Incremental Merkle tree over field elements.

The tree is stored as a flat arena: one list of node hashes per level,
addressed by index (parent of i is i >> 1, sibling is i ^ 1). Slots that
were never filled hash as the precomputed zero subtree of their level, so
insert and update touch exactly `depth` nodes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import MAX_TREE_DEPTH
from .exceptions import InvalidInputError, LeafNotFoundError
from .hashing import Hasher, get_hasher


@dataclass(frozen=True)
class MerkleProof:
    """
    Authentication path of one leaf.

    Attributes:
        root: Tree root the path leads to
        leaf: Leaf value
        leaf_index: Position of the leaf
        siblings: Sibling hash at each level, leaf level first
        path_indices: 0 if the path node is a left child, 1 if right
    """

    root: int
    leaf: int
    leaf_index: int
    siblings: Tuple[int, ...]
    path_indices: Tuple[int, ...]

    @property
    def depth(self) -> int:
        return len(self.siblings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "leaf": str(self.leaf),
            "leafIndex": self.leaf_index,
            "siblings": [str(s) for s in self.siblings],
            "pathIndices": list(self.path_indices),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerkleProof":
        return cls(
            root=int(data["root"]),
            leaf=int(data["leaf"]),
            leaf_index=int(data["leafIndex"]),
            siblings=tuple(int(s) for s in data["siblings"]),
            path_indices=tuple(int(i) for i in data["pathIndices"]),
        )


def verify_merkle_proof(proof: MerkleProof, hasher: Hasher) -> bool:
    """
    Recompute the root from a leaf and its path.

    Args:
        proof: Proof to check
        hasher: Hasher the tree was built with

    Returns:
        True if the path leads to proof.root
    """
    if len(proof.siblings) != len(proof.path_indices):
        return False
    node = proof.leaf
    for sibling, direction in zip(proof.siblings, proof.path_indices):
        if direction not in (0, 1):
            return False
        if direction == 0:
            node = hasher.hash([node, sibling])
        else:
            node = hasher.hash([sibling, node])
    return node == proof.root


class IncrementalMerkleTree:
    """
    Append-only binary Merkle tree with in-place leaf updates.

    Args:
        depth: Number of levels above the leaves (1..32)
        zero_value: Value of an empty leaf
        hasher: Two-to-one field hasher (defaults to the configured backend)

    Example:
        >>> tree = IncrementalMerkleTree(16, hasher=Sha256FieldHasher())
        >>> index = tree.insert(42)
        >>> verify_merkle_proof(tree.proof(index), tree.hasher)
        True
    """

    def __init__(
        self,
        depth: int,
        zero_value: int = 0,
        hasher: Optional[Hasher] = None,
    ):
        if not 1 <= depth <= MAX_TREE_DEPTH:
            raise InvalidInputError(
                f"tree depth must be in [1, {MAX_TREE_DEPTH}], got {depth}"
            )
        self.depth = depth
        self.zero_value = zero_value
        self.hasher = hasher if hasher is not None else get_hasher()

        self._zeroes: List[int] = [zero_value]
        for _ in range(depth):
            z = self._zeroes[-1]
            self._zeroes.append(self.hasher.hash([z, z]))
        self._nodes: List[List[int]] = [[] for _ in range(depth + 1)]
        # non-zero leaf -> slot
        self._positions: Dict[int, int] = {}

    @property
    def capacity(self) -> int:
        return 1 << self.depth

    @property
    def root(self) -> int:
        top = self._nodes[self.depth]
        return top[0] if top else self._zeroes[self.depth]

    @property
    def leaves(self) -> Tuple[int, ...]:
        return tuple(self._nodes[0])

    @property
    def zeroes(self) -> Tuple[int, ...]:
        return tuple(self._zeroes)

    def __len__(self) -> int:
        return len(self._nodes[0])

    def leaf(self, index: int) -> int:
        self._check_index(index)
        return self._nodes[0][index]

    def index_of(self, leaf: int) -> int:
        """Slot holding `leaf`, or -1. The zero value is never indexed."""
        return self._positions.get(leaf, -1)

    def insert(self, leaf: int) -> int:
        """Append a leaf and return its index."""
        index = len(self._nodes[0])
        if index >= self.capacity:
            raise InvalidInputError("tree is full")
        self._nodes[0].append(leaf)
        if leaf != self.zero_value:
            self._positions.setdefault(leaf, index)
        self._update_path(index)
        return index

    def update(self, index: int, leaf: int) -> None:
        self._check_index(index)
        old = self._nodes[0][index]
        if self._positions.get(old) == index:
            del self._positions[old]
        self._nodes[0][index] = leaf
        if leaf != self.zero_value:
            self._positions.setdefault(leaf, index)
        self._update_path(index)

    def delete(self, index: int) -> None:
        """Reset a leaf to the zero value; the slot is never reused."""
        self.update(index, self.zero_value)

    def proof(self, index: int) -> MerkleProof:
        """
        Build the authentication path for the leaf at `index`.

        Raises:
            LeafNotFoundError: If index is outside the filled leaves
        """
        self._check_index(index)
        siblings = []
        path_indices = []
        position = index
        for level in range(self.depth):
            level_nodes = self._nodes[level]
            sibling_index = position ^ 1
            if sibling_index < len(level_nodes):
                siblings.append(level_nodes[sibling_index])
            else:
                siblings.append(self._zeroes[level])
            path_indices.append(position & 1)
            position >>= 1
        return MerkleProof(
            root=self.root,
            leaf=self._nodes[0][index],
            leaf_index=index,
            siblings=tuple(siblings),
            path_indices=tuple(path_indices),
        )

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._nodes[0]):
            raise LeafNotFoundError(f"The leaf does not exist at index {index}")

    def _update_path(self, index: int) -> None:
        node = self._nodes[0][index]
        for level in range(self.depth):
            level_nodes = self._nodes[level]
            if index & 1:
                node = self.hasher.hash([level_nodes[index - 1], node])
            else:
                if index + 1 < len(level_nodes):
                    right = level_nodes[index + 1]
                else:
                    right = self._zeroes[level]
                node = self.hasher.hash([node, right])
            index >>= 1
            parents = self._nodes[level + 1]
            if index < len(parents):
                parents[index] = node
            else:
                parents.append(node)


def build_tree(
    leaves: Sequence[int],
    depth: int,
    zero_value: int = 0,
    hasher: Optional[Hasher] = None,
) -> IncrementalMerkleTree:
    """Insert `leaves` in order into a fresh tree."""
    tree = IncrementalMerkleTree(depth, zero_value, hasher)
    for leaf in leaves:
        tree.insert(leaf)
    return tree
