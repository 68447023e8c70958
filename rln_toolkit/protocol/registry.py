"""
Membership registry: who may publish, and who has been slashed.

Leaves of the membership tree are rate commitments
(Poseidon(identityCommitment, messageLimit)). Removing or slashing a member
resets its slot to the zero value; slashed leaves are also appended to a
second tree so their set can be committed to (`slashed_root`).

`MembershipRegistry` is the interface callers depend on. `MemoryRegistry`
keeps everything in process; `ledger.LedgerBackedRegistry` rebuilds the
same state from ledger events.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from .config import (
    DEFAULT_TREE_DEPTH,
    DEFAULT_ZERO_VALUE,
    MAX_TREE_DEPTH,
    MIN_TREE_DEPTH,
    SNARK_FIELD_SIZE,
)
from .exceptions import (
    AlreadyRegisteredError,
    CodecError,
    InvalidInputError,
    LeafNotFoundError,
    MemberNotFoundError,
    SlashedMemberError,
    ZeroLeafProofError,
)
from .hashing import Hasher, get_hasher, identity_commitment, rate_commitment
from .merkle import IncrementalMerkleTree, MerkleProof

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MembershipRecord:
    identity_commitment: int
    message_limit: int
    tree_index: int


@dataclass(frozen=True)
class DeletedRecord:
    """A vacated tree slot. Member fields are None for bare leaves."""

    tree_index: int
    leaf: int
    slashed: bool
    identity_commitment: Optional[int] = None
    message_limit: Optional[int] = None


def validate_tree_depth(depth: int) -> int:
    if not isinstance(depth, int) or not MIN_TREE_DEPTH <= depth <= MAX_TREE_DEPTH:
        raise InvalidInputError(
            f"The tree depth must be between {MIN_TREE_DEPTH} and {MAX_TREE_DEPTH}, "
            f"got {depth}"
        )
    return depth


def _check_field_element(value: int, name: str) -> None:
    if not isinstance(value, int) or not 0 <= value < SNARK_FIELD_SIZE:
        raise InvalidInputError(f"{name} must be a field element")


class MembershipRegistry(ABC):
    """
    Read and proof capability of a membership registry.

    Mutations depend on where membership is decided: `MemoryRegistry`
    mutates synchronously, `LedgerBackedRegistry` goes through the ledger.
    """

    @property
    @abstractmethod
    def root(self) -> int:
        ...

    @property
    @abstractmethod
    def slashed_root(self) -> int:
        ...

    @property
    @abstractmethod
    def members(self) -> List[int]:
        """Live leaves in tree order, vacated slots omitted."""

    @abstractmethod
    def merkle_proof(self, leaf: int) -> MerkleProof:
        ...

    @abstractmethod
    def is_registered(self, identity_commitment: int) -> bool:
        ...

    @abstractmethod
    def get_message_limit(self, identity_commitment: int) -> int:
        ...

    @abstractmethod
    def get_rate_commitment(self, identity_commitment: int) -> int:
        ...

    def member_merkle_proof(self, identity_commitment: int) -> MerkleProof:
        return self.merkle_proof(self.get_rate_commitment(identity_commitment))


class MemoryRegistry(MembershipRegistry):
    """
    In-process membership registry.

    Mutations are serialized by a per-instance lock; a registry has a
    single logical writer and racing inserts would corrupt leaf indices.

    Args:
        tree_depth: Depth of the membership tree (16..32)
        zero_value: Sentinel for empty slots, never a valid member
        hasher: Field hasher (defaults to the configured backend)

    Example:
        >>> registry = MemoryRegistry(tree_depth=16)
        >>> record = registry.register_member(identity_commitment=1234, message_limit=10)
        >>> registry.member_merkle_proof(1234).root == registry.root
        True
    """

    def __init__(
        self,
        tree_depth: int = DEFAULT_TREE_DEPTH,
        zero_value: int = DEFAULT_ZERO_VALUE,
        hasher: Optional[Hasher] = None,
    ):
        validate_tree_depth(tree_depth)
        _check_field_element(zero_value, "zero_value")
        self.tree_depth = tree_depth
        self.zero_value = zero_value
        self.hasher = hasher if hasher is not None else get_hasher()

        self._tree = IncrementalMerkleTree(tree_depth, zero_value, self.hasher)
        self._slashed_tree = IncrementalMerkleTree(tree_depth, zero_value, self.hasher)
        self._records: Dict[int, MembershipRecord] = {}
        self._index_to_commitment: Dict[int, int] = {}
        self._deleted: List[DeletedRecord] = []
        self._slashed_leaves: Set[int] = set()
        self._slashed_commitments: Set[int] = set()
        self._withdrawals: Set[int] = set()
        self._lock = threading.RLock()

    # ========================================================================
    # ACCESSORS
    # ========================================================================

    @property
    def root(self) -> int:
        return self._tree.root

    @property
    def slashed_root(self) -> int:
        return self._slashed_tree.root

    @property
    def leaves(self) -> Tuple[int, ...]:
        """Every slot in order, vacated slots holding the zero value."""
        return self._tree.leaves

    @property
    def members(self) -> List[int]:
        return [leaf for leaf in self._tree.leaves if leaf != self.zero_value]

    @property
    def slashed_members(self) -> List[int]:
        return list(self._slashed_tree.leaves)

    @property
    def deleted(self) -> List[DeletedRecord]:
        return list(self._deleted)

    def __len__(self) -> int:
        return len(self.members)

    def index_of(self, leaf: int) -> int:
        return self._tree.index_of(leaf)

    def is_slashed(self, leaf: int) -> bool:
        return leaf in self._slashed_leaves

    # ========================================================================
    # LEAF OPERATIONS
    # ========================================================================

    def register(self, rate_commitment: int) -> int:
        """
        Append a rate commitment to the tree.

        Returns:
            Tree index of the new leaf

        Raises:
            InvalidInputError: If the value is the zero value or not a field element
            SlashedMemberError: If the value was slashed before
            AlreadyRegisteredError: If the value is already a live leaf
        """
        with self._lock:
            return self._register_leaf(rate_commitment)

    def remove(self, index: int) -> DeletedRecord:
        with self._lock:
            return self._vacate(index, slashed=False)

    def slash(self, index: int) -> DeletedRecord:
        """Vacate a slot and bar its leaf from ever registering again."""
        with self._lock:
            return self._vacate(index, slashed=True)

    def merkle_proof(self, leaf: int) -> MerkleProof:
        """
        Build a Merkle proof for a live leaf.

        Raises:
            ZeroLeafProofError: If leaf is the zero value
            LeafNotFoundError: If leaf is not in the tree
        """
        with self._lock:
            if leaf == self.zero_value:
                raise ZeroLeafProofError("Can't generate a proof for a zero leaf")
            index = self._tree.index_of(leaf)
            if index == -1:
                raise LeafNotFoundError("The leaf does not exist")
            return self._tree.proof(index)

    # ========================================================================
    # MEMBER OPERATIONS
    # ========================================================================

    def register_member(
        self, identity_commitment: int, message_limit: int
    ) -> MembershipRecord:
        """
        Register an identity with a per-epoch message limit.

        Raises:
            InvalidInputError: If message_limit is not positive
            SlashedMemberError: If the identity was slashed before
            AlreadyRegisteredError: If the identity is already registered
        """
        if not isinstance(message_limit, int) or message_limit <= 0:
            raise InvalidInputError(f"message limit must be positive, got {message_limit}")
        _check_field_element(identity_commitment, "identity_commitment")
        with self._lock:
            if identity_commitment in self._slashed_commitments:
                raise SlashedMemberError("Can't add slashed member.")
            if identity_commitment in self._records:
                raise AlreadyRegisteredError(
                    f"Identity commitment {identity_commitment} is already registered"
                )
            leaf = rate_commitment(identity_commitment, message_limit, self.hasher)
            index = self._register_leaf(leaf)
            record = MembershipRecord(identity_commitment, message_limit, index)
            self._records[identity_commitment] = record
            self._index_to_commitment[index] = identity_commitment
            return record

    def is_registered(self, identity_commitment: int) -> bool:
        return identity_commitment in self._records

    def get_record(self, identity_commitment: int) -> MembershipRecord:
        try:
            return self._records[identity_commitment]
        except KeyError:
            raise MemberNotFoundError(
                f"Identity commitment {identity_commitment} is not registered"
            ) from None

    def get_message_limit(self, identity_commitment: int) -> int:
        return self.get_record(identity_commitment).message_limit

    def get_rate_commitment(self, identity_commitment: int) -> int:
        record = self.get_record(identity_commitment)
        return rate_commitment(identity_commitment, record.message_limit, self.hasher)

    def withdraw(self, identity_secret: int) -> MembershipRecord:
        """Start a withdrawal; the leaf stays live until released."""
        commitment = identity_commitment(identity_secret, self.hasher)
        with self._lock:
            record = self.get_record(commitment)
            self._withdrawals.add(commitment)
            return record

    def is_withdrawing(self, identity_commitment: int) -> bool:
        return identity_commitment in self._withdrawals

    def release_withdrawal(self, identity_commitment: int) -> DeletedRecord:
        with self._lock:
            if identity_commitment not in self._withdrawals:
                raise MemberNotFoundError(
                    f"No pending withdrawal for {identity_commitment}"
                )
            record = self.get_record(identity_commitment)
            deleted = self._vacate(record.tree_index, slashed=False)
            self._withdrawals.discard(identity_commitment)
            return deleted

    def slash_member(self, identity_secret: int) -> DeletedRecord:
        """Slash the member owning `identity_secret`, e.g. after a breach."""
        commitment = identity_commitment(identity_secret, self.hasher)
        with self._lock:
            record = self.get_record(commitment)
            return self._vacate(record.tree_index, slashed=True)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _register_leaf(self, leaf: int) -> int:
        _check_field_element(leaf, "rate_commitment")
        if leaf == self.zero_value:
            raise InvalidInputError("Can't add the zero value as a member.")
        if leaf in self._slashed_leaves:
            raise SlashedMemberError("Can't add slashed member.")
        if self._tree.index_of(leaf) != -1:
            raise AlreadyRegisteredError("Member already registered.")
        index = self._tree.insert(leaf)
        logger.info("Registered leaf at index %d", index)
        return index

    def _vacate(self, index: int, slashed: bool) -> DeletedRecord:
        leaf = self._tree.leaf(index)
        if leaf == self.zero_value:
            raise LeafNotFoundError(f"The leaf does not exist at index {index}")
        commitment = self._index_to_commitment.pop(index, None)
        record = self._records.pop(commitment, None) if commitment is not None else None
        if commitment is not None:
            self._withdrawals.discard(commitment)

        self._tree.delete(index)
        if slashed:
            self._slashed_leaves.add(leaf)
            self._slashed_tree.insert(leaf)
            if commitment is not None:
                self._slashed_commitments.add(commitment)

        deleted = DeletedRecord(
            tree_index=index,
            leaf=leaf,
            slashed=slashed,
            identity_commitment=commitment,
            message_limit=record.message_limit if record is not None else None,
        )
        self._deleted.append(deleted)
        logger.info("%s leaf at index %d", "Slashed" if slashed else "Removed", index)
        return deleted

    # ========================================================================
    # PERSISTENCE (JSON)
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "treeDepth": self.tree_depth,
                "zeroValue": str(self.zero_value),
                "hasher": self.hasher.name,
                "liveLeaves": [str(leaf) for leaf in self._tree.leaves],
                "slashedLeaves": [str(leaf) for leaf in self._slashed_tree.leaves],
                "members": [
                    {
                        "identityCommitment": str(r.identity_commitment),
                        "messageLimit": str(r.message_limit),
                        "index": r.tree_index,
                    }
                    for r in sorted(self._records.values(), key=lambda r: r.tree_index)
                ],
                "deleted": [
                    {
                        "index": d.tree_index,
                        "leaf": str(d.leaf),
                        "slashed": d.slashed,
                        "identityCommitment": (
                            None if d.identity_commitment is None
                            else str(d.identity_commitment)
                        ),
                        "messageLimit": (
                            None if d.message_limit is None else str(d.message_limit)
                        ),
                    }
                    for d in self._deleted
                ],
                "withdrawals": sorted(str(c) for c in self._withdrawals),
            }

    def export(self) -> str:
        """Serialize the registry to JSON with decimal-string field elements."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], hasher: Optional[Hasher] = None
    ) -> "MemoryRegistry":
        try:
            if hasher is None:
                hasher = get_hasher(data.get("hasher"))
            registry = cls(
                tree_depth=int(data["treeDepth"]),
                zero_value=int(data["zeroValue"]),
                hasher=hasher,
            )
            # Positional re-insertion, zero slots included, reproduces the root
            for leaf in data.get("liveLeaves", []):
                registry._tree.insert(int(leaf))
            for leaf in data.get("slashedLeaves", []):
                value = int(leaf)
                registry._slashed_leaves.add(value)
                registry._slashed_tree.insert(value)
            for member in data.get("members", []):
                record = MembershipRecord(
                    identity_commitment=int(member["identityCommitment"]),
                    message_limit=int(member["messageLimit"]),
                    tree_index=int(member["index"]),
                )
                registry._records[record.identity_commitment] = record
                registry._index_to_commitment[record.tree_index] = record.identity_commitment
            for entry in data.get("deleted", []):
                commitment = entry.get("identityCommitment")
                limit = entry.get("messageLimit")
                deleted = DeletedRecord(
                    tree_index=int(entry["index"]),
                    leaf=int(entry["leaf"]),
                    slashed=bool(entry["slashed"]),
                    identity_commitment=None if commitment is None else int(commitment),
                    message_limit=None if limit is None else int(limit),
                )
                registry._deleted.append(deleted)
                if deleted.slashed and deleted.identity_commitment is not None:
                    registry._slashed_commitments.add(deleted.identity_commitment)
            registry._withdrawals.update(int(c) for c in data.get("withdrawals", []))
        except (KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, InvalidInputError):
                raise
            raise CodecError(f"Invalid registry export: {exc}") from exc
        return registry

    @classmethod
    def import_(cls, text: str, hasher: Optional[Hasher] = None) -> "MemoryRegistry":
        """Rebuild a registry from `export()` output."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CodecError(f"Invalid registry export: {exc}") from exc
        if not isinstance(data, dict):
            raise CodecError("Invalid registry export: expected an object")
        return cls.from_dict(data, hasher=hasher)
