"""
Ledger-backed membership.

The ledger (an on-chain RLN contract in production) decides membership.
`LedgerBackedRegistry` forwards mutations to it and rebuilds the Merkle
tree by replaying its event log into a local `MemoryRegistry` mirror.
`InMemoryLedger` is a process-local ledger with the same event semantics,
used by tests and demos.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import trio

from .config import DEFAULT_LEDGER_TIMEOUT, DEFAULT_TREE_DEPTH, DEFAULT_ZERO_VALUE
from .exceptions import LedgerError, MemberNotFoundError, RLNError
from .hashing import Hasher, get_hasher, identity_commitment
from .interfaces import (
    MEMBER_REGISTERED,
    MEMBER_SLASHED,
    MEMBER_WITHDRAWN,
    Ledger,
    LedgerEvent,
    LedgerMember,
)
from .merkle import MerkleProof
from .registry import MembershipRegistry, MemoryRegistry

logger = logging.getLogger(__name__)


class InMemoryLedger:
    """
    Process-local ledger.

    Each mutation is its own block. `withdraw` emits MemberWithdrawn and
    takes the member out of the tree; `release` only settles the pending
    withdrawal. Slashed commitments can never register again.
    """

    def __init__(self) -> None:
        self._members: Dict[int, LedgerMember] = {}
        self._slashed: set = set()
        self._events: List[LedgerEvent] = []
        self._next_index = 0
        self.block_number = 0
        self.rewards: Dict[str, int] = {}

    @property
    def events(self) -> List[LedgerEvent]:
        return list(self._events)

    async def is_registered(self, identity_commitment: int) -> bool:
        await trio.lowlevel.checkpoint()
        member = self._members.get(identity_commitment)
        return member is not None and not member.withdrawing

    async def get_member(self, identity_commitment: int) -> LedgerMember:
        await trio.lowlevel.checkpoint()
        try:
            return self._members[identity_commitment]
        except KeyError:
            raise LedgerError(f"unknown member {identity_commitment}") from None

    async def register(self, identity_commitment: int, message_limit: int) -> Any:
        await trio.lowlevel.checkpoint()
        if identity_commitment in self._slashed:
            raise LedgerError("member was slashed")
        if identity_commitment in self._members:
            raise LedgerError("member already registered")
        if message_limit <= 0:
            raise LedgerError("message limit must be positive")
        index = self._next_index
        self._next_index += 1
        self._members[identity_commitment] = LedgerMember(
            identity_commitment=identity_commitment,
            message_limit=message_limit,
            index=index,
        )
        return self._emit(
            MEMBER_REGISTERED,
            index,
            identity_commitment=identity_commitment,
            message_limit=message_limit,
        )

    async def withdraw(self, identity_commitment: int) -> Any:
        member = await self.get_member(identity_commitment)
        if member.withdrawing:
            raise LedgerError("withdrawal already pending")
        self._members[identity_commitment] = LedgerMember(
            identity_commitment=member.identity_commitment,
            message_limit=member.message_limit,
            index=member.index,
            withdrawing=True,
        )
        return self._emit(MEMBER_WITHDRAWN, member.index)

    async def release(self, identity_commitment: int) -> Any:
        member = await self.get_member(identity_commitment)
        if not member.withdrawing:
            raise LedgerError("no pending withdrawal")
        del self._members[identity_commitment]
        self.block_number += 1
        return {"block_number": self.block_number, "released": member.index}

    async def slash(self, identity_commitment: int, receiver: str) -> Any:
        member = await self.get_member(identity_commitment)
        if member.withdrawing:
            raise LedgerError("member already withdrawn")
        del self._members[identity_commitment]
        self._slashed.add(identity_commitment)
        self.rewards[receiver] = self.rewards.get(receiver, 0) + member.message_limit
        return self._emit(MEMBER_SLASHED, member.index, slasher=receiver)

    async def get_logs(self, from_block: int = 0) -> List[LedgerEvent]:
        await trio.lowlevel.checkpoint()
        return [e for e in self._events if e.block_number >= from_block]

    def _emit(self, name: str, index: int, **fields: Any) -> Dict[str, int]:
        self.block_number += 1
        self._events.append(
            LedgerEvent(name=name, index=index, block_number=self.block_number, **fields)
        )
        return {"block_number": self.block_number, "index": index}


class LedgerBackedRegistry(MembershipRegistry):
    """
    Registry whose state is the ledger's event log.

    Reads come from the local mirror, which is only as fresh as the last
    `sync()`. Every ledger call is bounded by `timeout` seconds.

    Example:
        >>> registry = LedgerBackedRegistry(InMemoryLedger(), tree_depth=16)
        >>> await registry.register(commitment, message_limit=2)
        >>> await registry.sync()
        >>> registry.is_registered(commitment)
        True
    """

    def __init__(
        self,
        ledger: Ledger,
        tree_depth: int = DEFAULT_TREE_DEPTH,
        zero_value: int = DEFAULT_ZERO_VALUE,
        hasher: Optional[Hasher] = None,
        timeout: float = DEFAULT_LEDGER_TIMEOUT,
    ):
        self.ledger = ledger
        self.hasher = hasher if hasher is not None else get_hasher()
        self.timeout = timeout
        self._mirror = MemoryRegistry(tree_depth, zero_value, self.hasher)
        self._cursor_block = 0
        self._cursor_offset = 0

    @property
    def mirror(self) -> MemoryRegistry:
        return self._mirror

    # ========================================================================
    # READS (local mirror)
    # ========================================================================

    @property
    def root(self) -> int:
        return self._mirror.root

    @property
    def slashed_root(self) -> int:
        return self._mirror.slashed_root

    @property
    def members(self) -> List[int]:
        return self._mirror.members

    def merkle_proof(self, leaf: int) -> MerkleProof:
        return self._mirror.merkle_proof(leaf)

    def is_registered(self, identity_commitment: int) -> bool:
        return self._mirror.is_registered(identity_commitment)

    def get_message_limit(self, identity_commitment: int) -> int:
        return self._mirror.get_message_limit(identity_commitment)

    def get_rate_commitment(self, identity_commitment: int) -> int:
        return self._mirror.get_rate_commitment(identity_commitment)

    # ========================================================================
    # SYNC
    # ========================================================================

    async def sync(self) -> int:
        """
        Apply ledger events not seen yet.

        The cursor is the last block touched plus the number of its events
        already applied, since one block can carry several events. Logs
        are re-read from that block and its applied prefix is skipped.

        Returns:
            Number of events applied

        Raises:
            LedgerError: If the ledger fails, times out, or its log does not
                replay cleanly
        """
        events = await self._call(self.ledger.get_logs(self._cursor_block))
        skip = self._cursor_offset
        applied = 0
        for event in events:
            if event.block_number < self._cursor_block:
                continue
            if event.block_number == self._cursor_block and skip:
                skip -= 1
                continue
            self._apply(event)
            if event.block_number != self._cursor_block:
                self._cursor_block = event.block_number
                self._cursor_offset = 0
            self._cursor_offset += 1
            applied += 1
        if applied:
            logger.info("Applied %d ledger events, root is now %d", applied, self.root)
        return applied

    def _apply(self, event: LedgerEvent) -> None:
        try:
            if event.name == MEMBER_REGISTERED:
                if event.identity_commitment is None or event.message_limit is None:
                    raise LedgerError("MemberRegistered event without member fields")
                record = self._mirror.register_member(
                    event.identity_commitment, event.message_limit
                )
                if record.tree_index != event.index:
                    raise LedgerError(
                        f"ledger index {event.index} does not match tree index "
                        f"{record.tree_index}"
                    )
            elif event.name == MEMBER_WITHDRAWN:
                self._mirror.remove(event.index)
            elif event.name == MEMBER_SLASHED:
                self._mirror.slash(event.index)
            else:
                logger.warning("Ignoring unknown ledger event %s", event.name)
        except LedgerError:
            raise
        except RLNError as e:
            raise LedgerError(f"cannot apply {event.name}({event.index}): {e}") from e

    # ========================================================================
    # MUTATIONS (through the ledger)
    # ========================================================================

    async def register(self, identity_commitment: int, message_limit: int) -> Any:
        receipt = await self._call(self.ledger.register(identity_commitment, message_limit))
        await self.sync()
        return receipt

    async def withdraw(self, identity_secret: int) -> Any:
        commitment = identity_commitment(identity_secret, self.hasher)
        self._require_member(commitment)
        receipt = await self._call(self.ledger.withdraw(commitment))
        await self.sync()
        return receipt

    async def release(self, identity_commitment: int) -> Any:
        return await self._call(self.ledger.release(identity_commitment))

    async def slash(self, identity_secret: int, receiver: str) -> Any:
        """Slash the member owning a secret recovered from a breach."""
        commitment = identity_commitment(identity_secret, self.hasher)
        self._require_member(commitment)
        receipt = await self._call(self.ledger.slash(commitment, receiver))
        await self.sync()
        return receipt

    def _require_member(self, commitment: int) -> None:
        if not self._mirror.is_registered(commitment):
            raise MemberNotFoundError(f"Identity commitment {commitment} is not registered")

    async def _call(self, awaitable: Any) -> Any:
        try:
            with trio.fail_after(self.timeout):
                return await awaitable
        except trio.TooSlowError as e:
            raise LedgerError(f"ledger call timed out after {self.timeout}s") from e
        except RLNError:
            raise
        except Exception as e:
            raise LedgerError(f"ledger call failed: {e}") from e
