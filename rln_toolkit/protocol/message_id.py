"""Per-epoch message id allocation for a member with a message limit."""

from __future__ import annotations

import threading
from typing import Dict

from .exceptions import InvalidInputError, MessageLimitExceededError


class MessageIdCounter:
    """
    Hands out message ids 0..limit-1 for each epoch.

    A member that reuses a message id within an epoch publishes two shares
    on the same line and gets slashed, so ids are never handed out twice.

    Example:
        >>> counter = MessageIdCounter(message_limit=2)
        >>> counter.get_message_id_and_increment(epoch=7)
        0
        >>> counter.get_message_id_and_increment(epoch=7)
        1
    """

    def __init__(self, message_limit: int):
        if not isinstance(message_limit, int) or message_limit <= 0:
            raise InvalidInputError(f"message limit must be positive, got {message_limit}")
        self.message_limit = message_limit
        self._next: Dict[int, int] = {}
        self._lock = threading.Lock()

    def peek(self, epoch: int) -> int:
        return self._next.get(epoch, 0)

    def remaining(self, epoch: int) -> int:
        return self.message_limit - self.peek(epoch)

    def get_message_id_and_increment(self, epoch: int) -> int:
        """
        Raises:
            MessageLimitExceededError: If every id of the epoch is used
        """
        with self._lock:
            message_id = self._next.get(epoch, 0)
            if message_id >= self.message_limit:
                raise MessageLimitExceededError(
                    f"Message ID counter exceeded message limit {self.message_limit}"
                )
            self._next[epoch] = message_id + 1
            return message_id
