import pytest

from rln_toolkit.protocol.exceptions import InvalidInputError, MessageLimitExceededError
from rln_toolkit.protocol.message_id import MessageIdCounter


def test_ids_are_per_epoch():
    counter = MessageIdCounter(message_limit=2)
    assert counter.get_message_id_and_increment(7) == 0
    assert counter.get_message_id_and_increment(7) == 1
    assert counter.get_message_id_and_increment(8) == 0
    assert counter.remaining(7) == 0
    assert counter.remaining(8) == 1
    assert counter.peek(9) == 0


def test_limit_exceeded():
    counter = MessageIdCounter(message_limit=1)
    counter.get_message_id_and_increment(1)
    with pytest.raises(MessageLimitExceededError):
        counter.get_message_id_and_increment(1)
    assert counter.peek(1) == 1


@pytest.mark.parametrize("limit", [0, -1, "2"])
def test_limit_must_be_positive(limit):
    with pytest.raises(InvalidInputError):
        MessageIdCounter(limit)
