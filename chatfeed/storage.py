import logging
from datetime import datetime
from typing import Iterator, Optional

from chatfeed.clock import Clock
from chatfeed.errors import DuplicateMessageError, MessageNotFoundError, StatusRegressionError
from chatfeed.schemas import Message, MessageSender, MessageStatus

logger = logging.getLogger(__name__)


class MessageLog:
    """
    Ordered, append-only, in-memory message store.

    Append order is the sequence order used for pagination. Records are never
    removed; the only in-place change is a status/updated_at replacement.
    The log never publishes events, callers notify the broker themselves.
    """

    def __init__(self):
        self._messages: list[Message] = []
        self._positions: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._positions

    def next_id(self) -> str:
        """Identity for the next user-originated message."""
        return str(len(self._messages) + 1)

    def append(self, message: Message) -> str:
        """
        Insert a message at the tail of the log.

        Returns:
            The id of the appended message

        Raises:
            DuplicateMessageError: if the id is already in the log
        """
        if message.id in self._positions:
            raise DuplicateMessageError(f"Message id already in log: {message.id}")
        self._positions[message.id] = len(self._messages)
        self._messages.append(message)
        logger.debug(f"Appended message {message.id} at position {len(self._messages) - 1}")
        return message.id

    def find_index(self, message_id: Optional[str]) -> int:
        """Position of `message_id` in the log, or -1 when absent."""
        if message_id is None:
            return -1
        return self._positions.get(message_id, -1)

    def get(self, message_id: str) -> Optional[Message]:
        index = self.find_index(message_id)
        return self._messages[index] if index >= 0 else None

    def bounds(self, after_id: Optional[str] = None, before_id: Optional[str] = None) -> tuple[int, int]:
        """
        Half-open position range [lo, hi) strictly between the two cursors.

        Unknown or missing cursors collapse to the weakest bound: `after`
        becomes the head of the log and `before` becomes the tail.
        """
        after_index = self.find_index(after_id)
        before_index = self.find_index(before_id)
        if before_index < 0:
            before_index = len(self._messages)
        lo = after_index + 1
        return lo, max(lo, before_index)

    def slice(self, after_id: Optional[str] = None, before_id: Optional[str] = None) -> list[Message]:
        """Records strictly after `after_id` and strictly before `before_id`."""
        lo, hi = self.bounds(after_id, before_id)
        return self._messages[lo:hi]

    def update_status(self, message_id: str, status: MessageStatus, updated_at: datetime) -> Message:
        """
        Replace the status and timestamp of a stored message.

        Returns:
            The new snapshot of the message

        Raises:
            MessageNotFoundError: if the id is not in the log
            StatusRegressionError: if the status would move backwards or the
                timestamp would not increase
        """
        index = self.find_index(message_id)
        if index < 0:
            raise MessageNotFoundError(f"Message not found: {message_id}")

        current = self._messages[index]
        if status.rank < current.status.rank:
            raise StatusRegressionError(
                f"Message {message_id} cannot move from {current.status.value} to {status.value}"
            )
        if updated_at <= current.updated_at:
            raise StatusRegressionError(
                f"Message {message_id} updated_at must increase "
                f"({updated_at.isoformat()} <= {current.updated_at.isoformat()})"
            )

        updated = current.model_copy(update={"status": status, "updated_at": updated_at})
        self._messages[index] = updated
        logger.debug(f"Message {message_id} status {current.status.value} -> {status.value}")
        return updated


def seed_messages(log: MessageLog, count: int, clock: Clock) -> None:
    """
    Populate the log with `count` already-read messages, ids "0".."count-1".
    Odd positions are Admin messages, even positions Customer messages.
    """
    now = clock.now()
    for index in range(count):
        log.append(
            Message(
                id=str(index),
                text=f"Message number {index}",
                sender=MessageSender.ADMIN if index % 2 else MessageSender.CUSTOMER,
                status=MessageStatus.READ,
                updated_at=now,
            )
        )
    logger.info(f"Seeded message log with {count} messages")
