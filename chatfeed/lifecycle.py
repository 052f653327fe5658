"""
Timed delivery-status simulation.

A newly sent message is driven Sending -> Sent after `sent_delay` seconds and
Sent -> Read after a further `read_delay` seconds. Every step updates the log
in place with a fresh timestamp and publishes the full snapshot on
messageUpdated. Each message runs its own independent task.
"""

import logging
from datetime import timedelta

from chatfeed.broker import MESSAGE_UPDATED, EventBroker
from chatfeed.clock import ScheduledTask, TaskScheduler
from chatfeed.metrics import record_status_transition
from chatfeed.schemas import Message, MessageStatus
from chatfeed.storage import MessageLog

logger = logging.getLogger(__name__)


class StatusLifecycle:
    def __init__(
        self,
        log: MessageLog,
        broker: EventBroker,
        scheduler: TaskScheduler,
        sent_delay: float = 1.0,
        read_delay: float = 15.0,
    ):
        self.log = log
        self.broker = broker
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.sent_delay = sent_delay
        self.read_delay = read_delay

    def start(self, message: Message) -> ScheduledTask:
        """Schedule the status transitions of `message` and return the task handle."""
        return self.scheduler.spawn(self._run(message.id), name=f"lifecycle-{message.id}")

    async def _run(self, message_id: str) -> None:
        await self.clock.sleep(self.sent_delay)
        self._advance(message_id, MessageStatus.SENT)

        await self.clock.sleep(self.read_delay)
        self._advance(message_id, MessageStatus.READ)

    def _advance(self, message_id: str, status: MessageStatus) -> Message:
        # Stamps never go backwards, even if the wall clock does
        stamp = self.clock.now()
        current = self.log.get(message_id)
        if current is not None and stamp <= current.updated_at:
            stamp = current.updated_at + timedelta(microseconds=1)

        updated = self.log.update_status(message_id, status, stamp)
        record_status_transition(status.value)
        self.broker.publish(MESSAGE_UPDATED, updated)
        logger.info(f"Message {message_id} is now {status.value}")
        return updated
