"""
Synthetic inbound traffic.

Simulates the remote peer: every `interval` seconds a Customer message with
status Sent is appended to the log and announced on messageAdded. Injected
ids live in their own "auto-<n>" namespace so they never collide with the
numeric ids assigned to sent messages.
"""

import logging
from typing import Optional

from chatfeed.broker import MESSAGE_ADDED, EventBroker
from chatfeed.clock import ScheduledTask, TaskScheduler
from chatfeed.metrics import record_message_created
from chatfeed.schemas import Message, MessageSender, MessageStatus
from chatfeed.storage import MessageLog

logger = logging.getLogger(__name__)

AUTO_ID_PREFIX = "auto-"


class AutoInjector:
    def __init__(
        self,
        log: MessageLog,
        broker: EventBroker,
        scheduler: TaskScheduler,
        interval: float = 30.0,
    ):
        self.log = log
        self.broker = broker
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.interval = interval
        self.counter = len(log)
        self._task: Optional[ScheduledTask] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> ScheduledTask:
        if not self.running:
            self._task = self.scheduler.spawn(self._loop(), name="auto-injector")
            logger.info(f"Auto injector started, interval {self.interval}s")
        return self._task

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Auto injector stopped")

    async def _loop(self) -> None:
        while True:
            await self.clock.sleep(self.interval)
            self.inject()

    def inject(self) -> Message:
        """Append one inbound message and publish it."""
        self.counter += 1
        message = Message(
            id=f"{AUTO_ID_PREFIX}{self.counter}",
            text=f"Message number {self.counter}",
            sender=MessageSender.CUSTOMER,
            status=MessageStatus.SENT,
            updated_at=self.clock.now(),
        )
        self.log.append(message)
        record_message_created("auto")
        self.broker.publish(MESSAGE_ADDED, message)
        logger.info(f"Injected inbound message {message.id}")
        return message
