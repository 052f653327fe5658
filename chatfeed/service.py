"""
Query, mutation and subscription operations of the chat transport.

ChatState owns every piece of process state (log, broker, scheduler, timers)
and is built once per application, so tests can build as many independent
instances as they like.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from chatfeed.broker import CHANNELS, MESSAGE_ADDED, EventBroker, Subscription
from chatfeed.clock import Clock, SystemClock, TaskScheduler
from chatfeed.config import Settings
from chatfeed.errors import UnknownChannelError
from chatfeed.injector import AutoInjector
from chatfeed.lifecycle import StatusLifecycle
from chatfeed.metrics import record_message_created
from chatfeed.pagination import PaginationEngine
from chatfeed.schemas import Message, MessagePage, MessageSender, MessageStatus
from chatfeed.storage import MessageLog, seed_messages

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(
        self,
        log: MessageLog,
        broker: EventBroker,
        pagination: PaginationEngine,
        lifecycle: StatusLifecycle,
        clock: Clock,
        response_delay: float = 0.0,
    ):
        self.log = log
        self.broker = broker
        self.pagination = pagination
        self.lifecycle = lifecycle
        self.clock = clock
        self.response_delay = response_delay

    def messages(
        self,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
    ) -> MessagePage:
        return self.pagination.page(first=first, last=last, after=after, before=before)

    async def fetch_page(
        self,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
    ) -> MessagePage:
        """Awaitable page source for an in-process WindowReconciler."""
        return self.messages(first=first, after=after, last=last, before=before)

    async def send_message(self, text: str) -> Message:
        """
        Append an outgoing Admin message and start its status lifecycle.

        The message is announced on messageAdded before the lifecycle starts.
        When a response delay is configured, every response that leaves the
        log at an odd length is held back for that delay, so live updates for
        the message may reach subscribers before the caller gets this result.

        Returns:
            The message as created (status Sending)
        """
        message = Message(
            id=self.log.next_id(),
            text=text,
            sender=MessageSender.ADMIN,
            status=MessageStatus.SENDING,
            updated_at=self.clock.now(),
        )
        self.log.append(message)
        record_message_created("send")
        logger.info(f"Message sent: {message.id}")

        self.broker.publish(MESSAGE_ADDED, message)
        self.lifecycle.start(message)

        if self.response_delay > 0 and len(self.log) % 2:
            logger.debug(f"Holding response for {message.id} for {self.response_delay}s")
            await self.clock.sleep(self.response_delay)

        return message

    def subscribe(self, channel: str) -> Subscription:
        if channel not in CHANNELS:
            raise UnknownChannelError(f"Unknown channel: {channel}")
        return self.broker.subscribe(channel)


@dataclass
class ChatState:
    """Process-lifetime state, built at startup and shared by all handlers."""
    settings: Settings
    clock: Clock
    log: MessageLog
    broker: EventBroker
    scheduler: TaskScheduler
    lifecycle: StatusLifecycle
    injector: AutoInjector
    service: ChatService

    async def shutdown(self) -> None:
        self.injector.stop()
        await self.scheduler.shutdown()
        self.broker.close()


def build_state(settings: Settings, clock: Optional[Clock] = None) -> ChatState:
    """Wire the chat components together from settings."""
    clock = clock or SystemClock()
    log = MessageLog()
    seed_messages(log, settings.SEED_MESSAGE_COUNT, clock)

    broker = EventBroker(max_queue_size=settings.SUBSCRIBER_QUEUE_SIZE)
    scheduler = TaskScheduler(clock)
    lifecycle = StatusLifecycle(
        log,
        broker,
        scheduler,
        sent_delay=settings.SENT_DELAY_MS / 1000,
        read_delay=settings.READ_DELAY_MS / 1000,
    )
    injector = AutoInjector(
        log,
        broker,
        scheduler,
        interval=settings.AUTO_REPLY_INTERVAL_MS / 1000,
    )
    service = ChatService(
        log,
        broker,
        PaginationEngine(log, default_page_size=settings.DEFAULT_PAGE_SIZE),
        lifecycle,
        clock,
        response_delay=settings.RESPONSE_DELAY_MS / 1000,
    )
    return ChatState(
        settings=settings,
        clock=clock,
        log=log,
        broker=broker,
        scheduler=scheduler,
        lifecycle=lifecycle,
        injector=injector,
        service=service,
    )
