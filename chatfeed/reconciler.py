"""
Client-side window over the message log.

The window holds a deduplicated run of edges in log order, seeded from a
fetched page, grown backwards by `load_more()` and kept current by the two
live streams:

- messageAdded: append at the tail unless the id is already present.
- messageUpdated: replace the cached message only when the incoming
  `updated_at` is strictly newer, so a late "Sent" never overwrites an
  already applied "Read". Updates for ids outside the window are dropped.

`first_item_index` is the anchor a virtualised list uses to keep its scroll
position: it drops by the number of edges prepended on each backward load.
"""

import logging
from typing import AsyncIterable, Awaitable, Optional, Protocol

from chatfeed.pagination import DEFAULT_PAGE_SIZE
from chatfeed.schemas import Message, MessageEdge, MessagePage, PageInfo

logger = logging.getLogger(__name__)


class PageSource(Protocol):
    def __call__(
        self,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
    ) -> Awaitable[MessagePage]: ...


class WindowReconciler:
    def __init__(self, fetch_page: PageSource, page_size: int = DEFAULT_PAGE_SIZE):
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.edges: list[MessageEdge] = []
        self.page_info = PageInfo()
        self.first_item_index = 0
        self._first_top_change = True

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        return [edge.node for edge in self.edges]

    @property
    def ids(self) -> list[str]:
        return [edge.node.id for edge in self.edges]

    def _position(self, message_id: str) -> int:
        for index, edge in enumerate(self.edges):
            if edge.node.id == message_id:
                return index
        return -1

    def get(self, message_id: str) -> Optional[Message]:
        index = self._position(message_id)
        return self.edges[index].node if index >= 0 else None

    # -------------------------------------------------------------------------
    # Page fetches
    # -------------------------------------------------------------------------

    async def load_initial(self) -> MessagePage:
        """Replace the window with the newest page of the log."""
        page = await self.fetch_page(last=self.page_size)
        self.edges = list(page.edges)
        self.page_info = page.page_info
        self.first_item_index = 0
        self._first_top_change = True
        logger.info(f"Window loaded with {len(self.edges)} message(s)")
        return page

    async def load_more(self) -> int:
        """
        Prepend the page just before the window's oldest edge.

        Returns:
            Number of edges prepended (0 when there is nothing older)
        """
        if not self.page_info.has_previous_page:
            return 0

        page = await self.fetch_page(last=self.page_size, before=self.page_info.start_cursor)
        if not page.edges:
            logger.debug("Backward fetch returned no edges")
            return 0

        known = set(self.ids)
        older = [edge for edge in page.edges if edge.node.id not in known]
        self.edges = older + self.edges
        self.page_info = self.page_info.model_copy(update={
            "start_cursor": page.page_info.start_cursor,
            "has_previous_page": page.page_info.has_previous_page,
        })
        if older:
            self.first_item_index -= len(older)
        logger.debug(f"Prepended {len(older)} older message(s), anchor {self.first_item_index}")
        return len(older)

    async def on_top_state_change(self, at_top: bool) -> int:
        """
        Scroll hook: load older messages when the top of the list is reached.

        The first notification after mounting is ignored; the list reports
        "at top" while it is still positioning itself on the newest message.
        """
        if self._first_top_change:
            self._first_top_change = False
            return 0
        if not at_top:
            return 0
        return await self.load_more()

    # -------------------------------------------------------------------------
    # Live events
    # -------------------------------------------------------------------------

    def apply_added(self, message: Message) -> bool:
        """Append a newly added message. Returns False for a duplicate."""
        if self._position(message.id) >= 0:
            logger.debug(f"Ignoring duplicate add for {message.id}")
            return False
        self.edges.append(MessageEdge.for_message(message))
        if self.page_info.end_cursor is None:
            self.page_info = self.page_info.model_copy(update={"start_cursor": message.id})
        self.page_info = self.page_info.model_copy(update={"end_cursor": message.id})
        return True

    def apply_updated(self, message: Message) -> bool:
        """Replace a cached message with a strictly newer snapshot."""
        index = self._position(message.id)
        if index < 0:
            logger.debug(f"Dropping update for {message.id}, not in window")
            return False
        if message.updated_at <= self.edges[index].node.updated_at:
            logger.debug(f"Dropping stale update for {message.id} ({message.status.value})")
            return False
        self.edges[index] = MessageEdge.for_message(message)
        return True

    async def consume_added(self, stream: AsyncIterable[Message]) -> None:
        async for message in stream:
            self.apply_added(message)

    async def consume_updated(self, stream: AsyncIterable[Message]) -> None:
        async for message in stream:
            self.apply_updated(message)
