"""
Cursor pagination over the message log.

Cursors are message ids. A request narrows the log to the records strictly
between `after` and `before`, then takes the leading `first` records, or the
trailing `last` records, or by default the trailing `default_page_size`.

Page flags are measured against the whole log, from the positions of the
first and last returned edges. When nothing is selected the flags come from
the page's insertion point instead: the lower slice bound for forward
requests, the upper slice bound for backward and default requests.
"""

import logging
from typing import Optional

from chatfeed.storage import MessageLog
from chatfeed.schemas import MessageEdge, MessagePage, PageInfo

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


class PaginationEngine:
    def __init__(self, log: MessageLog, default_page_size: int = DEFAULT_PAGE_SIZE):
        self.log = log
        self.default_page_size = default_page_size

    def page(
        self,
        first: Optional[int] = None,
        last: Optional[int] = None,
        after: Optional[str] = None,
        before: Optional[str] = None,
    ) -> MessagePage:
        """
        Compute one page of the log.

        Args:
            first: Take this many records from the start of the bounded range
            last: Take this many records from the end (ignored if first is set)
            after: Exclusive lower cursor; unknown ids mean the head of the log
            before: Exclusive upper cursor; unknown ids mean the tail of the log

        Returns:
            MessagePage with edges in log order and page info
        """
        if (first is not None and first < 0) or (last is not None and last < 0):
            raise ValueError("first and last must be non-negative")

        lo, hi = self.log.bounds(after, before)
        bounded = self.log.slice(after, before)

        if first is not None:
            selected = bounded[:first]
            insertion_point = lo
        else:
            count = last if last is not None else self.default_page_size
            selected = bounded[len(bounded) - count:] if count else []
            insertion_point = hi

        edges = [MessageEdge.for_message(message) for message in selected]
        total = len(self.log)

        if edges:
            start_cursor = edges[0].cursor
            end_cursor = edges[-1].cursor
            start_index = self.log.find_index(start_cursor)
            end_index = self.log.find_index(end_cursor)
            page_info = PageInfo(
                start_cursor=start_cursor,
                end_cursor=end_cursor,
                has_previous_page=start_index > 0,
                has_next_page=end_index < total - 1,
            )
        else:
            page_info = PageInfo(
                has_previous_page=insertion_point > 0,
                has_next_page=insertion_point < total,
            )

        logger.debug(
            f"Page first={first} last={last} after={after} before={before}: "
            f"{len(edges)} edge(s), range [{lo}, {hi}) of {total}"
        )
        return MessagePage(edges=edges, page_info=page_info)
