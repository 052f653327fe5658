"""
HTTP page source for a WindowReconciler talking to a remote service.
"""

import logging
from typing import Optional

import httpx

from chatfeed.schemas import Message, MessagePage

logger = logging.getLogger(__name__)


class HttpPageSource:
    """
    Fetches pages from GET /messages and sends via POST /messages.

    Wraps an httpx.AsyncClient owned by the caller, so the same class works
    against a live server or an ASGI app through httpx.ASGITransport.
    """

    def __init__(self, client: httpx.AsyncClient, path: str = "/messages"):
        self.client = client
        self.path = path

    async def __call__(
        self,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
    ) -> MessagePage:
        params = {
            key: value
            for key, value in (("first", first), ("after", after), ("last", last), ("before", before))
            if value is not None
        }
        logger.debug(f"Fetching page {params}")
        response = await self.client.get(self.path, params=params)
        response.raise_for_status()
        return MessagePage.model_validate(response.json())

    async def send_message(self, text: str) -> Message:
        response = await self.client.post(self.path, json={"text": text})
        response.raise_for_status()
        return Message.model_validate(response.json())
