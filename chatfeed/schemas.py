"""
Pydantic schemas for the chat transport.

This module contains:
- Message records and their status/sender enums
- Cursor connection types (edges, page info, pages)
- Request/response models for the HTTP surface

Wire names are camelCase (updatedAt, pageInfo, hasNextPage); Python code
uses the snake_case attribute names.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
)


# =============================================================================
# Enums
# =============================================================================

class MessageStatus(str, Enum):
    """Delivery status of a message. Only ever moves forward."""
    SENDING = "Sending"
    SENT = "Sent"
    READ = "Read"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [MessageStatus.SENDING, MessageStatus.SENT, MessageStatus.READ]


class MessageSender(str, Enum):
    ADMIN = "Admin"
    CUSTOMER = "Customer"


# =============================================================================
# Message and Connection Models
# =============================================================================

class Message(BaseModel):
    """
    A single chat message.

    `id` doubles as the pagination cursor. `text` and `sender` never change
    after creation; `status` and `updated_at` are replaced together by the
    status lifecycle.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1, description="Unique message identifier, also its cursor")
    text: str = Field(..., description="Message content")
    sender: MessageSender = Field(..., description="Who wrote the message")
    status: MessageStatus = Field(..., description="Delivery status")
    updated_at: datetime = Field(..., description="Time of the last status change")


class MessageEdge(BaseModel):
    """Pairing of a message with its cursor."""
    model_config = _WIRE_CONFIG

    node: Message
    cursor: str

    @classmethod
    def for_message(cls, message: Message) -> "MessageEdge":
        return cls(node=message, cursor=message.id)


class PageInfo(BaseModel):
    model_config = _WIRE_CONFIG

    has_next_page: bool = False
    has_previous_page: bool = False
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None


class MessagePage(BaseModel):
    """
    A contiguous window of the message log.

    Pages are views: they are recomputed per request and never cached on the
    server.
    """
    model_config = _WIRE_CONFIG

    edges: list[MessageEdge] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo)

    @property
    def messages(self) -> list[Message]:
        return [edge.node for edge in self.edges]


# =============================================================================
# Request/Response Models
# =============================================================================

class SendMessageRequest(BaseModel):
    """Body of POST /messages."""
    text: str = Field(
        ...,
        min_length=1,
        max_length=4096,
        description="Message text content"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [{"text": "Hello"}]
        }
    }


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
