"""
Exception types raised by the chat core.

Stale cursors, stale updates and empty fetches are not errors and never
raise; these exceptions signal misuse of the core's own contracts.
"""


class ChatfeedError(Exception):
    """Base class for chat core errors."""


class DuplicateMessageError(ChatfeedError):
    """Raised when a message id is appended to the log twice."""


class MessageNotFoundError(ChatfeedError):
    """Raised when a mutation targets an id that is not in the log."""


class StatusRegressionError(ChatfeedError):
    """Raised when a status change would move backwards or rewind updated_at."""


class UnknownChannelError(ChatfeedError):
    """Raised when subscribing to a channel the broker does not serve."""
