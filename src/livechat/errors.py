"""Error taxonomy for the chat subsystem."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all chat subsystem errors."""


class MalformedFrame(ChatError):
    """A frame failed structural validation and was dropped."""

    def __init__(self, reason: str, raw: str | bytes | None = None):
        super().__init__(reason)
        self.reason = reason
        self.raw = raw


class UnknownClient(ChatError):
    """An operation referenced a client id with no thread."""

    def __init__(self, client_id: str):
        super().__init__(f"No chat thread for client '{client_id}'")
        self.client_id = client_id


class PersistenceFailure(ChatError):
    """A queued storage operation raised."""

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class TransportFailure(ChatError):
    """A connection dropped or refused a send."""
