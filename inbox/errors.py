"""
Custom exceptions for the inbox pipeline.

Every failure kind the webhook, transition and query paths can report
derives from InboxError so the HTTP layer can map them in one place.
"""


class InboxError(Exception):
    """Base class for all inbox errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PayloadValidationError(InboxError):
    """
    Raised when an inbound payload or request lacks a required field
    or carries a value that cannot be interpreted.

    Rejected before any store access is attempted.
    """


class DuplicateMessage(InboxError):
    """
    Raised by a store when a message with the same external id already exists.

    The webhook pipeline treats this as a successful no-op.
    """

    def __init__(self, external_message_id: str):
        self.external_message_id = external_message_id
        super().__init__(f"Message {external_message_id} already exists")


class InvalidStatusValue(InboxError):
    """Raised when a status string is outside the recognized set."""

    def __init__(self, status):
        self.status = status
        super().__init__(
            f"Invalid status {status!r}. Must be: sent, delivered, or read"
        )


class MessageNotFound(InboxError):
    """Raised when a lookup or transition targets an unknown message id."""

    def __init__(self, external_message_id: str):
        self.external_message_id = external_message_id
        super().__init__(f"Message {external_message_id} not found")


class StoreUnavailable(InboxError):
    """
    Raised when the underlying persistence layer cannot be reached.

    Fatal to the current request only; at startup it aborts the process.
    """
