from __future__ import annotations

from uuid import UUID


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ConversationNotFoundError(NotFoundError):
    def __init__(self, detail: str = "Conversation not found") -> None:
        super().__init__(detail)


class MessageNotFoundError(NotFoundError):
    def __init__(self, detail: str = "Message not found") -> None:
        super().__init__(detail)


class ForbiddenError(AppError):
    pass


class InvalidParticipantError(ForbiddenError):
    def __init__(self, detail: str = "Not a participant of this conversation") -> None:
        super().__init__(detail)


class NotReceiverError(ForbiddenError):
    def __init__(self, detail: str = "Only the receiver can mark a message as read") -> None:
        super().__init__(detail)


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class TransientBackendError(AppError):
    """Storage or network failure; the caller may retry."""


class DisconnectedError(AppError):
    """Terminal state of a realtime subscription.

    ``last_message_id`` is the last message handed to the consumer, so it can
    resume with ``list_messages(after_id=...)``.
    """

    def __init__(self, reason: str, last_message_id: UUID | None = None) -> None:
        self.reason = reason
        self.last_message_id = last_message_id
        super().__init__(f"Subscription disconnected: {reason}")
