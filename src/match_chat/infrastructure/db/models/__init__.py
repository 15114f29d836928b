"""Import all models so Base.metadata sees every table."""
from match_chat.infrastructure.db.models.conversation import ConversationModel
from match_chat.infrastructure.db.models.message import MessageModel
from match_chat.infrastructure.db.models.outbox import OutboxMessageModel

__all__ = [
    "ConversationModel",
    "MessageModel",
    "OutboxMessageModel",
]
