from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Index, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from match_chat.infrastructure.db.base import Base


class ConversationModel(Base):
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    # pair is stored normalized: user_id_1 < user_id_2
    user_id_1: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    user_id_2: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    last_message_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )

    messages = relationship("MessageModel", back_populates="conversation", lazy="noload")

    __table_args__ = (
        UniqueConstraint("user_id_1", "user_id_2", name="uq_conversation_pair"),
        CheckConstraint("user_id_1 < user_id_2", name="ordered_pair"),
        Index("ix_conversations_user_1", "user_id_1"),
        Index("ix_conversations_user_2", "user_id_2"),
    )


Index(
    "ix_conversations_activity",
    func.coalesce(ConversationModel.last_message_at, ConversationModel.created_at).desc(),
    ConversationModel.id,
)
