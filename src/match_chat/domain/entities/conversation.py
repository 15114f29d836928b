from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


def normalize_pair(user_a: UUID, user_b: UUID) -> tuple[UUID, UUID]:
    """Order a participant pair so that one unordered pair has one storage form."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


@dataclass(frozen=True, slots=True)
class Conversation:
    """Two-party chat channel; the dating app calls it a match."""

    id: UUID
    user_id_1: UUID
    user_id_2: UUID
    last_message_at: datetime | None
    created_at: datetime

    @property
    def participants(self) -> tuple[UUID, UUID]:
        return self.user_id_1, self.user_id_2

    def has_participant(self, user_id: UUID) -> bool:
        return user_id in (self.user_id_1, self.user_id_2)

    def other_participant(self, user_id: UUID) -> UUID:
        if user_id == self.user_id_1:
            return self.user_id_2
        if user_id == self.user_id_2:
            return self.user_id_1
        raise ValueError(f"{user_id} is not a participant of conversation {self.id}")
