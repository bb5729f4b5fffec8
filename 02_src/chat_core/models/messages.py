"""Message and conversation data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class DeliveryStatus(str, Enum):
    """Delivery progress of a message. Only ever advances once confirmed."""

    DELIVERING = "delivering"
    DELIVERED = "delivered"
    SOME_READ = "some_read"
    ALL_READ = "all_read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    DeliveryStatus.DELIVERING: 0,
    DeliveryStatus.DELIVERED: 1,
    DeliveryStatus.SOME_READ: 2,
    DeliveryStatus.ALL_READ: 3,
}


@dataclass
class Message:
    """A single chat message, pending (no id) or server-confirmed."""

    id: str | None
    creator_id: str
    body: str
    created_at: datetime
    local_key: str | None = None
    delivery_status: DeliveryStatus = DeliveryStatus.DELIVERING

    @property
    def is_pending(self) -> bool:
        """True until the server has assigned an id."""
        return self.id is None


@dataclass
class Conversation:
    """A conversation between participants."""

    id: str
    title: str | None = None
    participant_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        # membership matters, order does not
        self.participant_ids = frozenset(self.participant_ids)


@dataclass
class UserConversation:
    """Per-user view of a conversation with its last-read pointer."""

    conversation: Conversation | None
    user_id: str
    last_read_message_id: str | None = None
