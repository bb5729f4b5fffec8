"""Collaborator protocols the engine is driven through."""

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Protocol

from .models import (
    Message,
    Profile,
    RecordChangeEvent,
    TypingEvent,
    TypingIndicator,
    UserConversation,
)

MessageHandler = Callable[[RecordChangeEvent, Message], Awaitable[None]]
TypingHandler = Callable[[TypingIndicator], Awaitable[None]]


class ISubscription(Protocol):
    """Handle returned by a push subscription."""

    def unsubscribe(self) -> None:
        """Stop delivering events to the handler. Safe to call twice."""
        ...


class IPushSubscriber(Protocol):
    """Realtime push channel of a conversation."""

    def subscribe_to_messages(
        self, conversation_id: str, handler: MessageHandler
    ) -> ISubscription:
        """Deliver message create/update/delete events to handler."""
        ...

    def subscribe_to_typing(
        self, conversation_id: str, handler: TypingHandler
    ) -> ISubscription:
        """Deliver typing indicator snapshots to handler."""
        ...


class IMessageFetcher(Protocol):
    """Backward-paginated message history."""

    async def fetch_messages(
        self, conversation_id: str, limit: int, before_time: datetime | None
    ) -> list[Message]:
        """Return up to limit messages older than before_time, newest first."""
        ...


class IMessageSender(Protocol):
    """Message submission."""

    async def send_message(self, message: Message, conversation_id: str) -> Message:
        """Save message, return the server-confirmed record."""
        ...


class IReadReceipts(Protocol):
    """Read markers. Callers treat these as fire-and-forget."""

    async def mark_read(self, messages: list[Message]) -> None:
        """Mark messages as read by the current user."""
        ...

    async def mark_last_read(
        self, message: Message, user_conversation: UserConversation
    ) -> None:
        """Move the user's last-read pointer to message."""
        ...


class IProfileFetcher(Protocol):
    """Participant profile lookup."""

    async def fetch_profiles(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        """Return profiles for the requested ids that exist."""
        ...


class ITypingPublisher(Protocol):
    """Outgoing typing signals of the local user."""

    async def send_typing_indicator(
        self, event: TypingEvent, conversation_id: str
    ) -> None:
        """Publish the local user's typing state."""
        ...


@dataclass
class ChatServices:
    """Bundle of collaborators handed to the engine."""

    push: IPushSubscriber
    fetcher: IMessageFetcher
    sender: IMessageSender
    receipts: IReadReceipts
    profiles: IProfileFetcher
    typing_publisher: ITypingPublisher | None = None
