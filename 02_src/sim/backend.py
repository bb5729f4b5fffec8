"""In-memory chat server implementing every collaborator protocol."""

import dataclasses
import itertools
from datetime import datetime, timezone
from typing import Iterable

from chat_core.logging_config import get_logger
from chat_core.models import (
    Conversation,
    DeliveryStatus,
    Message,
    Profile,
    RecordChangeEvent,
    TypingEvent,
    TypingIndicator,
    UserConversation,
)
from chat_core.push import PushHub
from chat_core.services import ChatServices

logger = get_logger(__name__)


class SimBackend:
    """Server-side state shared by every simulated client."""

    def __init__(self, hub: PushHub | None = None):
        self.hub = hub or PushHub()
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}
        self._profiles: dict[str, Profile] = {}
        self._typing: dict[str, set[str]] = {}
        self._ids = itertools.count(1)

        self.read_marks: dict[str, set[str]] = {}  # message_id -> reader ids
        self.last_read: dict[tuple[str, str], str] = {}  # (user, conversation) -> message_id

    # Setup

    def add_profile(self, profile: Profile) -> None:
        self._profiles[profile.user_id] = profile

    def create_conversation(
        self, title: str | None, participant_ids: Iterable[str]
    ) -> Conversation:
        conversation = Conversation(
            id=f"conv-{next(self._ids)}",
            title=title,
            participant_ids=frozenset(participant_ids),
        )
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        self._typing[conversation.id] = set()
        return conversation

    def user_conversation(self, conversation_id: str, user_id: str) -> UserConversation:
        return UserConversation(
            conversation=self._conversations[conversation_id],
            user_id=user_id,
            last_read_message_id=self.last_read.get((user_id, conversation_id)),
        )

    def services_for(self, user_id: str) -> ChatServices:
        """Collaborator bundle as seen by user_id's client."""
        client = SimClient(self, user_id)
        return ChatServices(
            push=self.hub,
            fetcher=client,
            sender=client,
            receipts=client,
            profiles=client,
            typing_publisher=client,
        )

    def stored_messages(self, conversation_id: str) -> list[Message]:
        return list(self._messages[conversation_id])

    # Server operations

    async def post(
        self,
        conversation_id: str,
        creator_id: str,
        body: str,
        local_key: str | None = None,
        created_at: datetime | None = None,
    ) -> Message:
        """Store a new message and push CREATE to subscribers."""
        message = Message(
            id=f"msg-{next(self._ids)}",
            creator_id=creator_id,
            body=body,
            created_at=created_at or datetime.now(timezone.utc),
            local_key=local_key,
            delivery_status=DeliveryStatus.DELIVERED,
        )
        self._messages[conversation_id].append(message)
        await self.hub.publish_message_event(
            conversation_id, RecordChangeEvent.CREATE, message
        )
        return message

    async def edit(self, conversation_id: str, message_id: str, body: str) -> Message:
        """Change a stored message body and push UPDATE."""
        stored = self._messages[conversation_id]
        for i, message in enumerate(stored):
            if message.id == message_id:
                stored[i] = dataclasses.replace(message, body=body)
                await self.hub.publish_message_event(
                    conversation_id, RecordChangeEvent.UPDATE, stored[i]
                )
                return stored[i]
        raise KeyError(message_id)

    async def delete(self, conversation_id: str, message_id: str) -> None:
        """Remove a stored message and push DELETE."""
        stored = self._messages[conversation_id]
        for i, message in enumerate(stored):
            if message.id == message_id:
                del stored[i]
                await self.hub.publish_message_event(
                    conversation_id, RecordChangeEvent.DELETE, message
                )
                return
        raise KeyError(message_id)

    async def set_typing(self, conversation_id: str, user_id: str, typing: bool) -> None:
        """Update who is typing and push the full snapshot."""
        typing_ids = self._typing[conversation_id]
        if typing:
            typing_ids.add(user_id)
        else:
            typing_ids.discard(user_id)
        await self.hub.publish_typing(
            TypingIndicator(conversation_id=conversation_id, typing_user_ids=typing_ids)
        )

    def page(
        self, conversation_id: str, limit: int, before_time: datetime | None
    ) -> list[Message]:
        stored = self._messages[conversation_id]
        if before_time is not None:
            stored = [m for m in stored if m.created_at < before_time]
        return list(reversed(stored[-limit:])) if limit else []

    def mark_read_by(self, user_id: str, message_ids: Iterable[str]) -> None:
        for message_id in message_ids:
            self.read_marks.setdefault(message_id, set()).add(user_id)


class SimClient:
    """One user's client connection to the SimBackend."""

    def __init__(self, backend: SimBackend, user_id: str):
        self._backend = backend
        self._user_id = user_id

    async def fetch_messages(
        self, conversation_id: str, limit: int, before_time: datetime | None
    ) -> list[Message]:
        return self._backend.page(conversation_id, limit, before_time)

    async def send_message(self, message: Message, conversation_id: str) -> Message:
        return await self._backend.post(
            conversation_id,
            message.creator_id,
            message.body,
            local_key=message.local_key,
            created_at=message.created_at,
        )

    async def mark_read(self, messages: list[Message]) -> None:
        self._backend.mark_read_by(self._user_id, [m.id for m in messages])

    async def mark_last_read(
        self, message: Message, user_conversation: UserConversation
    ) -> None:
        conversation = user_conversation.conversation
        if conversation is None:
            raise ValueError("UserConversation without conversation")
        self._backend.last_read[(self._user_id, conversation.id)] = message.id

    async def fetch_profiles(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        profiles = self._backend._profiles
        return {uid: profiles[uid] for uid in user_ids if uid in profiles}

    async def send_typing_indicator(
        self, event: TypingEvent, conversation_id: str
    ) -> None:
        await self._backend.set_typing(
            conversation_id, self._user_id, event is TypingEvent.BEGIN
        )
