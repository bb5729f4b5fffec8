"""In-process push hub implementing the push subscription protocol."""

import asyncio
from typing import Any, Awaitable, Callable

from ..logging_config import get_logger
from ..models import Channel, Message, RecordChangeEvent, TypingIndicator
from ..services import MessageHandler, TypingHandler

logger = get_logger(__name__)


ChannelKey = tuple[str, Channel]


class Subscription:
    """Unsubscribe handle for one handler on one channel."""

    def __init__(self, hub: "PushHub", key: ChannelKey, handler: Callable):
        self._hub = hub
        self._key = key
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Detach the handler from the hub. Idempotent."""
        if not self._active:
            return
        self._active = False
        self._hub._detach(self._key, self._handler)


class PushHub:
    """In-memory pub/sub keyed by (conversation_id, channel)."""

    def __init__(self) -> None:
        self._subscribers: dict[ChannelKey, list[Callable[..., Awaitable[None]]]] = {}

    def subscribe_to_messages(
        self, conversation_id: str, handler: MessageHandler
    ) -> Subscription:
        """Subscribe a handler to message change events."""
        return self._attach((conversation_id, Channel.MESSAGES), handler)

    def subscribe_to_typing(
        self, conversation_id: str, handler: TypingHandler
    ) -> Subscription:
        """Subscribe a handler to typing indicator snapshots."""
        return self._attach((conversation_id, Channel.TYPING), handler)

    def subscriber_count(self, conversation_id: str, channel: Channel) -> int:
        return len(self._subscribers.get((conversation_id, channel), []))

    async def publish_message_event(
        self, conversation_id: str, kind: RecordChangeEvent, message: Message
    ) -> None:
        """Deliver a message change to every message subscriber."""
        await self._publish((conversation_id, Channel.MESSAGES), kind, message)

    async def publish_typing(self, indicator: TypingIndicator) -> None:
        """Deliver a typing snapshot to every typing subscriber."""
        await self._publish((indicator.conversation_id, Channel.TYPING), indicator)

    def _attach(self, key: ChannelKey, handler: Callable) -> Subscription:
        self._subscribers.setdefault(key, []).append(handler)
        return Subscription(self, key, handler)

    def _detach(self, key: ChannelKey, handler: Callable) -> None:
        handlers = self._subscribers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._subscribers.pop(key, None)

    async def _publish(self, key: ChannelKey, *args: Any) -> None:
        # Snapshot so handlers may unsubscribe while being called
        handlers = list(self._subscribers.get(key, []))
        if not handlers:
            return

        results = await asyncio.gather(
            *[handler(*args) for handler in handlers],
            return_exceptions=True,
        )

        for i, result in enumerate(results):
            if isinstance(result, Exception):
                logger.error("Error in %s handler %s: %s", key[1].value, i, result)
