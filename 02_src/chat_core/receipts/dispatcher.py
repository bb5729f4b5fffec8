"""Fire-and-forget dispatch of read receipts."""

import asyncio
from datetime import datetime
from typing import Awaitable, Protocol

from ..logging_config import get_logger
from ..models import Message, UserConversation
from ..services import IReadReceipts

logger = get_logger(__name__)


class IReceiptDispatcher(Protocol):
    """Synchronous side-effect sink used by the reconciler."""

    def mark_read(self, messages: list[Message]) -> None:
        """Schedule a read receipt for messages."""
        ...

    def mark_last_read(self, message: Message) -> None:
        """Advance the last-read pointer and schedule its receipt."""
        ...


class ReceiptDispatcher:
    """Schedules read receipts on the running loop without awaiting them.

    Failures are logged and never reach the caller. The last-read pointer only
    moves forward in message time.
    """

    def __init__(
        self,
        receipts: IReadReceipts,
        user_conversation: UserConversation | None = None,
    ):
        self._receipts = receipts
        self._user_conversation = user_conversation
        self._tasks: set[asyncio.Task] = set()
        self._last_read_at: datetime | None = None

    @property
    def user_conversation(self) -> UserConversation | None:
        return self._user_conversation

    def bind(self, user_conversation: UserConversation) -> None:
        """Point last-read updates at user_conversation."""
        if user_conversation is not self._user_conversation:
            self._last_read_at = None
        self._user_conversation = user_conversation

    def mark_read(self, messages: list[Message]) -> None:
        confirmed = [m for m in messages if m.id is not None]
        if not confirmed:
            return
        self._spawn(self._receipts.mark_read(confirmed), "mark_read")

    def mark_last_read(self, message: Message) -> None:
        if message.id is None:
            return
        if self._user_conversation is None:
            logger.warning("No user conversation bound, last read %s dropped", message.id)
            return
        if self._last_read_at is not None and message.created_at < self._last_read_at:
            logger.debug("Last read already past %s, not moving back", message.id)
            return
        self._last_read_at = message.created_at
        self._user_conversation.last_read_message_id = message.id
        self._spawn(
            self._receipts.mark_last_read(message, self._user_conversation),
            "mark_last_read",
        )

    async def drain(self) -> None:
        """Wait for outstanding receipts (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def _spawn(self, coro: Awaitable[None], label: str) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finish(t, label))

    def _finish(self, task: asyncio.Task, label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Read receipt %s failed: %s", label, error)
