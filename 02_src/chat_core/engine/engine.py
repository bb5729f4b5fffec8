"""ConversationSyncEngine: façade and lifecycle owner of one conversation."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Protocol

from ..config import SyncSettings
from ..errors import (
    FetchFailedError,
    InvalidStateError,
    NotFoundError,
    SendFailedError,
)
from ..logging_config import conversation_logger, get_logger
from ..models import (
    Conversation,
    DeliveryStatus,
    Message,
    Profile,
    RecordChangeEvent,
    TypingEvent,
    TypingIndicator,
    TypingState,
    UserConversation,
)
from ..participants import ParticipantDirectory
from ..presence import TypingChangeHandler, TypingIndicatorTracker
from ..receipts import ReceiptDispatcher
from ..reconciler import MessageReconciler
from ..services import ChatServices, ISubscription
from ..tracker import ITracker, NullTracker

logger = get_logger(__name__)

ACTOR = "sync_engine"

MessagesChangeHandler = Callable[[list[Message]], None]


class IConversationSyncEngine(Protocol):
    """Single binding point for a rendering surface."""

    async def activate(
        self,
        conversation: Conversation | None,
        user_conversation: UserConversation | None,
    ) -> None:
        """Load initial state and subscribe to realtime channels."""
        ...

    async def deactivate(self) -> None:
        """Unsubscribe and cancel timers. Idempotent."""
        ...

    async def fetch_older_messages(self, before: datetime | None) -> list[Message]:
        """Fetch and prepend one historical page."""
        ...

    async def send_message(
        self, body: str, sender_id: str | None = None, now: datetime | None = None
    ) -> Message:
        """Optimistically append, send, reconcile with the confirmed record."""
        ...


class ConversationSyncEngine:
    """Keeps messages, typing state and participants of one conversation in sync.

    All mutation happens on the event loop that drives the engine. Work that
    completes after deactivate() (or after a later re-activation) is dropped
    instead of applied.
    """

    def __init__(
        self,
        services: ChatServices,
        self_id: str,
        settings: SyncSettings | None = None,
        tracker: ITracker | None = None,
    ):
        self._services = services
        self._self_id = self_id
        self._settings = settings or SyncSettings()
        self._tracker = tracker or NullTracker()
        self._log = conversation_logger(logger, None)

        self._receipts = ReceiptDispatcher(services.receipts)
        self._reconciler = MessageReconciler(self._receipts)
        self._directory = ParticipantDirectory(services.profiles)
        self._typing = TypingIndicatorTracker(
            show_duration=self._settings.typing_indicator_show_duration,
            on_change=self._on_typing_changed,
        )

        self._conversation: Conversation | None = None
        self._user_conversation: UserConversation | None = None
        self._subscriptions: list[ISubscription] = []
        self._load_tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()
        self._active = False
        self._epoch = 0

        self._typing_handler: TypingChangeHandler | None = None
        self._messages_handler: MessagesChangeHandler | None = None

    # Rendering surface

    @property
    def messages(self) -> list[Message]:
        return self._reconciler.messages

    @property
    def typing_state(self) -> TypingState:
        return self._typing.state

    @property
    def typing_visible(self) -> bool:
        return self._typing.visible

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def self_id(self) -> str:
        return self._self_id

    @property
    def conversation(self) -> Conversation | None:
        return self._conversation

    @property
    def user_conversation(self) -> UserConversation | None:
        return self._user_conversation

    @property
    def title(self) -> str | None:
        return self._conversation.title if self._conversation else None

    @property
    def participants(self) -> ParticipantDirectory:
        return self._directory

    @property
    def sender_display_name(self) -> str:
        """Display name of the local user, "me" until participants load."""
        return self._directory.display_name(
            self._self_id, self._settings.self_display_name
        )

    def sender_for(self, message: Message) -> Profile | None:
        return self._directory.sender_for(message)

    def set_typing_handler(self, handler: TypingChangeHandler | None) -> None:
        """Register the callback told about typing indicator show/hide."""
        self._typing_handler = handler

    def set_messages_handler(self, handler: MessagesChangeHandler | None) -> None:
        """Register the callback told about every new canonical sequence."""
        self._messages_handler = handler

    # Lifecycle

    async def activate(
        self,
        conversation: Conversation | None = None,
        user_conversation: UserConversation | None = None,
    ) -> None:
        if user_conversation is None:
            raise InvalidStateError("UserConversation is not set")
        if conversation is None:
            conversation = user_conversation.conversation
        if conversation is None:
            raise InvalidStateError("Conversation is not set")
        if self._active:
            raise InvalidStateError(f"Engine already active for {self._conversation.id}")

        push = self._services.push
        subscriptions: list[ISubscription] = []
        try:
            subscriptions.append(
                push.subscribe_to_messages(conversation.id, self._handle_message_event)
            )
            subscriptions.append(
                push.subscribe_to_typing(conversation.id, self._handle_typing_event)
            )
        except Exception:
            for subscription in subscriptions:
                subscription.unsubscribe()
            raise

        self._subscriptions = subscriptions
        self._conversation = conversation
        self._user_conversation = user_conversation
        self._log = conversation_logger(logger, conversation.id)
        self._receipts.bind(user_conversation)
        self._active = True
        self._epoch += 1

        self._log.info("Activating conversation %s", conversation.id)

        loop = asyncio.get_running_loop()
        self._load_tasks = []
        if self._directory.is_empty and conversation.participant_ids:
            self._load_tasks.append(loop.create_task(self._load_participants()))
        if len(self._reconciler) == 0:
            self._load_tasks.append(loop.create_task(self._load_first_page()))

        await self._tracker.track(
            "activated",
            ACTOR,
            {
                "conversation_id": conversation.id,
                "initial_loads": len(self._load_tasks),
            },
        )

        if self._load_tasks:
            results = await asyncio.gather(*self._load_tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self._log.error("Initial load failed: %s", result)

    async def deactivate(self) -> None:
        if not self._active:
            return

        self._active = False
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []

        for task in self._load_tasks:
            task.cancel()
        self._load_tasks = []

        self._typing.cancel()

        self._log.info("Deactivated conversation %s", self._conversation.id)
        await self._tracker.track(
            "deactivated", ACTOR, {"conversation_id": self._conversation.id}
        )

    async def reset(self) -> None:
        """Deactivate and forget every message and profile."""
        await self.deactivate()
        self._receipts.cancel()
        self._reconciler.clear()
        self._directory.clear()

    async def drain(self) -> None:
        """Wait for fire-and-forget receipts and typing publishes."""
        await self._receipts.drain()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # Façade operations

    async def resolve_participants(self) -> dict[str, Profile]:
        """Resolve every participant of the active conversation."""
        self._require_active()
        return await self._directory.resolve(self._conversation.participant_ids)

    async def fetch_older_messages(self, before: datetime | None = None) -> list[Message]:
        """Fetch the page older than before and prepend it.

        The page counts as the first page when the canonical sequence is
        still empty once the page arrives. Realtime messages or pending sends
        that landed while the fetch was outstanding make it a regular page.
        """
        self._require_active()
        epoch = self._epoch
        conversation_id = self._conversation.id

        try:
            page = await self._services.fetcher.fetch_messages(
                conversation_id, self._settings.messages_fetch_limit, before
            )
        except Exception as e:
            self._log.error("Failed to fetch messages: %s", e)
            await self._tracker.track(
                "fetch_failed",
                ACTOR,
                {"conversation_id": conversation_id, "error": str(e)},
            )
            raise FetchFailedError("Failed to fetch messages", cause=e) from e

        if page is None:
            raise FetchFailedError("Failed to get any messages")

        if not self._is_current(epoch):
            self._log.info("Dropping page fetched for an inactive conversation")
            return self._reconciler.messages

        is_first_page = len(self._reconciler) == 0
        messages = self._reconciler.apply_historical_page(page, is_first_page)
        await self._tracker.track(
            "page_applied",
            ACTOR,
            {
                "conversation_id": conversation_id,
                "page_size": len(page),
                "first_page": is_first_page,
                "total": len(messages),
            },
        )
        self._notify_messages(messages)
        return messages

    async def send_message(
        self, body: str, sender_id: str | None = None, now: datetime | None = None
    ) -> Message:
        """Send body and return the server-confirmed message.

        Raises SendFailedError when the send collaborator fails; the pending
        entry then stays in the sequence as DELIVERING. Raises NotFoundError
        when the pending entry vanished before confirmation; the confirmed
        message has been appended and the sequence is on the error.
        """
        self._require_active()
        epoch = self._epoch
        conversation_id = self._conversation.id

        pending = Message(
            id=None,
            creator_id=sender_id or self._self_id,
            body=body,
            created_at=now or datetime.now(timezone.utc),
            local_key=str(uuid.uuid4()),
            delivery_status=DeliveryStatus.DELIVERING,
        )
        self._notify_messages(self._reconciler.submit_pending_send(pending))
        await self._tracker.track(
            "pending_submitted",
            ACTOR,
            {"conversation_id": conversation_id, "local_key": pending.local_key},
        )
        self.notify_typing(TypingEvent.FINISHED)

        try:
            confirmed = await self._services.sender.send_message(pending, conversation_id)
        except Exception as e:
            self._log.error("Failed to send message %s: %s", pending.local_key, e)
            await self._tracker.track(
                "send_failed",
                ACTOR,
                {
                    "conversation_id": conversation_id,
                    "local_key": pending.local_key,
                    "error": str(e),
                },
            )
            raise SendFailedError("Failed to send message", cause=e, pending=pending) from e

        if not self._is_current(epoch):
            self._log.info("Dropping confirmation %s for an inactive conversation", confirmed.id)
            return confirmed

        try:
            messages = self._reconciler.resolve_pending_send(pending.local_key, confirmed)
        except NotFoundError as e:
            await self._flush_diagnostics()
            if e.messages is not None:
                self._notify_messages(e.messages)
            raise

        await self._tracker.track(
            "pending_resolved",
            ACTOR,
            {
                "conversation_id": conversation_id,
                "local_key": pending.local_key,
                "message_id": confirmed.id,
            },
        )
        self._notify_messages(messages)
        return confirmed

    def notify_typing(self, event: TypingEvent) -> None:
        """Publish the local user's typing state, fire-and-forget."""
        publisher = self._services.typing_publisher
        if publisher is None or not self._active:
            return
        self._spawn(
            publisher.send_typing_indicator(event, self._conversation.id),
            f"typing:{event.value}",
        )

    # Push handlers

    async def _handle_message_event(self, kind: RecordChangeEvent, message: Message) -> None:
        if not self._active:
            return

        messages = self._reconciler.apply_realtime_event(kind, message)
        await self._tracker.track(
            "realtime_applied",
            ACTOR,
            {
                "conversation_id": self._conversation.id,
                "kind": kind.value,
                "message_id": message.id,
            },
        )
        await self._flush_diagnostics()
        self._notify_messages(messages)

    async def _handle_typing_event(self, indicator: TypingIndicator) -> None:
        if not self._active:
            return

        result = self._typing.on_indicator_event(indicator.typing_user_ids, self._self_id)
        if result.changed:
            await self._tracker.track(
                "typing_changed",
                ACTOR,
                {
                    "conversation_id": self._conversation.id,
                    "state": result.current.value,
                },
            )

    # Internals

    async def _load_participants(self) -> None:
        try:
            await self.resolve_participants()
        except FetchFailedError as e:
            await self._tracker.track(
                "fetch_failed",
                ACTOR,
                {"conversation_id": self._conversation.id, "error": str(e.cause)},
            )

    async def _load_first_page(self) -> None:
        try:
            await self.fetch_older_messages(None)
        except FetchFailedError as e:
            self._log.warning("Initial message fetch failed: %s", e)

    async def _flush_diagnostics(self) -> None:
        for diagnostic in self._reconciler.drain_diagnostics():
            event_type = (
                "pending_not_found"
                if diagnostic.kind == "pending_not_found"
                else "realtime_unmatched"
            )
            await self._tracker.track(
                event_type,
                ACTOR,
                {
                    "conversation_id": self._conversation.id,
                    "kind": diagnostic.kind,
                    "message_id": diagnostic.message_id,
                    "local_key": diagnostic.local_key,
                },
            )

    def _on_typing_changed(self, state: TypingState) -> None:
        if self._typing_handler is not None:
            self._typing_handler(state)

    def _notify_messages(self, messages: list[Message]) -> None:
        if self._messages_handler is None:
            return
        try:
            self._messages_handler(messages)
        except Exception as e:
            self._log.error("Messages change handler failed: %s", e, exc_info=True)

    def _spawn(self, coro: Awaitable[None], label: str) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(lambda t: self._finish_background(t, label))

    def _finish_background(self, task: asyncio.Task, label: str) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._log.warning("Background %s failed: %s", label, task.exception())

    def _require_active(self) -> None:
        if not self._active:
            raise InvalidStateError("ConversationSyncEngine is not active")

    def _is_current(self, epoch: int) -> bool:
        return self._active and self._epoch == epoch
