"""Tests for ConversationSyncEngine."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from chat_core.errors import (
    FetchFailedError,
    InvalidStateError,
    NotFoundError,
    SendFailedError,
)
from chat_core.models import (
    DeliveryStatus,
    Profile,
    RecordChangeEvent,
    TypingEvent,
    TypingIndicator,
    TypingState,
    UserConversation,
)


def message_handler_of(services):
    """Handler the engine registered on the mock push channel."""
    return services.push.subscribe_to_messages.call_args.args[1]


def typing_handler_of(services):
    return services.push.subscribe_to_typing.call_args.args[1]


class TestActivate:
    """Tests for activate()."""

    @pytest.mark.asyncio
    async def test_requires_user_conversation(self, engine, conversation):
        """Test that activation without a user conversation is rejected."""
        with pytest.raises(InvalidStateError):
            await engine.activate(conversation, None)

        assert not engine.is_active

    @pytest.mark.asyncio
    async def test_requires_conversation(self, engine):
        """Test that a user conversation without a conversation is rejected."""
        with pytest.raises(InvalidStateError):
            await engine.activate(None, UserConversation(conversation=None, user_id="user_001"))

    @pytest.mark.asyncio
    async def test_conversation_taken_from_user_conversation(
        self, engine, user_conversation, conversation
    ):
        """Test that the conversation defaults to user_conversation.conversation."""
        await engine.activate(None, user_conversation)

        assert engine.conversation is conversation
        assert engine.title == "Team chat"

    @pytest.mark.asyncio
    async def test_double_activate_rejected(self, engine, conversation, user_conversation):
        """Test that an active engine cannot be activated again."""
        await engine.activate(conversation, user_conversation)

        with pytest.raises(InvalidStateError):
            await engine.activate(conversation, user_conversation)

    @pytest.mark.asyncio
    async def test_subscribes_both_channels(
        self, engine, mock_services, conversation, user_conversation
    ):
        """Test that both realtime channels are subscribed for the conversation."""
        await engine.activate(conversation, user_conversation)

        assert mock_services.push.subscribe_to_messages.call_args.args[0] == "conv-1"
        assert mock_services.push.subscribe_to_typing.call_args.args[0] == "conv-1"

    @pytest.mark.asyncio
    async def test_initial_loads(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that participants and the first page load on activation."""
        page = [make_message("m3", 3), make_message("m2", 2), make_message("m1", 1)]
        mock_services.fetcher.fetch_messages = AsyncMock(return_value=page)
        mock_services.profiles.fetch_profiles = AsyncMock(
            return_value={"user_001": Profile(user_id="user_001", display_name="Alice")}
        )

        await engine.activate(conversation, user_conversation)
        await engine.drain()

        mock_services.fetcher.fetch_messages.assert_awaited_once_with("conv-1", 3, None)
        assert [m.id for m in engine.messages] == ["m1", "m2", "m3"]
        assert engine.sender_display_name == "Alice"
        assert user_conversation.last_read_message_id == "m3"
        mock_services.receipts.mark_last_read.assert_awaited_once_with(
            page[0], user_conversation
        )

    @pytest.mark.asyncio
    async def test_sender_display_name_default(
        self, engine, conversation, user_conversation
    ):
        """Test that the local user is "me" until profiles arrive."""
        assert engine.sender_display_name == "me"

        await engine.activate(conversation, user_conversation)

        assert engine.sender_display_name == "me"

    @pytest.mark.asyncio
    async def test_initial_fetch_failure_keeps_engine_active(
        self, engine, mock_services, conversation, user_conversation
    ):
        """Test that a failed first page leaves an active, empty engine."""
        mock_services.fetcher.fetch_messages = AsyncMock(side_effect=ConnectionError())

        await engine.activate(conversation, user_conversation)

        assert engine.is_active
        assert engine.messages == []

    @pytest.mark.asyncio
    async def test_records_trace(self, engine, conversation, user_conversation, storage):
        """Test that activation is traced."""
        await engine.activate(conversation, user_conversation)

        events = await storage.get_trace_events(event_types=["activated"])
        assert events[0].data["conversation_id"] == "conv-1"


class TestDeactivate:
    """Tests for deactivate()."""

    @pytest.mark.asyncio
    async def test_unsubscribes(self, engine, mock_services, conversation, user_conversation):
        """Test that deactivation releases both subscriptions."""
        await engine.activate(conversation, user_conversation)

        await engine.deactivate()

        mock_services.push.message_sub.unsubscribe.assert_called_once()
        mock_services.push.typing_sub.unsubscribe.assert_called_once()
        assert not engine.is_active

    @pytest.mark.asyncio
    async def test_idempotent(self, engine, mock_services, conversation, user_conversation):
        """Test that a second deactivate does nothing."""
        await engine.activate(conversation, user_conversation)

        await engine.deactivate()
        await engine.deactivate()

        mock_services.push.message_sub.unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_never_activated(self, engine):
        """Test that deactivating a fresh engine is a no-op."""
        await engine.deactivate()

        assert not engine.is_active

    @pytest.mark.asyncio
    async def test_hides_typing(self, engine, mock_services, conversation, user_conversation):
        """Test that deactivation cancels the timer and hides the indicator."""
        states = []
        engine.set_typing_handler(states.append)
        await engine.activate(conversation, user_conversation)
        await typing_handler_of(mock_services)(TypingIndicator("conv-1", {"user_002"}))

        await engine.deactivate()

        assert engine.typing_state is TypingState.HIDDEN
        assert states == [TypingState.SHOWN, TypingState.HIDDEN]

    @pytest.mark.asyncio
    async def test_operations_rejected_after_deactivate(
        self, engine, conversation, user_conversation
    ):
        """Test that façade operations need an active engine."""
        await engine.activate(conversation, user_conversation)
        await engine.deactivate()

        with pytest.raises(InvalidStateError):
            await engine.fetch_older_messages()
        with pytest.raises(InvalidStateError):
            await engine.send_message("hi")

    @pytest.mark.asyncio
    async def test_reactivate_keeps_messages(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that re-activation does not refetch a non-empty sequence."""
        mock_services.fetcher.fetch_messages = AsyncMock(
            return_value=[make_message("m1", 1)]
        )
        await engine.activate(conversation, user_conversation)
        await engine.deactivate()

        await engine.activate(conversation, user_conversation)

        mock_services.fetcher.fetch_messages.assert_awaited_once()
        assert [m.id for m in engine.messages] == ["m1"]


class TestFetchOlder:
    """Tests for fetch_older_messages()."""

    @pytest.mark.asyncio
    async def test_prepends_page(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that an older page lands before the held messages."""
        mock_services.fetcher.fetch_messages = AsyncMock(
            return_value=[make_message("m5", 5), make_message("m4", 4)]
        )
        await engine.activate(conversation, user_conversation)
        mock_services.fetcher.fetch_messages = AsyncMock(
            return_value=[make_message("m3", 3), make_message("m2", 2)]
        )

        before = engine.messages[0].created_at
        result = await engine.fetch_older_messages(before)
        await engine.drain()

        assert [m.id for m in result] == ["m2", "m3", "m4", "m5"]
        mock_services.fetcher.fetch_messages.assert_awaited_once_with("conv-1", 3, before)
        # only the first page moves the last-read pointer
        mock_services.receipts.mark_last_read.assert_awaited_once()
        assert user_conversation.last_read_message_id == "m5"

    @pytest.mark.asyncio
    async def test_failure_raises_fetch_failed(
        self, engine, mock_services, conversation, user_conversation
    ):
        """Test that collaborator errors surface with their cause."""
        await engine.activate(conversation, user_conversation)
        cause = TimeoutError("slow")
        mock_services.fetcher.fetch_messages = AsyncMock(side_effect=cause)

        with pytest.raises(FetchFailedError) as exc_info:
            await engine.fetch_older_messages()

        assert exc_info.value.cause is cause
        assert engine.messages == []

    @pytest.mark.asyncio
    async def test_none_page_raises_fetch_failed(
        self, engine, mock_services, conversation, user_conversation
    ):
        """Test that a missing page is a fetch failure."""
        await engine.activate(conversation, user_conversation)
        mock_services.fetcher.fetch_messages = AsyncMock(return_value=None)

        with pytest.raises(FetchFailedError):
            await engine.fetch_older_messages()

    @pytest.mark.asyncio
    async def test_stale_page_dropped(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that a page arriving after deactivation is not applied."""
        await engine.activate(conversation, user_conversation)
        gate = asyncio.Event()

        async def slow_fetch(conversation_id, limit, before_time):
            await gate.wait()
            return [make_message("m1", 1)]

        mock_services.fetcher.fetch_messages = slow_fetch
        task = asyncio.ensure_future(engine.fetch_older_messages())
        await asyncio.sleep(0)
        await engine.deactivate()
        gate.set()
        await task

        assert engine.messages == []

    @pytest.mark.asyncio
    async def test_messages_handler_notified(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that the rendering surface receives the new sequence."""
        snapshots = []
        engine.set_messages_handler(snapshots.append)
        mock_services.fetcher.fetch_messages = AsyncMock(
            return_value=[make_message("m1", 1)]
        )

        await engine.activate(conversation, user_conversation)

        assert [[m.id for m in s] for s in snapshots] == [["m1"]]


class TestSendMessage:
    """Tests for send_message()."""

    @pytest.mark.asyncio
    async def test_success(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that the pending entry is replaced by the confirmed message."""
        await engine.activate(conversation, user_conversation)
        seen = []

        async def send(message, conversation_id):
            seen.append([m.is_pending for m in engine.messages])
            return make_message(
                "srv-1", 10, body=message.body, creator_id="user_001",
                local_key=message.local_key,
            )

        mock_services.sender.send_message = AsyncMock(side_effect=send)

        confirmed = await engine.send_message("hello")
        await engine.drain()

        assert seen == [[True]]
        assert confirmed.id == "srv-1"
        assert [m.id for m in engine.messages] == ["srv-1"]
        mock_services.typing_publisher.send_typing_indicator.assert_awaited_once_with(
            TypingEvent.FINISHED, "conv-1"
        )

    @pytest.mark.asyncio
    async def test_pending_shape(self, engine, mock_services, conversation, user_conversation):
        """Test that the optimistic entry carries a local key and no id."""
        await engine.activate(conversation, user_conversation)
        mock_services.sender.send_message = AsyncMock(side_effect=ConnectionError())

        with pytest.raises(SendFailedError):
            await engine.send_message("hello")

        pending = mock_services.sender.send_message.call_args.args[0]
        assert pending.id is None
        assert pending.local_key
        assert pending.creator_id == "user_001"
        assert pending.delivery_status is DeliveryStatus.DELIVERING

    @pytest.mark.asyncio
    async def test_failure_keeps_pending(
        self, engine, mock_services, conversation, user_conversation, storage
    ):
        """Test that a failed send leaves the pending entry in place."""
        await engine.activate(conversation, user_conversation)
        cause = ConnectionError("offline")
        mock_services.sender.send_message = AsyncMock(side_effect=cause)

        with pytest.raises(SendFailedError) as exc_info:
            await engine.send_message("hello")

        assert exc_info.value.cause is cause
        assert exc_info.value.pending.local_key == engine.messages[0].local_key
        assert engine.messages[0].delivery_status is DeliveryStatus.DELIVERING
        assert await storage.get_trace_events(event_types=["send_failed"])

    @pytest.mark.asyncio
    async def test_pending_removed_during_send(
        self, engine, mock_services, conversation, user_conversation, make_message, storage
    ):
        """Test that a DELETE racing the send yields NotFound plus the confirmed message."""
        await engine.activate(conversation, user_conversation)
        on_message = message_handler_of(mock_services)

        async def send(message, conversation_id):
            deleted = make_message(
                "srv-9", 10, creator_id="user_001", local_key=message.local_key
            )
            await on_message(RecordChangeEvent.DELETE, deleted)
            return make_message("srv-1", 10, creator_id="user_001", local_key=message.local_key)

        mock_services.sender.send_message = AsyncMock(side_effect=send)

        with pytest.raises(NotFoundError) as exc_info:
            await engine.send_message("hello")

        assert [m.id for m in exc_info.value.messages] == ["srv-1"]
        assert [m.id for m in engine.messages] == ["srv-1"]
        assert await storage.get_trace_events(event_types=["pending_not_found"])

    @pytest.mark.asyncio
    async def test_stale_confirmation_dropped(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that a confirmation after deactivation leaves the sequence alone."""
        await engine.activate(conversation, user_conversation)

        async def send(message, conversation_id):
            await engine.deactivate()
            return make_message("srv-1", 10, local_key=message.local_key)

        mock_services.sender.send_message = AsyncMock(side_effect=send)

        confirmed = await engine.send_message("hello")

        assert confirmed.id == "srv-1"
        assert engine.messages[0].is_pending


class TestRealtime:
    """Tests for push handling through a live SimBackend."""

    @pytest.mark.asyncio
    async def test_create_update_delete(
        self, sim_engine, backend, sim_conversation
    ):
        """Test that pushed changes keep the sequence in sync."""
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)

        posted = await backend.post(sim_conversation.id, "user_002", "hi")
        assert [m.body for m in sim_engine.messages] == ["hi"]

        await backend.edit(sim_conversation.id, posted.id, "hi there")
        assert [m.body for m in sim_engine.messages] == ["hi there"]

        await backend.delete(sim_conversation.id, posted.id)
        assert sim_engine.messages == []

    @pytest.mark.asyncio
    async def test_create_marks_read(self, sim_engine, backend, sim_conversation):
        """Test that a pushed message is marked read and becomes last read."""
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)

        posted = await backend.post(sim_conversation.id, "user_002", "hi")
        await sim_engine.drain()

        assert "user_001" in backend.read_marks[posted.id]
        assert backend.last_read[("user_001", sim_conversation.id)] == posted.id
        assert user_conv.last_read_message_id == posted.id

    @pytest.mark.asyncio
    async def test_unmatched_update_traced(
        self, sim_engine, backend, sim_conversation, make_message, storage
    ):
        """Test that an UPDATE for an unknown message is diagnosed, not applied."""
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)

        await backend.hub.publish_message_event(
            sim_conversation.id, RecordChangeEvent.UPDATE, make_message("ghost")
        )

        assert sim_engine.messages == []
        events = await storage.get_trace_events(event_types=["realtime_unmatched"])
        assert events[0].data["kind"] == "update_unmatched"

    @pytest.mark.asyncio
    async def test_send_with_echo(self, sim_engine, backend, sim_conversation):
        """Test that the server echo and the confirmation leave one message."""
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)

        confirmed = await sim_engine.send_message("hello")

        assert [m.id for m in sim_engine.messages] == [confirmed.id]
        assert backend.stored_messages(sim_conversation.id)[0].body == "hello"

    @pytest.mark.asyncio
    async def test_events_ignored_after_deactivate(
        self, sim_engine, backend, sim_conversation
    ):
        """Test that nothing is applied once the engine is inactive."""
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)
        await sim_engine.deactivate()

        await backend.post(sim_conversation.id, "user_002", "late")
        await backend.set_typing(sim_conversation.id, "user_002", True)

        assert sim_engine.messages == []
        assert sim_engine.typing_state is TypingState.HIDDEN

    @pytest.mark.asyncio
    async def test_participants_resolved(self, sim_engine, backend, sim_conversation):
        """Test that every participant profile is cached after activation."""
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)

        assert len(sim_engine.participants) == 3
        assert sim_engine.sender_display_name == "Alice"


class TestTyping:
    """Tests for typing indicators."""

    @pytest.mark.asyncio
    async def test_other_user_typing_shows(
        self, sim_engine, backend, sim_conversation, storage
    ):
        """Test that another participant typing shows then auto-hides."""
        states = []
        sim_engine.set_typing_handler(states.append)
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)

        await backend.set_typing(sim_conversation.id, "user_002", True)
        assert sim_engine.typing_visible

        await asyncio.sleep(0.15)

        assert states == [TypingState.SHOWN, TypingState.HIDDEN]
        assert await storage.get_trace_events(event_types=["typing_changed"])

    @pytest.mark.asyncio
    async def test_own_typing_ignored(self, sim_engine, backend, sim_conversation):
        """Test that the local user's typing echo never shows the indicator."""
        user_conv = backend.user_conversation(sim_conversation.id, "user_001")
        await sim_engine.activate(sim_conversation, user_conv)

        sim_engine.notify_typing(TypingEvent.BEGIN)
        await sim_engine.drain()

        assert sim_engine.typing_state is TypingState.HIDDEN

    @pytest.mark.asyncio
    async def test_notify_typing_inactive_is_noop(self, engine, mock_services):
        """Test that nothing is published while inactive."""
        engine.notify_typing(TypingEvent.BEGIN)
        await engine.drain()

        mock_services.typing_publisher.send_typing_indicator.assert_not_called()


class TestReset:
    """Tests for reset()."""

    @pytest.mark.asyncio
    async def test_reset_forgets_everything(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that reset deactivates and clears messages and profiles."""
        mock_services.fetcher.fetch_messages = AsyncMock(return_value=[make_message("m1")])
        mock_services.profiles.fetch_profiles = AsyncMock(
            return_value={"user_002": Profile(user_id="user_002")}
        )
        await engine.activate(conversation, user_conversation)

        await engine.reset()

        assert not engine.is_active
        assert engine.messages == []
        assert engine.participants.is_empty


class TestFirstPageInterleaving:
    """Tests for realtime events racing the first historical page."""

    @pytest.mark.asyncio
    async def test_create_during_first_fetch(
        self, engine, mock_services, conversation, user_conversation, make_message, storage
    ):
        """Test that a CREATE landing before the first page keeps the newer last read."""
        gate = asyncio.Event()
        page = [make_message("m3", 3), make_message("m2", 2), make_message("m1", 1)]

        async def blocked_fetch(conversation_id, limit, before_time):
            await gate.wait()
            return page

        mock_services.fetcher.fetch_messages = blocked_fetch
        activation = asyncio.ensure_future(engine.activate(conversation, user_conversation))
        await asyncio.sleep(0)

        m4 = make_message("m4", 4)
        await message_handler_of(mock_services)(RecordChangeEvent.CREATE, m4)
        assert user_conversation.last_read_message_id == "m4"

        gate.set()
        await activation
        await engine.drain()

        assert [m.id for m in engine.messages] == ["m1", "m2", "m3", "m4"]
        assert user_conversation.last_read_message_id == "m4"
        mock_services.receipts.mark_read.assert_awaited_once_with([m4])
        mock_services.receipts.mark_last_read.assert_awaited_once_with(
            m4, user_conversation
        )
        events = await storage.get_trace_events(event_types=["page_applied"])
        assert events[0].data["first_page"] is False

    @pytest.mark.asyncio
    async def test_create_after_first_page(
        self, engine, mock_services, conversation, user_conversation, make_message
    ):
        """Test that a CREATE after the first page is appended and becomes last read."""
        page = [make_message("m3", 3), make_message("m2", 2), make_message("m1", 1)]
        mock_services.fetcher.fetch_messages = AsyncMock(return_value=page)
        await engine.activate(conversation, user_conversation)

        m4 = make_message("m4", 4)
        await message_handler_of(mock_services)(RecordChangeEvent.CREATE, m4)
        await engine.drain()

        assert [m.id for m in engine.messages] == ["m1", "m2", "m3", "m4"]
        assert mock_services.receipts.mark_read.await_count == 2
        assert mock_services.receipts.mark_last_read.await_count == 2
        assert user_conversation.last_read_message_id == "m4"


class TestActivateRollback:
    """Tests for activation that fails while subscribing."""

    @pytest.mark.asyncio
    async def test_subscribe_failure_leaves_engine_inactive(
        self, engine, mock_services, conversation, user_conversation
    ):
        """Test that a failing typing subscription undoes the message subscription."""
        mock_services.push.subscribe_to_typing.side_effect = ConnectionError("push down")

        with pytest.raises(ConnectionError):
            await engine.activate(conversation, user_conversation)

        assert not engine.is_active
        assert engine.conversation is None
        mock_services.push.message_sub.unsubscribe.assert_called_once()
        mock_services.fetcher.fetch_messages.assert_not_called()
        mock_services.profiles.fetch_profiles.assert_not_called()

    @pytest.mark.asyncio
    async def test_activate_after_failed_subscribe(
        self, engine, mock_services, conversation, user_conversation
    ):
        """Test that the engine can be activated once the push channel recovers."""
        mock_services.push.subscribe_to_typing.side_effect = ConnectionError("push down")
        with pytest.raises(ConnectionError):
            await engine.activate(conversation, user_conversation)

        mock_services.push.subscribe_to_typing.side_effect = None
        await engine.activate(conversation, user_conversation)

        assert engine.is_active
