"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_message():
    """Factory for confirmed messages spaced one minute apart."""
    from chat_core.models import DeliveryStatus, Message

    def factory(
        message_id: str | None,
        minute: int = 0,
        body: str | None = None,
        creator_id: str = "user_002",
        local_key: str | None = None,
        status: DeliveryStatus = DeliveryStatus.DELIVERED,
    ) -> Message:
        return Message(
            id=message_id,
            creator_id=creator_id,
            body=body if body is not None else f"body of {message_id}",
            created_at=BASE_TIME + timedelta(minutes=minute),
            local_key=local_key,
            delivery_status=status,
        )

    return factory


@pytest.fixture
def make_pending(make_message):
    """Factory for not yet confirmed messages."""
    from chat_core.models import DeliveryStatus

    def factory(local_key: str, minute: int = 100, body: str = "pending"):
        return make_message(
            None,
            minute=minute,
            body=body,
            creator_id="user_001",
            local_key=local_key,
            status=DeliveryStatus.DELIVERING,
        )

    return factory


@pytest.fixture
def receipts():
    """Mock receipt dispatcher with synchronous methods."""
    dispatcher = Mock()
    dispatcher.mark_read = Mock()
    dispatcher.mark_last_read = Mock()
    return dispatcher


@pytest.fixture
def reconciler(receipts):
    """MessageReconciler bound to the mock dispatcher."""
    from chat_core.reconciler import MessageReconciler

    return MessageReconciler(receipts)


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from chat_core.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def tracker(storage):
    """Create Tracker with storage."""
    from chat_core.tracker import Tracker

    return Tracker(storage=storage)


@pytest.fixture
def backend():
    """SimBackend with three profiles."""
    from chat_core.models import Profile
    from sim import SimBackend

    be = SimBackend()
    be.add_profile(Profile(user_id="user_001", display_name="Alice"))
    be.add_profile(Profile(user_id="user_002", display_name="Bob"))
    be.add_profile(Profile(user_id="user_003", display_name="Charlie"))
    return be


@pytest.fixture
def sim_conversation(backend):
    """Group conversation of the three backend profiles."""
    return backend.create_conversation(
        "Team chat", ["user_001", "user_002", "user_003"]
    )


@pytest.fixture
def mock_services():
    """ChatServices built from mocks; push returns mock subscriptions."""
    from chat_core.services import ChatServices

    push = Mock()
    push.message_sub = Mock()
    push.typing_sub = Mock()
    push.subscribe_to_messages = Mock(return_value=push.message_sub)
    push.subscribe_to_typing = Mock(return_value=push.typing_sub)

    fetcher = Mock()
    fetcher.fetch_messages = AsyncMock(return_value=[])
    sender = Mock()
    sender.send_message = AsyncMock()
    read_receipts = Mock()
    read_receipts.mark_read = AsyncMock()
    read_receipts.mark_last_read = AsyncMock()
    profiles = Mock()
    profiles.fetch_profiles = AsyncMock(return_value={})
    typing_publisher = Mock()
    typing_publisher.send_typing_indicator = AsyncMock()

    return ChatServices(
        push=push,
        fetcher=fetcher,
        sender=sender,
        receipts=read_receipts,
        profiles=profiles,
        typing_publisher=typing_publisher,
    )


@pytest.fixture
def conversation():
    from chat_core.models import Conversation

    return Conversation(
        id="conv-1", title="Team chat", participant_ids={"user_001", "user_002"}
    )


@pytest.fixture
def user_conversation(conversation):
    from chat_core.models import UserConversation

    return UserConversation(conversation=conversation, user_id="user_001")


@pytest.fixture
def fast_settings():
    from chat_core.config import SyncSettings

    return SyncSettings(messages_fetch_limit=3, typing_indicator_show_duration=0.05)


@pytest_asyncio.fixture
async def engine(mock_services, fast_settings, tracker):
    """Inactive engine over mock collaborators, local user user_001."""
    from chat_core.engine import ConversationSyncEngine

    eng = ConversationSyncEngine(
        services=mock_services,
        self_id="user_001",
        settings=fast_settings,
        tracker=tracker,
    )
    yield eng
    await eng.deactivate()
    await eng.drain()


@pytest_asyncio.fixture
async def sim_engine(backend, fast_settings, tracker):
    """Engine for user_001 wired to the SimBackend, not yet activated."""
    from chat_core.engine import ConversationSyncEngine

    eng = ConversationSyncEngine(
        services=backend.services_for("user_001"),
        self_id="user_001",
        settings=fast_settings,
        tracker=tracker,
    )
    yield eng
    await eng.deactivate()
    await eng.drain()
