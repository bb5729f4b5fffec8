"""Conversation sync engine core."""

from .app import Application, IApplication
from .config import SyncSettings
from .engine import ConversationSyncEngine, IConversationSyncEngine
from .errors import (
    ChatSyncError,
    FetchFailedError,
    InvalidStateError,
    NotFoundError,
    SendFailedError,
)
from .models import (
    Channel,
    Conversation,
    DeliveryStatus,
    Message,
    Profile,
    RecordChangeEvent,
    TraceEvent,
    TransitionResult,
    TypingEvent,
    TypingIndicator,
    TypingState,
    UserConversation,
)
from .participants import IParticipantDirectory, ParticipantDirectory
from .presence import ITypingIndicatorTracker, TypingIndicatorTracker
from .push import PushHub, Subscription
from .receipts import IReceiptDispatcher, ReceiptDispatcher
from .reconciler import IMessageReconciler, MessageReconciler, ReconcileDiagnostic
from .services import ChatServices
from .storage import IStorage, Storage
from .tracker import ITracker, NullTracker, Tracker

__all__ = [
    # Application
    "Application",
    "IApplication",
    "SyncSettings",
    # Models
    "Message",
    "DeliveryStatus",
    "Conversation",
    "UserConversation",
    "RecordChangeEvent",
    "Channel",
    "TypingIndicator",
    "TypingState",
    "TypingEvent",
    "TransitionResult",
    "Profile",
    "TraceEvent",
    # Errors
    "ChatSyncError",
    "InvalidStateError",
    "NotFoundError",
    "FetchFailedError",
    "SendFailedError",
    # Components
    "ChatServices",
    "IConversationSyncEngine",
    "ConversationSyncEngine",
    "IMessageReconciler",
    "MessageReconciler",
    "ReconcileDiagnostic",
    "ITypingIndicatorTracker",
    "TypingIndicatorTracker",
    "IParticipantDirectory",
    "ParticipantDirectory",
    "IReceiptDispatcher",
    "ReceiptDispatcher",
    "PushHub",
    "Subscription",
    "IStorage",
    "Storage",
    "ITracker",
    "NullTracker",
    "Tracker",
]
