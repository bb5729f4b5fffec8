"""Core data models for the conversation sync engine."""

from .events import Channel, RecordChangeEvent
from .messages import Conversation, DeliveryStatus, Message, UserConversation
from .participants import Profile
from .presence import TransitionResult, TypingEvent, TypingIndicator, TypingState
from .tracing import TraceEvent

__all__ = [
    # Messages
    "Message",
    "DeliveryStatus",
    "Conversation",
    "UserConversation",
    # Events
    "RecordChangeEvent",
    "Channel",
    # Presence
    "TypingIndicator",
    "TypingState",
    "TypingEvent",
    "TransitionResult",
    # Participants
    "Profile",
    # Tracing
    "TraceEvent",
]
