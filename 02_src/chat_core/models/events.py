"""Realtime event kinds."""

from enum import Enum


class RecordChangeEvent(str, Enum):
    """Kind of a realtime message change."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Channel(str, Enum):
    """Push channels of a conversation."""

    MESSAGES = "messages"
    TYPING = "typing"
