"""Typing presence data models."""

from dataclasses import dataclass, field
from enum import Enum


class TypingState(str, Enum):
    """Visibility of the typing indicator."""

    HIDDEN = "hidden"
    SHOWN = "shown"


class TypingEvent(str, Enum):
    """Outgoing typing signal of the local user."""

    BEGIN = "begin"
    PAUSE = "pause"
    FINISHED = "finished"


@dataclass
class TypingIndicator:
    """Full snapshot of who is typing. Replaces the previous snapshot."""

    conversation_id: str
    typing_user_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        self.typing_user_ids = frozenset(self.typing_user_ids)


@dataclass
class TransitionResult:
    """Outcome of feeding one indicator event to the tracker."""

    previous: TypingState
    current: TypingState

    @property
    def changed(self) -> bool:
        return self.previous is not self.current
