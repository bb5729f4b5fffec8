"""TypingIndicatorTracker: debounced show/hide state machine."""

import asyncio
from typing import Callable, Iterable, Protocol

from ..config import DEFAULT_TYPING_INDICATOR_SHOW_DURATION
from ..logging_config import get_logger
from ..models import TransitionResult, TypingState

logger = get_logger(__name__)


TypingChangeHandler = Callable[[TypingState], None]


class ITypingIndicatorTracker(Protocol):
    """Turns typing snapshots into edge-triggered visibility changes."""

    @property
    def state(self) -> TypingState:
        """Current visibility."""
        ...

    def on_indicator_event(
        self, typing_user_ids: Iterable[str], self_id: str
    ) -> TransitionResult:
        """Feed one snapshot, restart the hide timer."""
        ...

    def cancel(self) -> None:
        """Cancel the hide timer and hide."""
        ...


class TypingIndicatorTracker:
    """Shows the indicator while others type, hides it after a quiet period.

    At most one hide timer is outstanding; every event cancels the previous
    one and starts a new one. The change handler only hears real transitions.
    """

    def __init__(
        self,
        show_duration: float = DEFAULT_TYPING_INDICATOR_SHOW_DURATION,
        on_change: TypingChangeHandler | None = None,
    ):
        self._show_duration = show_duration
        self._on_change = on_change
        self._state = TypingState.HIDDEN
        self._hide_task: asyncio.Task | None = None

    @property
    def state(self) -> TypingState:
        return self._state

    @property
    def visible(self) -> bool:
        return self._state is TypingState.SHOWN

    @property
    def timer_pending(self) -> bool:
        return self._hide_task is not None and not self._hide_task.done()

    def set_change_handler(self, handler: TypingChangeHandler | None) -> None:
        self._on_change = handler

    def on_indicator_event(
        self, typing_user_ids: Iterable[str], self_id: str
    ) -> TransitionResult:
        self._cancel_timer()

        others = set(typing_user_ids) - {self_id}
        result = self._transition(TypingState.SHOWN if others else TypingState.HIDDEN)

        self._hide_task = asyncio.get_running_loop().create_task(
            self._hide_after(self._show_duration)
        )
        return result

    def cancel(self) -> None:
        self._cancel_timer()
        self._transition(TypingState.HIDDEN)

    async def _hide_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._hide_task = None
        self._transition(TypingState.HIDDEN)

    def _cancel_timer(self) -> None:
        if self._hide_task is not None:
            self._hide_task.cancel()
            self._hide_task = None

    def _transition(self, target: TypingState) -> TransitionResult:
        previous = self._state
        if target is previous:
            return TransitionResult(previous, previous)

        self._state = target
        logger.debug("Typing indicator %s -> %s", previous.value, target.value)

        if self._on_change is not None:
            try:
                self._on_change(target)
            except Exception as e:
                logger.error("Typing change handler failed: %s", e, exc_info=True)

        return TransitionResult(previous, target)
