"""SIM implementation - scripted participants for a local conversation."""

import asyncio
import random
from typing import Protocol

from chat_core.logging_config import get_logger
from chat_core.models import Conversation, Profile
from chat_core.tracker import ITracker

from .backend import SimBackend

logger = get_logger(__name__)


class ISim(Protocol):
    """Generate conversation traffic from virtual participants."""

    async def start(self) -> None:
        """Start scripted scenario."""
        ...

    async def stop(self) -> None:
        """Stop scenario."""
        ...


VIRTUAL_USERS = [
    Profile(user_id="user_001", display_name="Alice"),
    Profile(user_id="user_002", display_name="Bob"),
    Profile(user_id="user_003", display_name="Charlie"),
]

SCRIPT = [
    ["Hi! How is it going?", "Can you help with a task?", "Thanks for the help!"],
    ["Hello everyone", "I have a question", "Got it, thanks"],
    ["Good afternoon", "I need a hand", "Great, sorted it out"],
]


class Sim:
    """Virtual participants that type and post in turns."""

    def __init__(
        self,
        backend: SimBackend,
        conversation: Conversation,
        tracker: ITracker | None = None,
        delay_range: tuple[float, float] = (1.0, 3.0),
        typing_time: float = 1.5,
    ):
        self._backend = backend
        self._conversation = conversation
        self._tracker = tracker
        self._delay_range = delay_range
        self._typing_time = typing_time
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    def set_tracker(self, tracker: ITracker) -> None:
        """Inject tracker for SIM trace events."""
        self._tracker = tracker

    async def on_application_started(self, application) -> None:
        """Hook used by the API lifespan: attach tracker, open conversation."""
        self.set_tracker(application.tracker)
        user_conversation = self._backend.user_conversation(
            self._conversation.id, application.engine.self_id
        )
        await application.open_conversation(user_conversation)

    async def start(self) -> None:
        """Start scripted scenario."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_scenario())

    async def stop(self) -> None:
        """Stop scenario."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_scenario(self) -> None:
        conversation_id = self._conversation.id
        message_count = sum(len(lines) for lines in SCRIPT)

        try:
            if self._tracker:
                await self._tracker.track(
                    "sim_started",
                    "sim",
                    {"conversation_id": conversation_id, "message_count": message_count},
                )

            for round_idx in range(max(len(lines) for lines in SCRIPT)):
                if not self._running:
                    break

                for user, lines in zip(VIRTUAL_USERS, SCRIPT):
                    if not self._running:
                        break
                    if round_idx >= len(lines):
                        continue

                    await self._backend.set_typing(conversation_id, user.user_id, True)
                    await asyncio.sleep(self._typing_time)
                    await self._backend.set_typing(conversation_id, user.user_id, False)

                    message = await self._backend.post(
                        conversation_id, user.user_id, lines[round_idx]
                    )
                    logger.info("SIM: %s -> %s", user.display_name, message.body)

                    await asyncio.sleep(random.uniform(*self._delay_range))

        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("SIM scenario error: %s", e)
        finally:
            if self._tracker:
                await self._tracker.track(
                    "sim_completed",
                    "sim",
                    {"conversation_id": conversation_id, "message_count": message_count},
                )
