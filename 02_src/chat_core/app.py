"""Application bootstrap and lifecycle management."""

import os
from typing import Protocol

from .config import SyncSettings, resolve_db_path
from .engine import ConversationSyncEngine
from .logging_config import get_logger
from .models import Conversation, UserConversation
from .services import ChatServices
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Drop conversation state and recorded traces."""
        ...

    @property
    def engine(self) -> ConversationSyncEngine:
        """The started engine."""
        ...

    @property
    def storage(self) -> IStorage:
        """The started trace store."""
        ...


class Application:
    """Wires trace store, tracker and sync engine for one local user."""

    def __init__(
        self,
        services: ChatServices,
        self_id: str,
        db_path: str | None = None,
        settings: SyncSettings | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._services = services
        self._self_id = self_id
        self._settings = settings or SyncSettings.from_env()

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._tracker: ITracker | None = None
        self._engine: ConversationSyncEngine | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Trace storage initialized")

        # 2. Tracker (depends on Storage)
        self._tracker = Tracker(self._storage)

        # 3. Engine (depends on collaborators + Tracker)
        self._engine = ConversationSyncEngine(
            services=self._services,
            self_id=self._self_id,
            settings=self._settings,
            tracker=self._tracker,
        )
        logger.info("Sync engine created for %s", self._self_id)

    async def open_conversation(
        self,
        user_conversation: UserConversation,
        conversation: Conversation | None = None,
    ) -> None:
        """Activate the engine on a conversation."""
        await self.engine.activate(conversation, user_conversation)

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._engine:
            await self._engine.deactivate()
            await self._engine.drain()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Drop conversation state and recorded traces."""
        if self._engine:
            await self._engine.reset()
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def engine(self) -> ConversationSyncEngine:
        """Get sync engine instance."""
        if not self._engine:
            raise RuntimeError("Application not started")
        return self._engine

    @property
    def tracker(self) -> ITracker:
        """Get tracker instance."""
        if not self._tracker:
            raise RuntimeError("Application not started")
        return self._tracker
