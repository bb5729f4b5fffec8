"""ParticipantDirectory: lazily filled profile cache."""

from typing import Iterable, Protocol

from ..errors import FetchFailedError
from ..logging_config import get_logger
from ..models import Message, Profile
from ..services import IProfileFetcher

logger = get_logger(__name__)


class IParticipantDirectory(Protocol):
    """Resolves user ids to profiles."""

    async def resolve(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        """Fetch missing profiles, return the requested mapping."""
        ...

    def get(self, user_id: str) -> Profile | None:
        """Cache read, never touches the network."""
        ...


class ParticipantDirectory:
    """Profile cache. Entries are never evicted, only overwritten on re-fetch."""

    def __init__(self, fetcher: IProfileFetcher):
        self._fetcher = fetcher
        self._profiles: dict[str, Profile] = {}

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._profiles

    @property
    def is_empty(self) -> bool:
        return not self._profiles

    def get(self, user_id: str) -> Profile | None:
        return self._profiles.get(user_id)

    async def resolve(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        requested = set(user_ids)
        missing = requested - self._profiles.keys()

        if missing:
            try:
                fetched = await self._fetcher.fetch_profiles(sorted(missing))
            except Exception as e:
                logger.error("Failed to fetch participants: %s", e)
                raise FetchFailedError("Failed to fetch participants", cause=e) from e

            self._profiles.update(fetched)
            unknown = missing - fetched.keys()
            if unknown:
                logger.warning("No profile for participants: %s", sorted(unknown))

        return {uid: self._profiles[uid] for uid in requested if uid in self._profiles}

    def display_name(self, user_id: str, default: str | None = None) -> str | None:
        """Display name of a cached participant, or default."""
        profile = self._profiles.get(user_id)
        if profile is None or not profile.display_name:
            return default
        return profile.display_name

    def sender_for(self, message: Message) -> Profile | None:
        """Cached profile of the message's creator."""
        if not self._profiles:
            logger.warning("No participants are fetched")
            return None
        return self._profiles.get(message.creator_id)

    def clear(self) -> None:
        self._profiles.clear()
