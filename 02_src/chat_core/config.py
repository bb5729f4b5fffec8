"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "chat_trace.db"
DEFAULT_LOG_PATH = LOGS_DIR / "chat.log"

DEFAULT_MESSAGES_FETCH_LIMIT = 25
DEFAULT_TYPING_INDICATOR_SHOW_DURATION = 5.0
DEFAULT_SELF_DISPLAY_NAME = "me"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass
class SyncSettings:
    """Tunables of a ConversationSyncEngine."""

    messages_fetch_limit: int = DEFAULT_MESSAGES_FETCH_LIMIT
    typing_indicator_show_duration: float = DEFAULT_TYPING_INDICATOR_SHOW_DURATION
    self_display_name: str = DEFAULT_SELF_DISPLAY_NAME

    def __post_init__(self) -> None:
        if self.messages_fetch_limit < 1:
            raise ValueError("messages_fetch_limit must be positive")
        if self.typing_indicator_show_duration < 0:
            raise ValueError("typing_indicator_show_duration must not be negative")

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from MESSAGES_FETCH_LIMIT and TYPING_INDICATOR_SHOW_DURATION."""
        return cls(
            messages_fetch_limit=int(
                os.getenv("MESSAGES_FETCH_LIMIT", DEFAULT_MESSAGES_FETCH_LIMIT)
            ),
            typing_indicator_show_duration=float(
                os.getenv(
                    "TYPING_INDICATOR_SHOW_DURATION",
                    DEFAULT_TYPING_INDICATOR_SHOW_DURATION,
                )
            ),
            self_display_name=os.getenv(
                "SELF_DISPLAY_NAME", DEFAULT_SELF_DISPLAY_NAME
            ),
        )
