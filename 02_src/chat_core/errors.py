"""Error taxonomy of the conversation sync engine."""

from .models import Message


class ChatSyncError(Exception):
    """Base class for all engine errors."""


class InvalidStateError(ChatSyncError):
    """Engine used outside its activation window."""


class NotFoundError(ChatSyncError):
    """Reconciliation target is missing, most likely because of a race.

    When the confirmed message could still be placed (appended), it is
    attached as ``confirmed`` and the resulting canonical sequence as
    ``messages``.
    """

    def __init__(
        self,
        message: str,
        local_key: str | None = None,
        messages: list[Message] | None = None,
        confirmed: Message | None = None,
    ):
        super().__init__(message)
        self.local_key = local_key
        self.messages = messages
        self.confirmed = confirmed


class FetchFailedError(ChatSyncError):
    """A fetch collaborator reported an error."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class SendFailedError(ChatSyncError):
    """The send collaborator reported an error. The pending entry stays."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        pending: Message | None = None,
    ):
        super().__init__(message)
        self.cause = cause
        self.pending = pending
