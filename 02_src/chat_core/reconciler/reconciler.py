"""MessageReconciler: merges history, realtime events and pending sends."""

import dataclasses
from dataclasses import dataclass
from typing import Protocol

from ..errors import NotFoundError
from ..logging_config import get_logger
from ..models import Message, RecordChangeEvent
from ..receipts import IReceiptDispatcher

logger = get_logger(__name__)


@dataclass
class ReconcileDiagnostic:
    """A non-fatal anomaly observed while reconciling."""

    kind: str  # "update_unmatched", "delete_unmatched", "pending_not_found"
    message_id: str | None
    local_key: str | None = None


class IMessageReconciler(Protocol):
    """Owner of the canonical message sequence."""

    @property
    def messages(self) -> list[Message]:
        """Current canonical sequence (copy)."""
        ...

    def apply_historical_page(
        self, messages: list[Message], is_first_page: bool
    ) -> list[Message]:
        """Prepend a newest-first page in chronological order."""
        ...

    def apply_realtime_event(
        self, kind: RecordChangeEvent, message: Message
    ) -> list[Message]:
        """Apply a create/update/delete pushed by the server."""
        ...

    def submit_pending_send(self, message: Message) -> list[Message]:
        """Append an optimistic, not yet confirmed message."""
        ...

    def resolve_pending_send(self, local_key: str, confirmed: Message) -> list[Message]:
        """Swap a pending message for its confirmed record."""
        ...


class MessageReconciler:
    """Keeps one ordered, duplicate-free message list for a conversation.

    Order is insertion position only: historical pages are prepended and
    everything else is appended or replaced in place. Entries are matched by
    server id, falling back to ``local_key`` for entries still pending.
    Every operation returns a fresh copy of the canonical sequence.
    """

    def __init__(self, receipts: IReceiptDispatcher):
        self._receipts = receipts
        self._messages: list[Message] = []
        self._issued_keys: set[str] = set()
        self._first_page_marked = False
        self._diagnostics: list[ReconcileDiagnostic] = []

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def drain_diagnostics(self) -> list[ReconcileDiagnostic]:
        """Return and forget diagnostics collected since the last drain."""
        diagnostics, self._diagnostics = self._diagnostics, []
        return diagnostics

    def clear(self) -> None:
        """Forget all state, as if freshly constructed."""
        self._messages.clear()
        self._issued_keys.clear()
        self._diagnostics.clear()
        self._first_page_marked = False

    def apply_historical_page(
        self, messages: list[Message], is_first_page: bool
    ) -> list[Message]:
        held_ids = {m.id for m in self._messages if m.id is not None}
        chronological: list[Message] = []
        for message in reversed(messages):
            if message.id is not None:
                if message.id in held_ids:
                    logger.debug("Skipping already held message %s", message.id)
                    continue
                held_ids.add(message.id)
            chronological.append(message)

        self._messages[:0] = chronological

        if is_first_page and messages and not self._first_page_marked:
            self._first_page_marked = True
            self._receipts.mark_read(list(messages))
            # pages are newest first
            self._receipts.mark_last_read(messages[0])

        return self.messages

    def apply_realtime_event(
        self, kind: RecordChangeEvent, message: Message
    ) -> list[Message]:
        idx = self._index_of(message)

        if kind is RecordChangeEvent.CREATE:
            if idx is None:
                self._messages.append(message)
            else:
                self._messages[idx] = self._merge(self._messages[idx], message)
            self._receipts.mark_read([message])
            self._receipts.mark_last_read(message)

        elif kind is RecordChangeEvent.UPDATE:
            if idx is None:
                self._diagnose("update_unmatched", message.id, message.local_key)
            else:
                self._messages[idx] = self._merge(self._messages[idx], message)

        elif kind is RecordChangeEvent.DELETE:
            if idx is None:
                self._diagnose("delete_unmatched", message.id, message.local_key)
            else:
                del self._messages[idx]

        return self.messages

    def submit_pending_send(self, message: Message) -> list[Message]:
        if message.id is not None:
            raise ValueError("Pending message must not carry a server id")
        if not message.local_key:
            raise ValueError("Pending message needs a local_key")
        if self._pending_index(message.local_key) is not None:
            raise ValueError(f"Message {message.local_key} is already pending")

        self._issued_keys.add(message.local_key)
        self._messages.append(message)
        return self.messages

    def resolve_pending_send(self, local_key: str, confirmed: Message) -> list[Message]:
        """Replace the pending entry for local_key with confirmed.

        Raises NotFoundError when no pending entry exists. If the key was
        issued here and its entry vanished (a realtime DELETE won the race),
        the confirmed message is appended first and the resulting sequence is
        attached to the error.
        """
        pending_idx = self._pending_index(local_key)
        if pending_idx is not None:
            self._issued_keys.discard(local_key)
            held_idx = self._id_index(confirmed.id)
            if held_idx is not None and held_idx != pending_idx:
                # realtime CREATE without local_key got here first
                self._messages[held_idx] = self._merge(self._messages[held_idx], confirmed)
                del self._messages[pending_idx]
            else:
                self._messages[pending_idx] = confirmed
            return self.messages

        if local_key not in self._issued_keys:
            self._diagnose("pending_not_found", confirmed.id, local_key)
            raise NotFoundError(f"No pending message for {local_key}", local_key=local_key)

        self._issued_keys.discard(local_key)
        held_idx = self._id_index(confirmed.id)
        if held_idx is not None:
            # already replaced by the server echo of this send
            self._messages[held_idx] = self._merge(self._messages[held_idx], confirmed)
            return self.messages

        self._messages.append(confirmed)
        self._diagnose("pending_not_found", confirmed.id, local_key)
        raise NotFoundError(
            f"Pending message {local_key} was removed before confirmation",
            local_key=local_key,
            messages=self.messages,
            confirmed=confirmed,
        )

    def _index_of(self, message: Message) -> int | None:
        idx = self._id_index(message.id)
        if idx is None and message.local_key:
            idx = self._pending_index(message.local_key)
        return idx

    def _id_index(self, message_id: str | None) -> int | None:
        if message_id is None:
            return None
        for i, held in enumerate(self._messages):
            if held.id == message_id:
                return i
        return None

    def _pending_index(self, local_key: str) -> int | None:
        for i, held in enumerate(self._messages):
            if held.id is None and held.local_key == local_key:
                return i
        return None

    @staticmethod
    def _merge(existing: Message, incoming: Message) -> Message:
        """Take incoming, but never regress a confirmed delivery status."""
        merged = incoming
        if (
            existing.id is not None
            and incoming.delivery_status.rank < existing.delivery_status.rank
        ):
            merged = dataclasses.replace(merged, delivery_status=existing.delivery_status)
        if merged.local_key is None and existing.local_key is not None:
            merged = dataclasses.replace(merged, local_key=existing.local_key)
        return merged

    def _diagnose(self, kind: str, message_id: str | None, local_key: str | None) -> None:
        logger.warning(
            "Reconcile %s: id=%s local_key=%s",
            kind,
            message_id,
            local_key,
            extra={"message_id": message_id, "local_key": local_key},
        )
        self._diagnostics.append(ReconcileDiagnostic(kind, message_id, local_key))
