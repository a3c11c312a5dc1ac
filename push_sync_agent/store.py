"""In-memory store of the messages currently known to the client."""

import dataclasses
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import Message

logger = logging.getLogger(__name__)

Snapshot = Tuple[Message, ...]
SnapshotObserver = Callable[[Snapshot], None]

_PATCHABLE_FIELDS = {f.name for f in dataclasses.fields(Message)} - {"id"}


class MessageStore:
    """
    Messages keyed by id, in arrival order.

    A full fetch replaces the whole collection; realtime events patch single
    fields of messages that are already known. Observers are told about every
    change with the new snapshot.
    """

    def __init__(self):
        self._messages: Dict[str, Message] = {}
        self._observers: List[SnapshotObserver] = []

    def merge(self, messages: Sequence[Message]) -> None:
        """
        Replace the known set with the result of a full fetch.

        A repeated id keeps the position of its first occurrence and the
        content of its last.
        """
        replacement: Dict[str, Message] = {}
        for message in messages:
            replacement[message.id] = message
        self._messages = replacement
        self._notify()

    def apply_partial(self, message_id: str, **fields) -> bool:
        """
        Update only the given fields of one known message.

        Unknown ids are ignored; the message arrives in full with the next fetch.

        Returns:
            True if the stored message changed.

        Raises:
            TypeError: If a field name is not a Message field.
        """
        unknown = set(fields) - _PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot patch message fields: {', '.join(sorted(unknown))}")

        current = self._messages.get(message_id)
        if current is None:
            logger.debug(f"Partial update for unknown message {message_id}; waiting for next fetch")
            return False

        updated = dataclasses.replace(current, **fields)
        if updated == current:
            return False
        self._messages[message_id] = updated
        self._notify()
        return True

    def get(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    def snapshot(self) -> Snapshot:
        """Current messages in arrival order. Tuples and frozen messages keep it read-only."""
        return tuple(self._messages.values())

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        """
        Register an observer called with every new snapshot.

        Returns:
            A callable that removes the observer again.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as e:
                logger.error(f"Snapshot observer {observer!r} failed: {e}", exc_info=True)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)
