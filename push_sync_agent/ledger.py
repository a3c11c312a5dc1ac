"""In-memory ledger of message ids that have already been alerted."""

import logging
from typing import Iterable, Set

logger = logging.getLogger(__name__)


class SeenLedger:
    """
    Set of message ids for which a local alert has fired or been suppressed.

    Grows for the lifetime of the process and is never pruned or persisted.
    """

    def __init__(self):
        self._seen: Set[str] = set()

    def has_seen(self, message_id: str) -> bool:
        return message_id in self._seen

    def mark_seen(self, message_id: str) -> bool:
        """
        Mark a message id as seen.

        Returns:
            True if this call inserted the id, False if it was already present.
        """
        if message_id in self._seen:
            return False
        self._seen.add(message_id)
        return True

    def bulk_mark_seen(self, message_ids: Iterable[str]) -> int:
        """
        Mark several message ids as seen.

        Returns:
            How many ids were newly inserted.
        """
        before = len(self._seen)
        self._seen.update(message_ids)
        added = len(self._seen) - before
        logger.debug(f"Marked {added} message(s) as seen ({len(self._seen)} total)")
        return added

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
