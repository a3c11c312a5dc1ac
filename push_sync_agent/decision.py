"""Decide which fetched messages deserve a local alert."""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Sequence

from .ledger import SeenLedger
from .models import Message, MessageStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FetchTrigger(str, Enum):
    """What caused a fetch. Only background triggers may alert."""
    TIMER = "timer"
    REALTIME = "realtime"
    MANUAL = "manual"

    @property
    def is_background(self) -> bool:
        return self in (FetchTrigger.TIMER, FetchTrigger.REALTIME)


class NotificationDecisionEngine:
    """
    Per-message alert decisions over the results of successful fetches.

    Logic:
    - The first batch of the process lifetime is a cold start: nothing alerts,
      and every alert-worthy message is marked seen so a backlog never floods.
    - Manual refreshes never alert.
    - Background fetches alert a message when its status is alert-worthy, it
      is not in the ledger, and its delivered (or last updated) time falls
      inside the trailing window.

    Claiming a message in the ledger happens in the same step as the check,
    with no suspension point in between, so overlapping fetches cannot both
    alert the same message.
    """

    def __init__(
        self,
        ledger: SeenLedger,
        alert_status: str = MessageStatus.SENT.value,
        window: timedelta = timedelta(minutes=2),
        clock: Clock = utc_now,
    ):
        self.ledger = ledger
        self.alert_status = alert_status
        self.window = window
        self.clock = clock
        self._initialized = False

    @property
    def initialized(self) -> bool:
        """Whether the cold-start batch has been seen."""
        return self._initialized

    def is_alert_worthy(self, message: Message) -> bool:
        return message.status == self.alert_status

    def decide(self, messages: Sequence[Message], trigger: FetchTrigger) -> List[Message]:
        """
        Decide which messages to alert for and claim them in the ledger.

        Args:
            messages: The complete result of one successful fetch.
            trigger: What caused the fetch.

        Returns:
            The messages that must be presented now, already marked seen.
        """
        if not self._initialized:
            self._initialized = True
            added = self.ledger.bulk_mark_seen(
                m.id for m in messages if self.is_alert_worthy(m)
            )
            logger.info(
                f"Initialized: {added} message(s) marked as seen "
                f"({len(self.ledger)} total, trigger={trigger.value})"
            )
            return []

        if not trigger.is_background:
            return []

        cutoff = self.clock() - self.window
        to_alert = []
        for message in messages:
            if not self.is_alert_worthy(message):
                continue
            if self.ledger.has_seen(message.id):
                continue
            sent_at = message.effective_timestamp
            if sent_at is None or sent_at <= cutoff:
                continue
            if self.ledger.mark_seen(message.id):
                logger.info(
                    f"{trigger.value.capitalize()} fetch found new '{self.alert_status}' "
                    f"message, alerting: {message.title}"
                )
                to_alert.append(message)
        return to_alert
