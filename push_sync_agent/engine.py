"""Message-state synchronization engine tying polling, realtime events and alerts together."""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Union

from .alerts import AlertPresenter
from .config import PollConfig
from .decision import Clock, FetchTrigger, NotificationDecisionEngine, utc_now
from .errors import PermissionDenied, ProtocolError, SyncError, TransientNetworkError
from .ledger import SeenLedger
from .models import Message
from .poller import PollHandle, PollScheduler
from .realtime import RealtimeHandle, RealtimeListener, RealtimeTransport
from .store import MessageStore, Snapshot, SnapshotObserver

logger = logging.getLogger(__name__)

FetchMessages = Callable[[], Awaitable[List[Message]]]


class SyncEngine:
    """
    Keeps one consistent view of the backend's messages and fires each alert once.

    Every fetch, whatever triggered it, goes through the decision engine
    before its result replaces the store and before any alert is presented.
    Everything runs on one event loop; the ledger claim inside the decision
    step is the only synchronization between overlapping fetches.
    """

    def __init__(
        self,
        fetch_messages: FetchMessages,
        presenter: AlertPresenter,
        poll_config: Optional[PollConfig] = None,
        transport: Optional[RealtimeTransport] = None,
        fetch_timeout: float = 10.0,
        clock: Clock = utc_now,
    ):
        self.poll_config = poll_config or PollConfig()
        self.fetch_messages = fetch_messages
        self.presenter = presenter
        self.transport = transport
        self.fetch_timeout = fetch_timeout

        self.store = MessageStore()
        self.ledger = SeenLedger()
        self.decisions = NotificationDecisionEngine(
            self.ledger,
            alert_status=self.poll_config.alert_status,
            window=timedelta(seconds=self.poll_config.alert_window_seconds),
            clock=clock,
        )
        self.scheduler = PollScheduler()
        self.listener = RealtimeListener(
            self.store,
            self.ledger,
            on_ready=self._on_realtime_ready,
            ready_status=self.poll_config.alert_status,
        )

        self.alerts_enabled = True
        self._poll_handle: Optional[PollHandle] = None
        self._realtime_handle: Optional[RealtimeHandle] = None
        self._realtime_fetches: Set[asyncio.Task] = set()
        self._stopped = False

    # UI-facing surface
    def snapshot(self) -> Snapshot:
        return self.store.snapshot()

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        """Register a callback for every snapshot change; returns an unsubscribe callable."""
        return self.store.subscribe(observer)

    async def refresh(self) -> Snapshot:
        """
        User-initiated refresh. Never alerts.

        Raises:
            TransientNetworkError: On timeout or connection failure.
            ProtocolError: On a non-success response.
        """
        await self._fetch_and_apply(FetchTrigger.MANUAL)
        return self.snapshot()

    async def preview(self, message: Union[Message, str]) -> Message:
        """
        Present a message immediately, bypassing the decision engine and ledger.

        Raises:
            KeyError: If a message id is given that the store does not know.
            PermissionDenied: If the presenter cannot deliver alerts.
        """
        if isinstance(message, str):
            found = self.store.get(message)
            if found is None:
                raise KeyError(f"Unknown message id: {message}")
            message = found
        await asyncio.to_thread(self.presenter.present, message.title, message.body, message.id)
        return message

    # Lifecycle
    async def start(self) -> None:
        """Start polling (its first tick is the cold-start fetch) and the realtime listener."""
        self._stopped = False
        if self._poll_handle is None:
            self._poll_handle = self.scheduler.start(
                self.poll_config.interval_seconds, self._on_poll_tick, name="messages"
            )
        if self.transport is not None and self._realtime_handle is None:
            self._realtime_handle = await self.listener.connect(self.transport)

    async def stop(self) -> None:
        """
        Stop polling and realtime updates, then let in-flight fetches finish. Idempotent.

        Nothing is merged or presented after this returns.
        """
        self._stopped = True
        handle = self._poll_handle
        self.scheduler.stop(handle)
        await self.listener.disconnect(self._realtime_handle)
        if handle is not None:
            await handle.wait_idle()
        if self._realtime_fetches:
            await asyncio.gather(*list(self._realtime_fetches), return_exceptions=True)

    async def __aenter__(self) -> "SyncEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # Fetch paths
    async def _on_poll_tick(self) -> None:
        # decide() spots the cold start itself, whichever fetch lands first
        await self.background_fetch(FetchTrigger.TIMER)

    async def _on_realtime_ready(self, message_id: str) -> None:
        if self._stopped:
            logger.debug(f"Engine stopped; not fetching for realtime update of {message_id}")
            return
        task = asyncio.create_task(
            self.background_fetch(FetchTrigger.REALTIME), name=f"realtime-fetch-{message_id}"
        )
        self._realtime_fetches.add(task)
        task.add_done_callback(self._realtime_fetches.discard)
        await task

    async def background_fetch(self, trigger: FetchTrigger) -> bool:
        """
        Fetch triggered by the timer or a realtime event. Failures are logged only.

        Returns:
            True if the fetch succeeded.
        """
        try:
            await self._fetch_and_apply(trigger)
        except ProtocolError as e:
            logger.warning(
                f"Background fetch ({trigger.value}) rejected: {e} "
                f"(status={e.status_code}, detail={e.detail!r})"
            )
            return False
        except SyncError as e:
            logger.warning(f"Background fetch ({trigger.value}) failed: {e}")
            return False
        return True

    async def _fetch(self) -> List[Message]:
        try:
            return await asyncio.wait_for(self.fetch_messages(), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"Fetch timed out after {self.fetch_timeout:g}s") from e

    async def _fetch_and_apply(self, trigger: FetchTrigger) -> None:
        messages = await self._fetch()
        # No suspension point between deciding and merging
        to_alert = self.decisions.decide(messages, trigger)
        self.store.merge(messages)
        logger.debug(f"{trigger.value} fetch: {len(messages)} message(s), {len(to_alert)} alert(s)")
        await self._present_all(to_alert)

    async def _present_all(self, messages: Sequence[Message]) -> None:
        for message in messages:
            if not self.alerts_enabled:
                logger.info(f"Alerts disabled; message {message.id} stays list-only")
                continue
            try:
                await asyncio.to_thread(self.presenter.present, message.title, message.body, message.id)
            except PermissionDenied as e:
                self.alerts_enabled = False
                logger.error(f"Alert permission denied, disabling local alerts: {e}")
            except Exception as e:
                logger.error(f"Failed to present alert for message {message.id}: {e}", exc_info=True)
