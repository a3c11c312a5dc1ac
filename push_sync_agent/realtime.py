"""Realtime status events over a persistent push connection."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import socketio
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from .ledger import SeenLedger
from .models import MessageStatus, StatusEvent
from .store import MessageStore

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[str], Awaitable[None]]


class RealtimeTransport(ABC):
    """
    Abstract push connection.

    The listener installs the callbacks before calling `connect()`.
    Reconnecting after a lost connection is the transport's job.
    """

    def __init__(self):
        self.on_connect: Optional[Callable[[], Awaitable[None]]] = None
        self.on_event: Optional[Callable[[Any], Awaitable[None]]] = None
        self.on_connect_error: Optional[Callable[[Any], Awaitable[None]]] = None
        self.on_disconnect: Optional[Callable[[], Awaitable[None]]] = None

    @abstractmethod
    async def connect(self) -> None:
        """Start connecting. Must not raise for an unreachable server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. Safe to call repeatedly or before connecting."""
        pass


class SocketIOTransport(RealtimeTransport):
    """Socket.IO client connection to the backend's realtime server."""

    def __init__(
        self,
        url: str,
        event_name: str = "statusUpdate",
        retry_delay: float = 5.0,
        client: Optional[socketio.AsyncClient] = None,
    ):
        super().__init__()
        self.url = url
        self.event_name = event_name
        self.retry_delay = retry_delay
        self._sio = client or socketio.AsyncClient(reconnection=True, logger=False)
        self._connect_task: Optional[asyncio.Task] = None
        self._closed = False

        self._sio.on("connect", self._handle_connect)
        self._sio.on("connect_error", self._handle_connect_error)
        self._sio.on("disconnect", self._handle_disconnect)
        self._sio.on(event_name, self._handle_event)

    async def _handle_connect(self) -> None:
        if self.on_connect:
            await self.on_connect()

    async def _handle_connect_error(self, data: Any = None) -> None:
        if self.on_connect_error:
            await self.on_connect_error(data)

    async def _handle_disconnect(self, *args) -> None:
        if self.on_disconnect:
            await self.on_disconnect()

    async def _handle_event(self, payload: Any = None) -> None:
        if self.on_event:
            await self.on_event(payload)

    async def connect(self) -> None:
        if self._closed or self._connect_task is not None:
            return
        self._connect_task = asyncio.create_task(self._connect_loop(), name="socketio-connect")

    async def _connect_loop(self) -> None:
        # socketio only reconnects connections that were established once
        while not self._closed:
            try:
                await self._sio.connect(self.url)
                return
            except SocketIOConnectionError as e:
                # socketio has already emitted connect_error for this failure
                logger.debug(f"Initial connect to {self.url} failed ({e}); retrying in {self.retry_delay:g}s")
                await asyncio.sleep(self.retry_delay)

    async def disconnect(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
        await self._sio.shutdown()


class RealtimeHandle:
    """An established listener registration; close it to stop receiving events."""

    def __init__(self, listener: "RealtimeListener", transport: RealtimeTransport):
        self.listener = listener
        self.transport = transport
        self.closed = False

    async def close(self) -> None:
        await self.listener.disconnect(self)


class RealtimeListener:
    """
    Applies realtime status events to the store.

    When an event moves a message into the ready-to-notify status and the
    message has not been alerted yet, `on_ready` is awaited so a full fetch
    can load its content before any alert decision. Lost events are covered
    by the next poll.
    """

    def __init__(
        self,
        store: MessageStore,
        ledger: SeenLedger,
        on_ready: ReadyCallback,
        ready_status: str = MessageStatus.SENT.value,
    ):
        self.store = store
        self.ledger = ledger
        self.on_ready = on_ready
        self.ready_status = ready_status
        self.connected = False

    async def connect(self, transport: RealtimeTransport) -> RealtimeHandle:
        transport.on_connect = self._handle_connect
        transport.on_event = self.handle_event
        transport.on_connect_error = self._handle_connect_error
        transport.on_disconnect = self._handle_disconnect
        await transport.connect()
        return RealtimeHandle(self, transport)

    async def disconnect(self, handle: Optional[RealtimeHandle]) -> None:
        """Tear down a connection. Safe to call repeatedly and before connecting."""
        if handle is None or handle.closed:
            return
        handle.closed = True
        try:
            await handle.transport.disconnect()
        except Exception as e:
            logger.warning(f"Error while disconnecting realtime transport: {e}")
        self.connected = False

    async def _handle_connect(self) -> None:
        self.connected = True
        logger.info("Realtime connection established")

    async def _handle_disconnect(self) -> None:
        self.connected = False
        logger.info("Realtime connection lost; polling continues")

    async def _handle_connect_error(self, error: Any) -> None:
        logger.warning(f"Realtime connection error: {error}")

    async def handle_event(self, payload: Any) -> None:
        """Apply one status event and fetch full content when it became ready to notify."""
        try:
            event = StatusEvent.from_payload(payload)
        except ValueError as e:
            logger.warning(f"Ignoring malformed realtime event: {e}")
            return

        logger.info(f"Realtime update received: {event.message_id} {event.status}")
        fields = {"status": event.status}
        if event.delivered_at is not None:
            fields["delivered_at"] = event.delivered_at
        self.store.apply_partial(event.message_id, **fields)

        if event.status == self.ready_status and not self.ledger.has_seen(event.message_id):
            logger.info(f"Status changed to {event.status}, triggering immediate content fetch...")
            await self.on_ready(event.message_id)
