from unittest.mock import AsyncMock, MagicMock

import pytest
from socketio.exceptions import ConnectionError as SocketIOConnectionError

from conftest import T0, make_message
from push_sync_agent.ledger import SeenLedger
from push_sync_agent.realtime import RealtimeListener, RealtimeTransport, SocketIOTransport
from push_sync_agent.store import MessageStore


class FakeTransport(RealtimeTransport):
    def __init__(self):
        super().__init__()
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self):
        self.connect_calls += 1

    async def disconnect(self):
        self.disconnect_calls += 1


@pytest.fixture
def store():
    store = MessageStore()
    store.merge([make_message("a", status="Scheduled")])
    return store


@pytest.fixture
def ledger():
    return SeenLedger()


@pytest.fixture
def on_ready():
    return AsyncMock()


@pytest.fixture
def listener(store, ledger, on_ready):
    return RealtimeListener(store, ledger, on_ready)


@pytest.mark.asyncio
async def test_event_patches_store_and_triggers_fetch(listener, store, on_ready):
    await listener.handle_event({"messageId": "a", "status": "Sent", "deliveredAt": "2024-05-01T12:00:00Z"})

    assert store.get("a").status == "Sent"
    assert store.get("a").delivered_at == T0
    on_ready.assert_awaited_once_with("a")


@pytest.mark.asyncio
async def test_event_without_delivered_at_keeps_existing_value(store, ledger, on_ready):
    store.merge([make_message("a", status="Scheduled", delivered_at=T0)])
    listener = RealtimeListener(store, ledger, on_ready)

    await listener.handle_event({"messageId": "a", "status": "Failed"})

    assert store.get("a").status == "Failed"
    assert store.get("a").delivered_at == T0
    on_ready.assert_not_awaited()


@pytest.mark.asyncio
async def test_seen_message_does_not_trigger_fetch(listener, ledger, on_ready):
    ledger.mark_seen("a")
    await listener.handle_event({"messageId": "a", "status": "Sent"})
    on_ready.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_message_still_triggers_fetch(listener, store, on_ready):
    await listener.handle_event({"messageId": "b", "status": "Sent"})

    assert "b" not in store
    on_ready.assert_awaited_once_with("b")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, "Sent", {"status": "Sent"}, {"messageId": "a"}])
async def test_malformed_events_are_dropped(listener, store, on_ready, payload):
    await listener.handle_event(payload)

    assert store.get("a").status == "Scheduled"
    on_ready.assert_not_awaited()


@pytest.mark.asyncio
async def test_connect_wires_callbacks_and_disconnect_is_idempotent(listener, on_ready):
    transport = FakeTransport()
    handle = await listener.connect(transport)

    assert transport.connect_calls == 1
    await transport.on_connect()
    assert listener.connected
    await transport.on_connect_error("refused")
    await transport.on_event({"messageId": "a", "status": "Sent"})
    on_ready.assert_awaited_once()

    await handle.close()
    await listener.disconnect(handle)
    await listener.disconnect(None)
    assert transport.disconnect_calls == 1
    assert not listener.connected


@pytest.mark.asyncio
async def test_socketio_transport_disconnect_before_connect_is_safe():
    client = MagicMock()
    client.shutdown = AsyncMock()
    transport = SocketIOTransport("http://localhost:3001", client=client)

    await transport.disconnect()
    await transport.disconnect()

    client.shutdown.assert_awaited_once()
    registered = [call.args[0] for call in client.on.call_args_list]
    assert registered == ["connect", "connect_error", "disconnect", "statusUpdate"]


@pytest.mark.asyncio
async def test_socketio_transport_forwards_events():
    client = MagicMock()
    transport = SocketIOTransport("http://localhost:3001", client=client)
    transport.on_event = AsyncMock()

    handlers = {call.args[0]: call.args[1] for call in client.on.call_args_list}
    await handlers["statusUpdate"]({"messageId": "a", "status": "Sent"})

    transport.on_event.assert_awaited_once_with({"messageId": "a", "status": "Sent"})


@pytest.mark.asyncio
async def test_socketio_transport_retries_initial_connect_without_duplicate_error():
    client = MagicMock()
    client.connect = AsyncMock(side_effect=[SocketIOConnectionError("refused"), None])
    client.shutdown = AsyncMock()
    transport = SocketIOTransport("http://localhost:3001", retry_delay=0, client=client)
    transport.on_connect_error = AsyncMock()

    await transport.connect()
    await transport._connect_task

    assert client.connect.await_count == 2
    transport.on_connect_error.assert_not_awaited()
    await transport.disconnect()
