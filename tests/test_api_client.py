import json

import httpx
import pytest

from conftest import T0
from push_sync_agent.api_client import BackendClient
from push_sync_agent.config import ApiConfig, DeviceConfig
from push_sync_agent.decision import FetchTrigger
from push_sync_agent.engine import SyncEngine
from push_sync_agent.errors import ProtocolError, TransientNetworkError

BASE = "http://backend.test"


def _config():
    return ApiConfig(
        base_url=BASE,
        push_messages_endpoint=f"{BASE}/api/push-messages",
        device_register_endpoint=f"{BASE}/api/device/register",
        immediate_notification_endpoint=f"{BASE}/api/push-messages/immediate",
        request_timeout=1.0,
        health_timeout=2.0,
    )


def _client(handler):
    return BackendClient(_config(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


MESSAGE = {
    "_id": "abc",
    "title": "Hydrate",
    "content": "Drink water",
    "status": "Sent",
    "scheduledDateTime": "2024-05-01T11:00:00Z",
    "deliveredAt": "2024-05-01T12:00:00.000Z",
    "updatedAt": "2024-05-01T12:00:01Z",
    "category": "Wellness",
    "priority": "high",
    "healthCategory": "Nutrition",
}


@pytest.mark.asyncio
async def test_fetch_messages_parses_success_envelope():
    def handler(request):
        assert request.method == "GET"
        assert str(request.url) == f"{BASE}/api/push-messages"
        return httpx.Response(200, json={"success": True, "data": [MESSAGE]})

    async with _client(handler) as client:
        messages = await client.fetch_messages()

    assert len(messages) == 1
    message = messages[0]
    assert message.id == "abc"
    assert message.body == "Drink water"
    assert message.delivered_at == T0
    assert message.effective_timestamp == T0
    assert message.priority == "high"
    assert message.health_category == "Nutrition"


@pytest.mark.asyncio
async def test_fetch_messages_accepts_bare_list():
    def handler(request):
        return httpx.Response(200, json=[{"_id": "x", "title": "t", "body": "b", "status": "Scheduled"}])

    async with _client(handler) as client:
        messages = await client.fetch_messages()
    assert messages[0].body == "b"
    assert messages[0].delivered_at is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"success": False, "error": "nope"}),
        httpx.Response(200, json={"success": True, "data": [{"title": "no id"}]}),
    ],
)
async def test_fetch_messages_protocol_errors(response):
    async with _client(lambda request: response) as client:
        with pytest.raises(ProtocolError):
            await client.fetch_messages()


@pytest.mark.asyncio
async def test_http_error_carries_status_code():
    async with _client(lambda request: httpx.Response(503, text="unavailable")) as client:
        with pytest.raises(ProtocolError) as excinfo:
            await client.fetch_messages()
    assert excinfo.value.status_code == 503
    assert excinfo.value.detail == "unavailable"


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")])
async def test_transport_failures_are_transient(error):
    def handler(request):
        raise error

    async with _client(handler) as client:
        with pytest.raises(TransientNetworkError):
            await client.fetch_messages()


@pytest.mark.asyncio
async def test_register_device_posts_token():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "deviceId": "dev-1"})

    device = DeviceConfig(push_token="tok", platform="cli", app_version="1.0.0")
    async with _client(handler) as client:
        registration = await client.register_device(device)

    assert registration.device_id == "dev-1"
    assert seen["url"] == f"{BASE}/api/device/register"
    assert seen["body"] == {
        "pushToken": "tok",
        "platform": "cli",
        "appVersion": "1.0.0",
        "userId": None,
        "healthProfile": {},
    }


@pytest.mark.asyncio
async def test_register_device_rejection_raises():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "duplicate token"})

    async with _client(handler) as client:
        with pytest.raises(ProtocolError, match="duplicate token"):
            await client.register_device(DeviceConfig(push_token="tok"))


@pytest.mark.asyncio
async def test_send_test_message_counts_results():
    def handler(request):
        body = json.loads(request.content)
        assert body["category"] == "Test"
        return httpx.Response(200, json={"success": True, "results": [{}, {}]})

    async with _client(handler) as client:
        assert await client.send_test_message("Hi", "there") == 2


@pytest.mark.asyncio
async def test_check_health_returns_body():
    def handler(request):
        assert str(request.url) == f"{BASE}/api/health"
        return httpx.Response(200, json={"status": "ok"})

    async with _client(handler) as client:
        assert (await client.check_health())["status"] == "ok"


@pytest.mark.asyncio
async def test_undecodable_body_is_protocol_error():
    def handler(request):
        return httpx.Response(
            200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not gzip at all")
        )

    async with _client(handler) as client:
        with pytest.raises(ProtocolError, match="Undecodable"):
            await client.fetch_messages()


@pytest.mark.asyncio
async def test_undecodable_body_fails_background_fetch_quietly(presenter, clock):
    def handler(request):
        return httpx.Response(
            200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not gzip at all")
        )

    async with _client(handler) as client:
        engine = SyncEngine(client.fetch_messages, presenter, clock=clock)
        assert await engine.background_fetch(FetchTrigger.REALTIME) is False
    assert engine.snapshot() == ()
