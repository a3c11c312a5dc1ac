"""Async HTTP client for the push message backend."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import ApiConfig, DeviceConfig
from .errors import ProtocolError, TransientNetworkError
from .models import DeviceRegistration, Message

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Client for the push message backend's REST API.

    Use as an async context manager, or call `aclose()` when done. Every
    request is bounded by the configured timeout; timeouts and transport
    failures raise TransientNetworkError, anything the backend answers that
    is not a success raises ProtocolError.
    """

    def __init__(self, config: ApiConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=config.request_timeout,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(self, method: str, url: str, timeout: Optional[float] = None, **kwargs) -> Any:
        """Send a request and return the decoded JSON body."""
        try:
            response = await self._http.request(
                method, url, timeout=timeout or self.config.request_timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method} {url} timed out: {e}") from e
        except httpx.DecodingError as e:
            raise ProtocolError(f"Undecodable response body from {url}: {e}") from e
        except httpx.RequestError as e:
            raise TransientNetworkError(f"{method} {url} failed: {e}") from e

        if not response.is_success:
            raise ProtocolError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                detail=response.text[:500],
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(
                f"Malformed JSON from {url}: {e}",
                status_code=response.status_code,
                detail=response.text[:500],
            ) from e

    async def fetch_messages(self) -> List[Message]:
        """
        Fetch the full list of push messages.

        Returns:
            All messages, in the order the backend returned them.

        Raises:
            TransientNetworkError: On timeout or connection failure.
            ProtocolError: On a non-success response or unexpected body.
        """
        url = self.config.push_messages_endpoint
        result = await self._request("GET", url)

        if isinstance(result, list):
            items = result
        elif isinstance(result, dict) and result.get("success") and isinstance(result.get("data"), list):
            items = result["data"]
        else:
            error = result.get("error") if isinstance(result, dict) else None
            raise ProtocolError(
                f"Unexpected messages response from {url}",
                detail=str(error or result)[:500],
            )

        messages = []
        for item in items:
            try:
                messages.append(Message.from_api(item))
            except (ValueError, TypeError, AttributeError) as e:
                raise ProtocolError(f"Malformed message in response: {e}") from e
        logger.debug(f"Fetched {len(messages)} messages")
        return messages

    async def register_device(self, device: DeviceConfig) -> DeviceRegistration:
        """
        Register this client's push token with the backend.

        Raises:
            TransientNetworkError: On timeout or connection failure.
            ProtocolError: If the backend rejects the registration.
        """
        url = self.config.device_register_endpoint
        logger.info(f"Registering device with backend: {url}")
        result = await self._request(
            "POST",
            url,
            json={
                "pushToken": device.push_token,
                "platform": device.platform,
                "appVersion": device.app_version,
                "userId": device.user_id,
                "healthProfile": device.health_profile,
            },
        )
        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else None
            raise ProtocolError(
                f"Failed to register device: {error or 'unknown error'}",
                detail=str(result)[:500],
            )
        device_id = result.get("deviceId")
        logger.info(f"Device registered successfully (device id: {device_id})")
        return DeviceRegistration(device_id=device_id, push_token=device.push_token)

    async def send_test_message(self, title: str, body: str, category: str = "Test") -> int:
        """
        Ask the backend to create and send a message immediately.

        Returns:
            How many notifications the backend created.

        Raises:
            TransientNetworkError: On timeout or connection failure.
            ProtocolError: If the backend reports a failure.
        """
        url = self.config.immediate_notification_endpoint
        logger.info("Sending test notification via backend...")
        result = await self._request(
            "POST", url, json={"title": title, "body": body, "category": category}
        )
        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else None
            raise ProtocolError(
                f"Failed to send test notification: {error or 'unknown error'}",
                detail=str(result)[:500],
            )
        results = result.get("results")
        created = len(results) if isinstance(results, list) and results else 1
        logger.info(f"Test notification created ({created} notification(s))")
        return created

    async def check_health(self) -> Dict[str, Any]:
        """
        Check backend connectivity, allowing for a slow cold start.

        Raises:
            TransientNetworkError: On timeout or connection failure.
            ProtocolError: On a non-success response.
        """
        logger.info("Testing backend connection...")
        result = await self._request("GET", self.config.health_endpoint, timeout=self.config.health_timeout)
        if not isinstance(result, dict):
            raise ProtocolError("Malformed health response", detail=str(result)[:500])
        logger.info(f"Backend connection successful: {result.get('status')}")
        return result
