"""Async HTTP client for the tracker API, used by the sender and receiver agents."""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from app.config import get_settings
from app.core.errors import NetworkError, NotFoundError, ValidationError
from app.core.freshness import as_utc
from app.core.geo import Coordinates
from app.schemas.keys import KeyPairResponse
from app.schemas.location import LocationResponse, VerifyResponse

logger = logging.getLogger(__name__)


class TrackerClient:
    """
    httpx-based API client with typed responses.

    Error mapping:
    - 404 -> NotFoundError (absent or stale record)
    - 400 -> ValidationError
    - other HTTP errors, timeouts and transport failures -> NetworkError
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self._base_url = base_url or settings.api_base_url
        self._api_key = settings.tracker_api_key if api_key is None else api_key
        self._header_name = settings.api_key_header_name
        self._timeout = timeout_seconds or settings.client_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_errors = 0

    async def start(self) -> None:
        """Initialize HTTP client with connection pooling."""
        if self._client is not None:
            return

        headers = {self._header_name: self._api_key} if self._api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            transport=self._transport,
        )
        logger.debug("TrackerClient started")

    async def stop(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.debug(f"TrackerClient stopped - request errors: {self._request_errors}")

    async def __aenter__(self) -> "TrackerClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _request(
        self, method: str, path: str, json: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        if not self._client:
            await self.start()

        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            self._request_errors += 1
            raise NetworkError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            self._request_errors += 1
            raise NetworkError(f"{method} {path} failed: {type(e).__name__}") from e

        if response.status_code == 404:
            raise NotFoundError(_error_message(response, "Not found"))
        if response.status_code == 400:
            raise ValidationError(_error_message(response, "Invalid request"))
        if response.is_error:
            self._request_errors += 1
            raise NetworkError(
                f"{method} {path} returned {response.status_code}: "
                f"{_error_message(response, 'request failed')}"
            )

        return response.json()

    async def register_key_pair(
        self, sender_id: str, public_key: str, private_key: str
    ) -> KeyPairResponse:
        data = await self._request(
            "POST",
            "/api/keys",
            json={"senderId": sender_id, "publicKey": public_key, "privateKey": private_key},
        )
        return KeyPairResponse.model_validate(data)

    async def get_key_pair(self, sender_id: str) -> KeyPairResponse:
        data = await self._request("GET", f"/api/keys/{_path_segment(sender_id)}")
        return KeyPairResponse.model_validate(data)

    async def submit_location(
        self, sender_id: str, encrypted_location: str, public_key: str
    ) -> LocationResponse:
        data = await self._request(
            "POST",
            "/api/location",
            json={
                "senderId": sender_id,
                "encryptedLocation": encrypted_location,
                "publicKey": public_key,
            },
        )
        return LocationResponse.model_validate(data)

    async def get_latest_location(self, sender_id: str) -> LocationResponse:
        data = await self._request("GET", f"/api/location/{_path_segment(sender_id)}")
        record = LocationResponse.model_validate(data)
        return record.model_copy(update={"timestamp": as_utc(record.timestamp)})

    async def verify(self, sender_id: str, receiver: Coordinates) -> VerifyResponse:
        data = await self._request(
            "POST",
            "/api/location/verify",
            json={
                "senderId": sender_id,
                "receiverLocation": {
                    "latitude": receiver.latitude,
                    "longitude": receiver.longitude,
                },
            },
        )
        return VerifyResponse.model_validate(data)

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")


def _path_segment(sender_id: str) -> str:
    """Percent-encode a sender id into a single URL path segment."""
    return quote(sender_id, safe="")


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        return str(response.json().get("error", default))
    except ValueError:
        return default
