"""Tests for the agents' HTTP client."""

import httpx
import pytest

from app.core.crypto import encrypt_coordinates
from app.core.errors import NetworkError, NotFoundError, ValidationError
from app.core.geo import Coordinates
from app.services.tracker_client import TrackerClient


def responder(status_code, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body or {})

    return handler


class TestErrorMapping:
    """HTTP failures map onto the error taxonomy."""

    @pytest.mark.anyio
    @pytest.mark.parametrize(
        "status_code,error",
        [(404, NotFoundError), (400, ValidationError), (500, NetworkError), (429, NetworkError)],
    )
    async def test_status_codes(self, status_code, error):
        transport = httpx.MockTransport(responder(status_code, {"error": "nope"}))
        async with TrackerClient(base_url="http://test", api_key="", transport=transport) as client:
            with pytest.raises(error):
                await client.get_key_pair("alice")

    @pytest.mark.anyio
    async def test_server_message_kept(self):
        transport = httpx.MockTransport(responder(404, {"error": "Key pair not found"}))
        async with TrackerClient(base_url="http://test", api_key="", transport=transport) as client:
            with pytest.raises(NotFoundError, match="Key pair not found"):
                await client.get_key_pair("alice")

    @pytest.mark.anyio
    async def test_transport_failure(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport = httpx.MockTransport(refuse)
        async with TrackerClient(base_url="http://test", api_key="", transport=transport) as client:
            with pytest.raises(NetworkError):
                await client.health()


class TestAgainstApp:
    """Round trips through the real application."""

    @pytest.mark.anyio
    async def test_register_and_fetch(self, tracker_client, key_pair):
        stored = await tracker_client.register_key_pair("alice", key_pair.public_key, key_pair.private_key)
        fetched = await tracker_client.get_key_pair("alice")

        assert fetched.id == stored.id
        assert fetched.private_key == key_pair.private_key

    @pytest.mark.anyio
    async def test_location_timestamp_is_utc(self, tracker_client):
        await tracker_client.submit_location("alice", "CIPHER", "PUB")
        record = await tracker_client.get_latest_location("alice")

        assert record.encrypted_location == "CIPHER"
        assert record.timestamp.utcoffset().total_seconds() == 0

    @pytest.mark.anyio
    async def test_verify_out_of_range(self, tracker_client, key_pair):
        await tracker_client.register_key_pair("alice", key_pair.public_key, key_pair.private_key)
        await tracker_client.submit_location(
            "alice",
            encrypt_coordinates(Coordinates(19.0760, 72.8777), key_pair.public_key),
            key_pair.public_key,
        )

        result = await tracker_client.verify("alice", Coordinates(28.6139, 77.2090))
        assert result.within_range is False
        assert result.sender_location is None
        assert result.key_pair is None

    @pytest.mark.anyio
    async def test_health(self, tracker_client):
        body = await tracker_client.health()
        assert body["status"] == "healthy"

    @pytest.mark.anyio
    async def test_api_key_header_sent(self):
        seen = {}

        def capture(request):
            seen.update(request.headers)
            return httpx.Response(200, json={"status": "healthy"})

        transport = httpx.MockTransport(capture)
        async with TrackerClient(base_url="http://test", api_key="secret", transport=transport) as client:
            await client.health()

        assert seen["x-api-key"] == "secret"

    @pytest.mark.anyio
    @pytest.mark.parametrize("sender_id", ["team/alpha", "who?me", "tag#1", "a b/c%2F"])
    async def test_sender_ids_with_url_characters(self, tracker_client, key_pair, sender_id):
        await tracker_client.register_key_pair(sender_id, key_pair.public_key, key_pair.private_key)
        await tracker_client.submit_location(sender_id, "CIPHER", key_pair.public_key)

        fetched = await tracker_client.get_key_pair(sender_id)
        record = await tracker_client.get_latest_location(sender_id)

        assert fetched.sender_id == sender_id
        assert record.sender_id == sender_id

    @pytest.mark.anyio
    async def test_sender_id_sent_as_single_segment(self):
        seen = []

        def capture(request):
            seen.append(request.url.raw_path)
            return httpx.Response(404, json={"error": "Key pair not found"})

        transport = httpx.MockTransport(capture)
        async with TrackerClient(base_url="http://test", api_key="", transport=transport) as client:
            with pytest.raises(NotFoundError):
                await client.get_key_pair("team/alpha")

        assert seen == [b"/api/keys/team%2Falpha"]
