"""Tests for the sender agent state machine and submission cycle."""

import asyncio
import json

import httpx
import pytest

from app.agents.sender import SenderAgent, SenderState
from app.core.crypto import decrypt_coordinates
from app.core.errors import GeolocationError, TrackingUnavailableError
from app.core.geo import Coordinates
from app.db.models import utcnow
from app.services.geolocation import GeolocationProvider, StaticGeolocationProvider
from app.services.tracker_client import TrackerClient

MUMBAI = Coordinates(19.0760, 72.8777)


class DeniedProvider(GeolocationProvider):
    async def current_position(self):
        raise GeolocationError("Permission denied")


class HangingProvider(GeolocationProvider):
    async def current_position(self):
        await asyncio.sleep(3600)


async def wait_until(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def keys_ok_location_down(request: httpx.Request) -> httpx.Response:
    """Server that accepts key pairs but fails location submissions."""
    if request.url.path == "/api/keys":
        body = json.loads(request.content)
        body.update({"id": 1, "timestamp": utcnow().isoformat()})
        return httpx.Response(200, json=body)
    return httpx.Response(500, json={"error": "Internal server error"})


def always_unavailable(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"error": "Service unavailable"})


@pytest.fixture
def sender(tracker_client, test_settings):
    return SenderAgent(
        "sender-1",
        tracker_client,
        StaticGeolocationProvider(MUMBAI),
        settings=test_settings,
    )


class TestKeyLifecycle:
    """NO_KEY_PAIR -> KEY_PAIR_READY."""

    @pytest.mark.anyio
    async def test_initial_state(self, sender):
        status = sender.status()

        assert sender.state == SenderState.NO_KEY_PAIR
        assert status.has_key_pair is False
        assert status.can_start_tracking is False

    @pytest.mark.anyio
    async def test_start_registers_key_pair(self, sender, store):
        assert await sender.start() is True

        assert sender.state == SenderState.KEY_PAIR_READY
        stored = await store.get_key_pair("sender-1")
        assert stored.public_key == sender.key_pair.public_key
        assert stored.private_key == sender.key_pair.private_key
        assert sender.notifier.latest().title == "Success"

    @pytest.mark.anyio
    async def test_regenerate_replaces_key_pair(self, sender, store):
        await sender.start()
        first = sender.key_pair

        assert await sender.regenerate_keys() is True
        assert sender.key_pair != first
        assert sender.state == SenderState.KEY_PAIR_READY
        assert (await store.get_key_pair("sender-1")).public_key == sender.key_pair.public_key

    @pytest.mark.anyio
    async def test_registration_failure_keeps_state(self, test_settings):
        transport = httpx.MockTransport(always_unavailable)
        async with TrackerClient(base_url="http://test", api_key="", transport=transport) as client:
            agent = SenderAgent(
                "sender-1", client, StaticGeolocationProvider(MUMBAI), settings=test_settings
            )
            assert await agent.start() is False

        assert agent.state == SenderState.NO_KEY_PAIR
        assert agent.key_pair is None
        assert agent.notifier.latest().message == "Failed to store RSA key pair"


class TestTracking:
    """KEY_PAIR_READY -> TRACKING -> IDLE."""

    @pytest.mark.anyio
    async def test_cannot_track_without_key_pair(self, sender):
        with pytest.raises(TrackingUnavailableError):
            sender.start_tracking()
        assert sender.state == SenderState.NO_KEY_PAIR

    @pytest.mark.anyio
    async def test_tracking_submits_encrypted_positions(self, sender, store):
        await sender.start()
        sender.start_tracking()
        assert sender.state == SenderState.TRACKING

        await wait_until(lambda: sender.packets_sent >= 2)
        await sender.stop_tracking()

        assert sender.state == SenderState.IDLE
        assert sender.status().can_start_tracking is True
        record = await store.get_latest_location("sender-1")
        assert record.public_key == sender.key_pair.public_key
        assert decrypt_coordinates(record.encrypted_location, sender.key_pair.private_key) == MUMBAI

    @pytest.mark.anyio
    async def test_stop_halts_submissions(self, sender):
        await sender.start()
        sender.start_tracking()
        await wait_until(lambda: sender.packets_sent >= 1)
        await sender.stop_tracking()

        sent = sender.packets_sent
        await asyncio.sleep(0.2)
        assert sender.packets_sent == sent

    @pytest.mark.anyio
    async def test_start_tracking_is_idempotent(self, sender):
        await sender.start()
        sender.start_tracking()
        sender.start_tracking()

        assert sender.state == SenderState.TRACKING
        await sender.close()
        assert sender.state == SenderState.IDLE

    @pytest.mark.anyio
    async def test_resume_from_idle(self, sender):
        await sender.start()
        sender.start_tracking()
        await sender.stop_tracking()
        sender.start_tracking()

        assert sender.state == SenderState.TRACKING
        await sender.close()


class TestCycleFailures:
    """Failures inside a cycle become notifications; tracking continues."""

    @pytest.mark.anyio
    async def test_geolocation_denied(self, tracker_client, test_settings):
        agent = SenderAgent("sender-1", tracker_client, DeniedProvider(), settings=test_settings)
        await agent.start()
        agent.start_tracking()

        await wait_until(lambda: agent.notifier.errors)
        assert agent.state == SenderState.TRACKING
        assert agent.packets_sent == 0
        assert agent.notifier.errors[0].title == "Location Error"
        assert agent.notifier.errors[0].message.startswith("Failed to get current location")
        await agent.close()

    @pytest.mark.anyio
    async def test_geolocation_timeout(self, tracker_client, test_settings):
        settings = test_settings.model_copy(update={"geolocation_timeout_seconds": 0.05})
        agent = SenderAgent("sender-1", tracker_client, HangingProvider(), settings=settings)
        await agent.start()

        assert await agent.run_cycle() is False
        assert "timed out" in agent.notifier.latest().message

    @pytest.mark.anyio
    async def test_submission_failure(self, test_settings):
        transport = httpx.MockTransport(keys_ok_location_down)
        async with TrackerClient(base_url="http://test", api_key="", transport=transport) as client:
            agent = SenderAgent(
                "sender-1", client, StaticGeolocationProvider(MUMBAI), settings=test_settings
            )
            assert await agent.start() is True
            agent.start_tracking()

            await wait_until(lambda: agent.notifier.errors)
            await agent.stop_tracking()

        assert agent.packets_sent == 0
        assert agent.notifier.errors[0].message.startswith("Failed to send location data")
        assert agent.current_location == MUMBAI

    @pytest.mark.anyio
    async def test_cycle_without_key_pair_is_noop(self, sender):
        assert await sender.run_cycle() is False
        assert sender.notifier.items == []
