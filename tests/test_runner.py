"""Tests for the command-line agent runner."""

import asyncio

import pytest

from app.agents.receiver import ReceiverAgent
from app.agents.runner import build_parser, build_provider, run_receiver, run_sender
from app.agents.sender import SenderAgent, SenderState
from app.core.geo import Coordinates
from app.services.geolocation import RandomWalkGeolocationProvider, StaticGeolocationProvider

MUMBAI = Coordinates(19.0760, 72.8777)
MUMBAI_NEARBY = Coordinates(19.0761, 72.8778)


async def stop_when(stop: asyncio.Event, condition, timeout: float = 3.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition() and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(0.01)
    stop.set()


class TestParser:
    """Tests for argument parsing."""

    def test_sender_arguments(self):
        args = build_parser().parse_args(
            ["sender", "--sender-id", "alice", "--lat", "19.076", "--lon", "72.8777"]
        )

        assert args.role == "sender"
        assert args.sender_id == "alice"
        assert (args.lat, args.lon) == (19.076, 72.8777)
        assert isinstance(build_provider(args), StaticGeolocationProvider)

    def test_walk_uses_random_walk(self):
        args = build_parser().parse_args(
            ["receiver", "--sender-id", "alice", "--lat", "1", "--lon", "2", "--walk-m", "5"]
        )

        provider = build_provider(args)
        assert isinstance(provider, RandomWalkGeolocationProvider)
        assert provider.max_step_m == 5

    def test_role_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--sender-id", "alice", "--lat", "1", "--lon", "2"])


class TestRunAgents:
    """Tests for running agents until stopped."""

    @pytest.mark.anyio
    async def test_sender_tracks_until_stopped(self, tracker_client, test_settings):
        agent = SenderAgent(
            "alice", tracker_client, StaticGeolocationProvider(MUMBAI), settings=test_settings
        )
        stop = asyncio.Event()

        status, _ = await asyncio.gather(
            run_sender(agent, stop), stop_when(stop, lambda: agent.packets_sent >= 2)
        )

        assert status.state == SenderState.IDLE
        assert status.packets_sent >= 2

    @pytest.mark.anyio
    async def test_receiver_follows_sender(self, tracker_client, test_settings):
        sender = SenderAgent(
            "alice", tracker_client, StaticGeolocationProvider(MUMBAI), settings=test_settings
        )
        await sender.start()
        await sender.run_cycle()

        receiver = ReceiverAgent(
            "alice", tracker_client, StaticGeolocationProvider(MUMBAI_NEARBY), settings=test_settings
        )
        stop = asyncio.Event()

        view, _ = await asyncio.gather(
            run_receiver(receiver, stop, report_seconds=0.02),
            stop_when(stop, lambda: receiver.result is not None),
        )

        assert receiver.active is False
        assert view.status_label == "Within Range"
        assert view.sender_display == "19.0760, 72.8777"
