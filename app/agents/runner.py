"""
Proximity Tracker agent runner

Runs a sender or a receiver agent against a live tracker API until
interrupted:

    proximity-agent sender --sender-id alice --lat 19.076 --lon 72.8777
    proximity-agent receiver --sender-id alice --lat 19.0761 --lon 72.8778
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from app.agents.receiver import ReceiverAgent, ReceiverView
from app.agents.sender import SenderAgent, SenderStatus
from app.config import get_settings
from app.core.geo import Coordinates
from app.services.geolocation import (
    GeolocationProvider,
    RandomWalkGeolocationProvider,
    StaticGeolocationProvider,
)
from app.services.tracker_client import TrackerClient

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Run a Proximity Tracker agent")
    parser.add_argument(
        "role",
        choices=["sender", "receiver"],
        help="sender=publish encrypted positions, receiver=poll and gate them",
    )
    parser.add_argument("--sender-id", required=True, help="Sender being published or followed")
    parser.add_argument("--lat", type=float, required=True, help="Device latitude")
    parser.add_argument("--lon", type=float, required=True, help="Device longitude")
    parser.add_argument("--api-url", default=settings.api_base_url, help="Tracker API base URL")
    parser.add_argument("--api-key", default=settings.tracker_api_key, help="Tracker API key")
    parser.add_argument(
        "--walk-m",
        type=float,
        default=0.0,
        help="Simulate movement with random steps of up to this many meters",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def build_provider(args: argparse.Namespace) -> GeolocationProvider:
    start = Coordinates(latitude=args.lat, longitude=args.lon)
    if args.walk_m > 0:
        return RandomWalkGeolocationProvider(start, max_step_m=args.walk_m)
    return StaticGeolocationProvider(start)


async def run_sender(agent: SenderAgent, stop: asyncio.Event) -> SenderStatus:
    """Register keys, track until stop is set, then stop tracking."""
    if not await agent.start():
        logger.error("Sender could not register a key pair; not tracking")
        return agent.status()

    agent.start_tracking()
    try:
        await stop.wait()
    finally:
        await agent.stop_tracking()

    status = agent.status()
    logger.info(f"Sender stopped after {status.packets_sent} packets")
    return status


async def run_receiver(
    agent: ReceiverAgent, stop: asyncio.Event, report_seconds: Optional[float] = None
) -> ReceiverView:
    """Poll until stop is set, logging the proximity status as it changes."""
    report_seconds = report_seconds or get_settings().poll_interval_seconds
    last_status = None

    await agent.activate()
    try:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), report_seconds)
            except asyncio.TimeoutError:
                pass

            view = agent.view()
            status = (view.status_label, view.distance_label)
            if status != last_status:
                logger.info(f"{view.status_label}: {view.distance_label}")
                last_status = status
    finally:
        await agent.deactivate()

    return agent.view()


async def _run(args: argparse.Namespace) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    provider = build_provider(args)
    async with TrackerClient(base_url=args.api_url, api_key=args.api_key) as client:
        if args.role == "sender":
            await run_sender(SenderAgent(args.sender_id, client, provider), stop)
        else:
            await run_receiver(ReceiverAgent(args.sender_id, client, provider), stop)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {args.role} agent for sender={args.sender_id} via {args.api_url}")

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
