"""
Sender agent: owns the key pair and periodically submits encrypted positions.

State machine:
    NO_KEY_PAIR --start()/regenerate_keys()--> KEY_PAIR_READY
    KEY_PAIR_READY | IDLE --start_tracking()--> TRACKING
    TRACKING --stop_tracking()--> IDLE

Tracking cannot start without a key pair. While tracking, every tick samples
the position, encrypts it with the sender's own public key and submits it.
Failures in a tick are reported as notifications; tracking continues.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from app.agents.notifications import Notifier
from app.agents.timer import PeriodicTimer
from app.config import Settings, get_settings
from app.core.crypto import KeyPair, encrypt_coordinates, generate_key_pair
from app.core.errors import ProximityTrackerError, TrackingUnavailableError
from app.core.geo import Coordinates
from app.services.geolocation import GeolocationProvider, acquire_position
from app.services.tracker_client import TrackerClient

logger = logging.getLogger(__name__)


class SenderState(str, Enum):
    NO_KEY_PAIR = "no_key_pair"
    KEY_PAIR_READY = "key_pair_ready"
    TRACKING = "tracking"
    IDLE = "idle"


@dataclass(frozen=True)
class SenderStatus:
    """Snapshot of the sender for display."""

    sender_id: str
    state: SenderState
    has_key_pair: bool
    can_start_tracking: bool
    packets_sent: int
    last_update: Optional[datetime]
    current_location: Optional[Coordinates]


class SenderAgent:
    """Generates keys, then samples, encrypts and submits positions on a timer."""

    def __init__(
        self,
        sender_id: str,
        client: TrackerClient,
        geolocation: GeolocationProvider,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.sender_id = sender_id
        self._client = client
        self._geolocation = geolocation
        self.notifier = notifier or Notifier()
        self._settings = settings or get_settings()

        self.state = SenderState.NO_KEY_PAIR
        self.key_pair: Optional[KeyPair] = None
        self.packets_sent = 0
        self.last_update: Optional[datetime] = None
        self.current_location: Optional[Coordinates] = None

        self._key_lock = asyncio.Lock()
        self._timer = PeriodicTimer(
            self._settings.submit_interval_seconds,
            self.run_cycle,
            name=f"sender:{sender_id}",
        )

    async def start(self) -> bool:
        """Generate and register the initial key pair."""
        return await self.regenerate_keys()

    async def regenerate_keys(self) -> bool:
        """
        Generate a fresh key pair and register it with the key registry.

        The new pair is adopted only once the registry accepted it. On failure
        the previous pair (if any) and the current state are kept.

        Returns:
            True if a new key pair is active
        """
        async with self._key_lock:
            try:
                key_pair = await asyncio.to_thread(
                    generate_key_pair, self._settings.rsa_key_size
                )
            except Exception as e:
                logger.error(f"Key generation failed: {type(e).__name__}: {e}")
                self.notifier.error("Error", "Failed to generate RSA key pair")
                return False

            try:
                await self._client.register_key_pair(
                    self.sender_id, key_pair.public_key, key_pair.private_key
                )
            except ProximityTrackerError as e:
                logger.warning(f"Key registration failed: {type(e).__name__}: {e}")
                self.notifier.error("Error", "Failed to store RSA key pair")
                return False

            self.key_pair = key_pair
            if self.state == SenderState.NO_KEY_PAIR:
                self.state = SenderState.KEY_PAIR_READY

        self.notifier.info("Success", "RSA key pair generated and stored successfully")
        return True

    def start_tracking(self) -> None:
        """
        Begin periodic submissions.

        Raises:
            TrackingUnavailableError: No key pair has been registered yet
        """
        if self.state == SenderState.NO_KEY_PAIR or self.key_pair is None:
            raise TrackingUnavailableError("Cannot start tracking without a key pair")
        if self.state == SenderState.TRACKING:
            return

        self._timer.start()
        self.state = SenderState.TRACKING
        logger.info(f"Tracking started: sender={self.sender_id}")

    async def stop_tracking(self) -> None:
        """Cancel the timer and any in-flight cycle."""
        if self.state != SenderState.TRACKING:
            return

        await self._timer.stop()
        self.state = SenderState.IDLE
        logger.info(f"Tracking stopped: sender={self.sender_id}")

    async def run_cycle(self) -> bool:
        """
        One tick: sample, encrypt, submit.

        Every failure is converted to a notification; nothing propagates.

        Returns:
            True if a location packet was accepted by the server
        """
        # Snapshot: a concurrent regenerate_keys() must not mix key pairs
        key_pair = self.key_pair
        if key_pair is None:
            return False

        try:
            location = await acquire_position(
                self._geolocation, self._settings.geolocation_timeout_seconds
            )
        except ProximityTrackerError as e:
            self.notifier.error("Location Error", f"Failed to get current location: {e}")
            return False

        self.current_location = location

        try:
            ciphertext = encrypt_coordinates(location, key_pair.public_key)
        except ProximityTrackerError as e:
            self.notifier.error("Error", f"Failed to encrypt location data: {e}")
            return False

        try:
            await self._client.submit_location(
                self.sender_id, ciphertext, key_pair.public_key
            )
        except ProximityTrackerError as e:
            self.notifier.error("Error", f"Failed to send location data: {e}")
            return False

        self.packets_sent += 1
        self.last_update = datetime.now(timezone.utc)
        return True

    def status(self) -> SenderStatus:
        return SenderStatus(
            sender_id=self.sender_id,
            state=self.state,
            has_key_pair=self.key_pair is not None,
            can_start_tracking=self.state
            in (SenderState.KEY_PAIR_READY, SenderState.IDLE),
            packets_sent=self.packets_sent,
            last_update=self.last_update,
            current_location=self.current_location,
        )

    async def close(self) -> None:
        await self.stop_tracking()
