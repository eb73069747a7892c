"""
Receiver agent: polls the sender's key pair and encrypted location, decrypts,
and derives what may be shown through the proximity gate.

The agent never exposes decrypted sender coordinates directly. The only
sender position available to renderers is ProximityResult.sender_coordinates,
which the gate fills in only within range.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from app.agents.notifications import Notifier
from app.agents.timer import PeriodicTimer
from app.config import Settings, get_settings
from app.core.crypto import decrypt_coordinates
from app.core.errors import DecryptionError, NotFoundError, ProximityTrackerError
from app.core.freshness import is_stale
from app.core.geo import Coordinates, format_distance
from app.core.proximity import ProximityResult, distance_percentage, evaluate
from app.schemas.keys import KeyPairResponse
from app.schemas.location import LocationResponse
from app.services.geolocation import GeolocationProvider, acquire_position
from app.services.tracker_client import TrackerClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapMarker:
    label: str
    coordinates: Coordinates


@dataclass(frozen=True)
class ReceiverView:
    """Everything the receiver UI renders, derived from the gate result."""

    private_key_loaded: bool
    last_sync: Optional[datetime]
    status_label: str
    visibility_label: str
    visibility_detail: str
    within_range: bool
    distance_km: Optional[float]
    distance_label: str
    gauge_percent: float
    sender_display: str
    receiver_display: str
    markers: list[MapMarker] = field(default_factory=list)


def build_view(
    result: Optional[ProximityResult],
    receiver_location: Optional[Coordinates],
    key_pair_loaded: bool,
    last_sync: Optional[datetime],
    threshold_km: float,
) -> ReceiverView:
    """
    Derive the receiver UI state.

    Consults only the ProximityResult for the sender position: the sender's
    coordinates and map marker appear iff result.within_range.
    """
    receiver_display = receiver_location.display() if receiver_location else "Loading..."
    markers = [MapMarker("You", receiver_location)] if receiver_location else []

    if result is None:
        return ReceiverView(
            private_key_loaded=key_pair_loaded,
            last_sync=last_sync,
            status_label="Awaiting Location",
            visibility_label="Location Hidden",
            visibility_detail="No current location from sender",
            within_range=False,
            distance_km=None,
            distance_label="--",
            gauge_percent=0.0,
            sender_display="Hidden",
            receiver_display=receiver_display,
            markers=markers,
        )

    threshold_label = f"{threshold_km:g}km"
    if result.within_range and result.sender_coordinates is not None:
        markers.append(MapMarker("Sender", result.sender_coordinates))
        status_label = "Within Range"
        visibility_label = "Location Visible"
        visibility_detail = f"Sender is within {threshold_label} range"
        sender_display = result.sender_coordinates.display()
    else:
        status_label = "Out of Range"
        visibility_label = "Location Hidden"
        visibility_detail = f"Sender is outside {threshold_label} range"
        sender_display = "Hidden"

    return ReceiverView(
        private_key_loaded=key_pair_loaded,
        last_sync=last_sync,
        status_label=status_label,
        visibility_label=visibility_label,
        visibility_detail=visibility_detail,
        within_range=result.within_range,
        distance_km=result.distance_km,
        distance_label=format_distance(result.distance_km),
        gauge_percent=distance_percentage(result, threshold_km),
        sender_display=sender_display,
        receiver_display=receiver_display,
        markers=markers,
    )


class ReceiverAgent:
    """Polls the registries for one sender and keeps the latest gate result."""

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

        self.receiver_location: Optional[Coordinates] = None
        self.key_pair: Optional[KeyPairResponse] = None
        self.location: Optional[LocationResponse] = None
        self.result: Optional[ProximityResult] = None

        # Inputs of the last decryption attempt, to avoid repeating it
        self._evaluated: Optional[tuple] = None
        self._position_task: Optional[asyncio.Task] = None
        self._timer = PeriodicTimer(
            self._settings.poll_interval_seconds,
            self.poll_once,
            name=f"receiver:{sender_id}",
            run_immediately=True,
        )

    @property
    def active(self) -> bool:
        return self._timer.running

    async def activate(self) -> None:
        """Acquire own position once (in the background) and start polling."""
        if self._position_task is None:
            self._position_task = asyncio.create_task(self.acquire_own_position())
        self._timer.start()

    async def deactivate(self) -> None:
        """Stop polling; in-flight polls are cancelled and their results discarded."""
        await self._timer.stop()
        if self._position_task is not None and not self._position_task.done():
            self._position_task.cancel()
            try:
                await self._position_task
            except asyncio.CancelledError:
                pass
        self._position_task = None

    async def acquire_own_position(self) -> Optional[Coordinates]:
        """
        Sample the receiver's own position.

        On failure receiver_location stays None, which disables decryption.
        """
        try:
            self.receiver_location = await acquire_position(
                self._geolocation, self._settings.geolocation_timeout_seconds
            )
        except ProximityTrackerError as e:
            self.notifier.error("Location Error", f"Failed to get your current location: {e}")
            return None

        self.evaluate_inputs()
        return self.receiver_location

    async def poll_once(self) -> Optional[ProximityResult]:
        """Fetch key pair and latest location concurrently, then re-evaluate."""
        await asyncio.gather(self._poll_key_pair(), self._poll_location())
        return self.evaluate_inputs()

    async def _poll_key_pair(self) -> None:
        try:
            self.key_pair = await self._client.get_key_pair(self.sender_id)
        except NotFoundError:
            self.key_pair = None
        except ProximityTrackerError as e:
            # Transient: keep the last known key pair, retry on next tick
            self.notifier.error("Connection Error", f"Failed to fetch key pair: {e}")

    async def _poll_location(self) -> None:
        try:
            record = await self._client.get_latest_location(self.sender_id)
        except NotFoundError:
            self.location = None
            return
        except ProximityTrackerError as e:
            self.notifier.error("Connection Error", f"Failed to fetch location data: {e}")
            return

        if is_stale(record.timestamp, self._settings.stale_after_seconds):
            logger.debug(f"Ignoring stale location: sender={self.sender_id}")
            self.location = None
            return

        self.location = record

    def evaluate_inputs(self) -> Optional[ProximityResult]:
        """
        Decrypt and gate once all three inputs are present.

        - No current location or no key pair: result cleared, nothing is shown
        - Decryption failure: notify and keep the previous result

        A location held through failed polls is dropped once it ages past
        the staleness threshold.
        """
        if self.location is not None and is_stale(
            self.location.timestamp, self._settings.stale_after_seconds
        ):
            logger.debug(f"Held location went stale: sender={self.sender_id}")
            self.location = None

        if self.location is None or self.key_pair is None:
            self.result = None
            self._evaluated = None
            return None

        if self.receiver_location is None:
            return self.result

        inputs = (
            self.location.id,
            self.location.timestamp,
            self.key_pair.id,
            self.key_pair.timestamp,
            self.receiver_location,
        )
        if inputs == self._evaluated:
            return self.result
        self._evaluated = inputs

        try:
            sender = decrypt_coordinates(
                self.location.encrypted_location, self.key_pair.private_key
            )
        except DecryptionError as e:
            self.notifier.error("Decryption Error", f"Failed to decrypt location data: {e}")
            return self.result

        self.result = evaluate(
            self.receiver_location, sender, self._settings.proximity_threshold_km
        )
        return self.result

    def view(self) -> ReceiverView:
        return build_view(
            self.result,
            self.receiver_location,
            key_pair_loaded=self.key_pair is not None,
            last_sync=self.location.timestamp if self.location else None,
            threshold_km=self._settings.proximity_threshold_km,
        )
