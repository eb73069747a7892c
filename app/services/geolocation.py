"""Geolocation providers used by the sender and receiver agents."""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Optional

from app.core.errors import GeolocationError
from app.core.geo import Coordinates, destination_point

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


class GeolocationProvider(ABC):
    """Source of the device's current position."""

    @abstractmethod
    async def current_position(self) -> Coordinates:
        """
        Resolve the current position.

        Raises:
            GeolocationError: Access denied or position unavailable
        """


class StaticGeolocationProvider(GeolocationProvider):
    """Always reports the same position (fixed installations, tests)."""

    def __init__(self, position: Coordinates) -> None:
        self.position = position

    async def current_position(self) -> Coordinates:
        return self.position


class RandomWalkGeolocationProvider(GeolocationProvider):
    """
    Simulated device moving a random step on every sample.

    Steps are drawn uniformly from [0, max_step_m] with a random bearing,
    using the inverse Haversine so steps are true ground distances.
    """

    def __init__(
        self,
        start: Coordinates,
        max_step_m: float = 10.0,
        seed: Optional[int] = None,
    ) -> None:
        self.position = start
        self.max_step_m = max_step_m
        self._rng = random.Random(seed)

    async def current_position(self) -> Coordinates:
        step_km = self._rng.uniform(0, self.max_step_m) / 1000
        bearing = self._rng.uniform(0, 360)
        self.position = destination_point(self.position, step_km, bearing)
        return self.position


async def acquire_position(
    provider: GeolocationProvider,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> Coordinates:
    """
    Get the current position with a bounded wait.

    Args:
        provider: Position source
        timeout_seconds: Maximum wait (5s by default)

    Returns:
        Current coordinates

    Raises:
        GeolocationError: Provider failed or did not resolve in time
    """
    try:
        return await asyncio.wait_for(provider.current_position(), timeout_seconds)
    except asyncio.TimeoutError as e:
        raise GeolocationError(
            f"Location request timed out after {timeout_seconds:g}s"
        ) from e
    except GeolocationError:
        raise
    except Exception as e:
        logger.warning(f"Geolocation provider failed: {type(e).__name__}")
        raise GeolocationError(f"Location unavailable: {e}") from e
