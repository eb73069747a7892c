"""
Proximity gate - the single point where sender coordinates may be disclosed.

HARD CONSTRAINT: A ProximityResult carries the sender's coordinates only when
the receiver is within the threshold distance. Anything that renders or
returns a sender position must go through evaluate() and use its result,
never the raw decrypted coordinates.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.core.geo import PROXIMITY_THRESHOLD_KM, Coordinates, calculate_distance_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProximityResult:
    """Result of a proximity evaluation."""

    distance_km: float
    within_range: bool
    # Only set if within_range is True
    sender_coordinates: Optional[Coordinates] = None


def evaluate(
    receiver: Coordinates,
    sender: Coordinates,
    threshold_km: float = PROXIMITY_THRESHOLD_KM,
) -> ProximityResult:
    """
    Decide whether the sender's position may be revealed to the receiver.

    Distance is always computed; the sender's coordinates are attached
    only when distance <= threshold_km.

    Args:
        receiver: Receiver's own position
        sender: Sender's decrypted position
        threshold_km: Disclosure radius in kilometers (default 1 km)

    Returns:
        ProximityResult, with sender_coordinates None when out of range
    """
    distance = calculate_distance_km(receiver, sender)

    if distance <= threshold_km:
        return ProximityResult(
            distance_km=distance,
            within_range=True,
            sender_coordinates=sender,
        )

    # Log only the decision, NEVER coordinates
    logger.debug("PROXIMITY_GATED: sender location withheld")
    return ProximityResult(distance_km=distance, within_range=False)


def distance_percentage(
    result: ProximityResult, threshold_km: float = PROXIMITY_THRESHOLD_KM
) -> float:
    """Distance as a percentage of the threshold, capped at 100 (gauge value)."""
    if threshold_km <= 0:
        return 100.0
    return min(result.distance_km / threshold_km * 100, 100.0)
