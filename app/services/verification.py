"""Server-side proximity verification."""

import logging

from app.config import Settings
from app.core.crypto import decrypt_coordinates
from app.core.errors import NotFoundError
from app.core.freshness import is_stale
from app.core.geo import Coordinates
from app.core.proximity import evaluate
from app.schemas.common import CoordinatesModel
from app.schemas.keys import KeyPairResponse
from app.schemas.location import LocationResponse, VerifyResponse
from app.services.store import LocationStore

logger = logging.getLogger(__name__)


async def verify_proximity(
    store: LocationStore,
    sender_id: str,
    receiver: Coordinates,
    settings: Settings,
) -> VerifyResponse:
    """
    Check whether a receiver is close enough to see a sender's position.

    Pipeline:
    1. Load the sender's latest location (absent or stale -> not found)
    2. Load the sender's key pair (absent -> not found)
    3. Decrypt the location with the registered private key
    4. PROXIMITY GATE - decides what the response may contain

    Args:
        store: Key and location registries
        sender_id: Sender to check against
        receiver: Receiver's current position
        settings: Threshold and staleness configuration

    Returns:
        VerifyResponse; location and key material only when within range

    Raises:
        NotFoundError: No fresh location or no key pair for sender_id
        DecryptionError: Location cannot be decrypted with the stored key
    """
    location = await store.get_latest_location(sender_id)
    if location is None or is_stale(location.timestamp, settings.stale_after_seconds):
        raise NotFoundError("Location data not found")

    key_pair = await store.get_key_pair(sender_id)
    if key_pair is None:
        raise NotFoundError("Key pair not found")

    sender = decrypt_coordinates(location.encrypted_location, key_pair.private_key)
    result = evaluate(receiver, sender, settings.proximity_threshold_km)

    # Safe log: only sender id and decision, NEVER coordinates
    logger.info(
        f"Proximity verified: sender={sender_id}, within_range={result.within_range}"
    )

    if not result.within_range:
        return VerifyResponse(distance=result.distance_km, within_range=False)

    return VerifyResponse(
        distance=result.distance_km,
        within_range=True,
        sender_location=CoordinatesModel(
            latitude=result.sender_coordinates.latitude,
            longitude=result.sender_coordinates.longitude,
        ),
        location_data=LocationResponse.model_validate(location),
        key_pair=KeyPairResponse.model_validate(key_pair),
    )
