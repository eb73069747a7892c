"""Location registry and proximity verification endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_app_settings, get_store
from app.config import Settings
from app.core.errors import DecryptionError, NotFoundError
from app.core.freshness import is_stale
from app.core.geo import Coordinates
from app.schemas.common import ErrorResponse
from app.schemas.location import (
    LocationCreate,
    LocationResponse,
    VerifyRequest,
    VerifyResponse,
)
from app.services.store import LocationStore
from app.services.verification import verify_proximity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/location", tags=["location"])


@router.post(
    "",
    response_model=LocationResponse,
    responses={400: {"model": ErrorResponse, "description": "Missing required fields"}},
)
async def store_location(
    data: LocationCreate,
    store: Annotated[LocationStore, Depends(get_store)],
) -> LocationResponse:
    """
    Store a sender's encrypted location.

    Replaces the previous record for the sender (latest-wins). The ciphertext
    is opaque to this endpoint; it is not checked against the key registry.
    """
    record = await store.put_location(
        data.sender_id, data.encrypted_location, data.public_key
    )
    logger.debug(f"Location stored: sender={data.sender_id}, id={record.id}")
    return LocationResponse.model_validate(record)


@router.post(
    "/verify",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse, "description": "Missing required fields"},
        404: {"model": ErrorResponse, "description": "Sender data not found"},
        500: {"model": ErrorResponse, "description": "Decryption failure"},
    },
)
async def verify_location(
    data: VerifyRequest,
    store: Annotated[LocationStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> VerifyResponse:
    """
    Compute the receiver-sender distance server-side.

    Returns only {distance, withinRange} when the receiver is out of range.
    Sender location, stored record and key pair are added only within range.
    """
    receiver = Coordinates(
        latitude=data.receiver_location.latitude,
        longitude=data.receiver_location.longitude,
    )

    try:
        return await verify_proximity(store, data.sender_id, receiver, settings)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DecryptionError as e:
        # PRIVACY: error type only, never ciphertext or key material
        logger.error(f"Verification failed for sender={data.sender_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to decrypt location data",
        )


@router.get(
    "/{sender_id:path}",
    response_model=LocationResponse,
    responses={404: {"model": ErrorResponse, "description": "Not found or stale"}},
)
async def get_latest_location(
    sender_id: str,
    store: Annotated[LocationStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> LocationResponse:
    """
    Fetch the latest encrypted location for a sender.

    Records older than the staleness threshold are reported as 404 so
    pollers never display an outdated position as current.
    """
    record = await store.get_latest_location(sender_id)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Location data not found",
        )

    if is_stale(record.timestamp, settings.stale_after_seconds):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Location data is stale",
        )

    return LocationResponse.model_validate(record)
