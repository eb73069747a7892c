"""Key registry endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_store
from app.schemas.common import ErrorResponse
from app.schemas.keys import KeyPairCreate, KeyPairResponse
from app.services.store import LocationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/keys", tags=["keys"])


@router.post(
    "",
    response_model=KeyPairResponse,
    responses={400: {"model": ErrorResponse, "description": "Missing required fields"}},
)
async def store_key_pair(
    data: KeyPairCreate,
    store: Annotated[LocationStore, Depends(get_store)],
) -> KeyPairResponse:
    """
    Register a sender's RSA key pair.

    Replaces any previously registered pair for the same sender.

    SECURITY: The private key is held server-side so receivers can fetch it.
    This mirrors the protocol as deployed and is a known weakening.
    """
    record = await store.put_key_pair(data.sender_id, data.public_key, data.private_key)

    # Safe log: only sender id, NEVER key material
    logger.info(f"Key pair stored: sender={data.sender_id}")
    return KeyPairResponse.model_validate(record)


@router.get(
    "/{sender_id:path}",
    response_model=KeyPairResponse,
    responses={404: {"model": ErrorResponse, "description": "Key pair not found"}},
)
async def get_key_pair(
    sender_id: str,
    store: Annotated[LocationStore, Depends(get_store)],
) -> KeyPairResponse:
    """Fetch the key pair registered for a sender."""
    record = await store.get_key_pair(sender_id)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Key pair not found",
        )

    return KeyPairResponse.model_validate(record)
