"""Pydantic schemas for the location registry and proximity verification."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from app.schemas.common import CamelModel, CoordinatesModel
from app.schemas.keys import KeyPairResponse


class LocationCreate(CamelModel):
    """Encrypted location submission."""

    sender_id: str = Field(..., min_length=1, description="Sender identifier")
    encrypted_location: str = Field(
        ..., min_length=1, description="Base64 RSA-OAEP ciphertext of the position"
    )
    public_key: str = Field(
        ..., min_length=1, description="PEM public key used for encryption"
    )


class LocationResponse(CamelModel):
    """Stored encrypted location record."""

    id: int
    sender_id: str
    encrypted_location: str
    public_key: str
    timestamp: datetime


class VerifyRequest(CamelModel):
    """Server-side proximity check request."""

    sender_id: str = Field(..., min_length=1, description="Sender identifier")
    receiver_location: CoordinatesModel


class VerifyResponse(CamelModel):
    """
    Proximity check result.

    PRIVACY: sender_location, location_data and key_pair are only populated
    when within_range is True; out-of-range responses omit them entirely.
    """

    distance: float = Field(..., ge=0, description="Distance in kilometers")
    within_range: bool
    sender_location: Optional[CoordinatesModel] = None
    location_data: Optional[LocationResponse] = None
    key_pair: Optional[KeyPairResponse] = None
