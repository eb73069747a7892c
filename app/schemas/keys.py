"""Pydantic schemas for the key registry API."""

from datetime import datetime

from pydantic import Field

from app.schemas.common import CamelModel


class KeyPairCreate(CamelModel):
    """Key pair registration request."""

    sender_id: str = Field(..., min_length=1, description="Sender identifier")
    public_key: str = Field(..., min_length=1, description="PEM public key")
    private_key: str = Field(..., min_length=1, description="PEM private key")


class KeyPairResponse(CamelModel):
    """Stored key pair record."""

    id: int
    sender_id: str
    public_key: str
    private_key: str
    timestamp: datetime
