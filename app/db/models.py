"""SQLModel database models for the key and location registries."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyPairRecord(SQLModel, table=True):
    """
    RSA key pair registered by a sender.

    One row per sender_id; registering a new pair overwrites the previous one.
    SECURITY: private_key is stored server-side (known weakening, see DESIGN.md).
    """

    __tablename__ = "rsa_key_pairs"

    id: Optional[int] = Field(default=None, primary_key=True)
    sender_id: str = Field(index=True, unique=True)
    public_key: str
    private_key: str
    timestamp: datetime = Field(default_factory=utcnow)


class LocationRecord(SQLModel, table=True):
    """
    Latest encrypted location submitted by a sender.

    One row per sender_id (latest-wins, no history). The ciphertext is
    expected to have been produced with public_key, which is not validated.
    """

    __tablename__ = "location_data"

    id: Optional[int] = Field(default=None, primary_key=True)
    sender_id: str = Field(index=True, unique=True)
    encrypted_location: str
    public_key: str
    timestamp: datetime = Field(default_factory=utcnow, index=True)
