"""Shared schema building blocks."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exchanged as camelCase JSON (senderId, publicKey, ...)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CoordinatesModel(CamelModel):
    """Latitude/longitude pair in decimal degrees."""

    latitude: float = Field(..., ge=-90, le=90, description="Latitude")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude")


class ErrorResponse(BaseModel):
    """Standard error response schema."""

    error: str
    retry_after_seconds: Optional[int] = Field(
        default=None, description="Seconds to wait before retry (for rate limiting)"
    )
