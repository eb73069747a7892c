"""FastAPI dependencies."""

from fastapi import Request

from app.config import Settings
from app.services.store import LocationStore


def get_store(request: Request) -> LocationStore:
    """Return the store attached to the running application."""
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    """Return the settings the application was created with."""
    return request.app.state.settings
