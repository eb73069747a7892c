"""Database engine management."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel

from app.config import get_settings


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine for the configured (or given) database URL."""
    return create_async_engine(
        database_url or get_settings().database_url,
        echo=False,
        future=True,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    # Import models to register them with SQLModel metadata
    from app.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
