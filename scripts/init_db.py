"""Script to initialize the database without running migrations."""

import asyncio

from sqlalchemy import text

from app.database import engine
from app.models.appointment_notifications import metadata as notifications_metadata
from app.models.appointment_status_history import metadata as history_metadata
from app.models.appointments import metadata as appointments_metadata
from app.models.provider_availability import metadata as availability_metadata
from app.models.services import metadata as services_metadata

ALL_METADATA = (
    services_metadata,
    appointments_metadata,
    history_metadata,
    availability_metadata,
    notifications_metadata,
)


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        # Enable pgcrypto extension
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        # Create all tables
        for metadata in ALL_METADATA:
            await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
