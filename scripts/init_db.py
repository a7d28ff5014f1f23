"""Script to initialize the appointments and country databases."""

import asyncio

from appointment_router.config import settings
from appointment_router.database import create_engine
from appointment_router.models.appointments import metadata as appointments_metadata
from appointment_router.models.country_appointments import metadata as country_metadata


async def init_db() -> None:
    """Create the appointments table and the table of every country database."""
    targets = [
        ("appointments", settings.database_url, appointments_metadata),
        ("PE", settings.database_url_pe, country_metadata),
        ("CL", settings.database_url_cl, country_metadata),
    ]

    for name, url, metadata in targets:
        engine = create_engine(url)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
            print(f"✓ {name} database initialized successfully!")
        finally:
            await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db())
