"""Seed script: populates dev DB with a sample agency, user, resource, client and events."""

import asyncio
import uuid
from datetime import date, timedelta

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from calsync.config import get_settings
from calsync.models.records import Agency, Client, Event, Resource, User

SEED_AGENCY_ID = uuid.UUID("aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee")
SEED_USER_ID = uuid.UUID("aaaaaaaa-bbbb-cccc-dddd-ffffffffffff")
SEED_EMAIL = "dev@example.com"


async def seed():
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with session_factory() as db:
        result = await db.execute(text("SELECT id FROM users WHERE email = :email"), {"email": SEED_EMAIL})
        if result.scalar():
            print(f"Seed user {SEED_EMAIL} already exists, skipping.")
            await engine.dispose()
            return

        db.add(Agency(id=SEED_AGENCY_ID, name="Dev Agency"))
        await db.flush()

        db.add(User(id=SEED_USER_ID, agency_id=SEED_AGENCY_ID, email=SEED_EMAIL, name="Dev User"))

        resource = Resource(
            id=uuid.uuid4(),
            agency_id=SEED_AGENCY_ID,
            name="Sample Artist",
            email="artist@example.com",
            calendar_email="artist.calendar@example.com",
        )
        client = Client(id=uuid.uuid4(), agency_id=SEED_AGENCY_ID, name="Sample Client", email="client@example.com")
        db.add_all([resource, client])
        await db.flush()

        today = date.today()
        db.add_all(
            [
                Event(
                    agency_id=SEED_AGENCY_ID,
                    resource_id=resource.id,
                    client_id=client.id,
                    business_name="Launch Party",
                    invoice_name="Launch Party Ltd",
                    notes="Stage at 19:00",
                    event_date=today + timedelta(days=7),
                ),
                Event(
                    agency_id=SEED_AGENCY_ID,
                    resource_id=resource.id,
                    client_id=client.id,
                    business_name="Corporate Evening",
                    event_date=today + timedelta(days=14),
                    event_time="20:00",
                    event_time_end="23:00",
                ),
            ]
        )

        await db.commit()
        print(f"Seeded: user={SEED_EMAIL}, 1 agency, 1 resource, 1 client, 2 events")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
