"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 1 admin, 2 lead reps, 7 reps
  - 1 closed session with a short drive around Bandra Kurla Complex
  - 1 open session for the first rep (check out to see a distance computed)
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from src.domain.entities import Coordinate
from src.domain.enums import CalculationMethod, RouteAccuracy, UserRole
from src.domain.distance import path_length_km, round_km
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.repositories import (
    DailySummaryRepository,
    GPSLogRepository,
    GPSSessionRepository,
    UserRepository,
)

USERS = [
    {"name": "Anita Desai", "email": "anita@example.com", "role": UserRole.ADMIN},
    {"name": "Rahul Verma", "email": "rahul@example.com", "role": UserRole.LEAD_MR},
    {"name": "Kavya Menon", "email": "kavya@example.com", "role": UserRole.LEAD_MR},
    {"name": "Aarav Sharma", "email": "aarav@example.com", "role": UserRole.MR},
    {"name": "Priya Patel", "email": "priya@example.com", "role": UserRole.MR},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "role": UserRole.MR},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "role": UserRole.MR},
    {"name": "Vikram Singh", "email": "vikram@example.com", "role": UserRole.MR},
    {"name": "Meera Nair", "email": "meera@example.com", "role": UserRole.MR},
    {"name": "Diya Iyer", "email": "diya@example.com", "role": UserRole.MR},
]

# Bandra Kurla Complex -> Kalanagar -> Bandra East (approx)
DRIVE = [
    (19.0660, 72.8650),
    (19.0631, 72.8612),
    (19.0605, 72.8570),
    (19.0588, 72.8531),
    (19.0569, 72.8496),
    (19.0546, 72.8455),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        users = UserRepository(session)
        sessions = GPSSessionRepository(session)
        logs = GPSLogRepository(session)
        summaries = DailySummaryRepository(session)

        # ── Users ─────────────────────────────────────────────────────
        user_models = [await users.create(**u) for u in USERS]
        print(f"  Created {len(user_models)} users")

        # ── Closed session (yesterday) ────────────────────────────────
        rep = user_models[4]
        start = datetime.now(timezone.utc).replace(hour=4, minute=0, second=0, microsecond=0)
        start -= timedelta(days=1)
        coords = [
            Coordinate(lat, lng, timestamp=start + timedelta(minutes=4 * i))
            for i, (lat, lng) in enumerate(DRIVE)
        ]
        closed = await sessions.create(
            user_id=rep.id,
            check_in=start,
            start_lat=DRIVE[0][0],
            start_lng=DRIVE[0][1],
        )
        await logs.add_many(closed.id, coords, start)
        end = start + timedelta(hours=8)
        km = round_km(path_length_km(coords))
        await sessions.close(
            closed.id,
            check_out=end,
            total_km=km,
            calculation_method=CalculationMethod.FALLBACK.value,
            route_accuracy=RouteAccuracy.APPROXIMATE.value,
            end_lat=DRIVE[-1][0],
            end_lng=DRIVE[-1][1],
        )
        await summaries.upsert(rep.id, end.date(), km=km, hours=8.0, check_ins=1)
        print(f"  Created closed session {closed.id} ({km} km)")

        # ── Open session ──────────────────────────────────────────────
        open_session = await sessions.create(
            user_id=user_models[3].id,
            check_in=datetime.now(timezone.utc) - timedelta(hours=1),
            start_lat=DRIVE[0][0],
            start_lng=DRIVE[0][1],
        )
        print(f"  Created open session {open_session.id}")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
