"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 8 sample riders
  - 10 sample drivers waiting at Delhi metro pickup points (mixed
    bike / auto / car, some offline)
"""

import asyncio

from sqlalchemy import text

from src.domain.enums import VehicleType
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import DriverModel, UserModel


USERS = [
    {"name": "Aarav Sharma", "phone": "+919810000001"},
    {"name": "Priya Patel", "phone": "+919810000002"},
    {"name": "Rohan Mehta", "phone": "+919810000003"},
    {"name": "Sneha Gupta", "phone": "+919810000004"},
    {"name": "Vikram Singh", "phone": "+919810000005"},
    {"name": "Ananya Reddy", "phone": "+919810000006"},
    {"name": "Karan Joshi", "phone": "+919810000007"},
    {"name": "Meera Nair", "phone": "+919810000008"},
]

DRIVERS = [
    # Hauz Khas
    {"name": "Ramesh Kumar", "phone": "+919820000001", "vehicle_no": "DL1RA1234",
     "type": VehicleType.AUTO, "point": "Hauz Khas Gate 1", "online": True, "rating": 4.7},
    {"name": "Suresh Yadav", "phone": "+919820000002", "vehicle_no": "DL3SB5678",
     "type": VehicleType.BIKE, "point": "Hauz Khas", "online": True, "rating": 4.5},
    {"name": "Mahesh Verma", "phone": "+919820000003", "vehicle_no": "DL8CA9012",
     "type": VehicleType.CAR, "point": "HKM", "online": False, "rating": 4.8},
    # Rajiv Chowk
    {"name": "Dinesh Chauhan", "phone": "+919820000004", "vehicle_no": "DL1RB3456",
     "type": VehicleType.AUTO, "point": "Rajiv Chowk Gate 4", "online": True, "rating": 4.6},
    {"name": "Naresh Pal", "phone": "+919820000005", "vehicle_no": "DL2SC7890",
     "type": VehicleType.BIKE, "point": "Rajiv Chowk", "online": True, "rating": 4.4},
    # Kashmere Gate
    {"name": "Ajay Thakur", "phone": "+919820000006", "vehicle_no": "DL1RC2345",
     "type": VehicleType.AUTO, "point": "Kashmere Gate", "online": True, "rating": 4.9},
    {"name": "Vijay Rawat", "phone": "+919820000007", "vehicle_no": "DL4CD6789",
     "type": VehicleType.CAR, "point": "ISBT Kashmere Gate", "online": False, "rating": 4.3},
    # Airport / others
    {"name": "Sanjay Bisht", "phone": "+919820000008", "vehicle_no": "DL9CE0123",
     "type": VehicleType.CAR, "point": "IGI Airport T3", "online": True, "rating": 4.7},
    {"name": "Pankaj Negi", "phone": "+919820000009", "vehicle_no": "DL5RD4567",
     "type": VehicleType.AUTO, "point": "Noida City Centre", "online": True, "rating": 4.2},
    {"name": "Manoj Rana", "phone": "+919820000010", "vehicle_no": "DL6SE8901",
     "type": VehicleType.AUTO, "point": None, "online": True, "rating": 4.5},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Riders ────────────────────────────────────────────────────
        for u in USERS:
            session.add(UserModel(name=u["name"], phone=u["phone"]))
        await session.flush()
        print(f"  Created {len(USERS)} riders")

        # ── Drivers ───────────────────────────────────────────────────
        for d in DRIVERS:
            session.add(
                DriverModel(
                    full_name=d["name"],
                    phone=d["phone"],
                    vehicle_no=d["vehicle_no"],
                    vehicle_type=d["type"],
                    rating=d["rating"],
                    is_online=d["online"],
                    current_pickup_point=d["point"],
                )
            )
        await session.flush()
        online = sum(1 for d in DRIVERS if d["online"])
        print(f"  Created {len(DRIVERS)} drivers ({online} online)")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
