"""
Seed script -- populates the database with sample data for local development.

Run after migrations:
    python seed.py

Creates:
  - 1 admin, 4 drivers (one blocked), 6 clients
  - 3 unused driver access codes
  - 8 sample orders (mix of new, bidding, accepted, completed, cancelled)
  - ratings for the completed orders
"""

import asyncio

from sqlalchemy import text

from taxi_dispatch.config import settings
from taxi_dispatch.domain.codes import random_code
from taxi_dispatch.domain.enums import OrderStatus, OrderType, UserRole
from taxi_dispatch.domain.pricing import PricingEngine, default_tariffs
from taxi_dispatch.infrastructure.database import async_session_factory, engine
from taxi_dispatch.infrastructure.models import (
    AccessCodeModel,
    OrderModel,
    RatingModel,
    UserModel,
    utcnow,
)

ADMIN_ID = settings.admin_ids[0] if settings.admin_ids else "100000001"

DRIVERS = [
    {"id": "200000001", "name": "Oleh Kovalenko", "phone": "+380501112233"},
    {"id": "200000002", "name": "Iryna Shevchenko", "phone": "+380502223344"},
    {"id": "200000003", "name": "Taras Bondarenko", "phone": "+380503334455"},
    {"id": "200000004", "name": "Mykola Tkachenko", "phone": "+380504445566", "blocked": True},
]

CLIENTS = [
    {"id": "300000001", "name": "Anna Melnyk"},
    {"id": "300000002", "name": "Dmytro Kravchenko"},
    {"id": "300000003", "name": "Sofiia Oliinyk"},
    {"id": "300000004", "name": "Andrii Lysenko"},
    {"id": "300000005", "name": "Kateryna Moroz"},
    {"id": "300000006", "name": "Yurii Savchenko"},
]

ORDERS = [
    # waiting for a driver
    {"client": 0, "type": OrderType.TAXI, "from": "Khreshchatyk 1", "to": "Boryspil Airport", "km": 35.0,
     "status": OrderStatus.NEW},
    {"client": 1, "type": OrderType.COURIER, "from": "Podil, Sahaidachnoho 10", "to": "Obolon, Heroiv Dnipra 5",
     "km": 8.5, "status": OrderStatus.NEW},
    {"client": 2, "type": OrderType.CARGO, "from": "Darnytsia market", "to": "Troieshchyna", "km": None,
     "status": OrderStatus.NEW, "comment": "Sofa, two movers needed"},
    # negotiating
    {"client": 3, "type": OrderType.TOWING, "from": "Ring road km 12", "to": "Service station, Vasylkivska 40",
     "km": None, "status": OrderStatus.BIDDING, "driver": 2, "bid": 650.0},
    # in progress
    {"client": 4, "type": OrderType.TAXI, "from": "Railway station", "to": "Lukianivska 3", "km": 6.0,
     "status": OrderStatus.ACCEPTED, "driver": 0},
    # finished
    {"client": 0, "type": OrderType.TAXI, "from": "Arsenalna", "to": "Pecherska 12", "km": 3.2,
     "status": OrderStatus.COMPLETED, "driver": 0, "stars": 5},
    {"client": 5, "type": OrderType.COURIER, "from": "Lybidska 1", "to": "Holosiivska 20", "km": 4.0,
     "status": OrderStatus.COMPLETED, "driver": 1, "stars": 4},
    {"client": 1, "type": OrderType.TAXI, "from": "Vokzalna", "to": "Shuliavska", "km": 5.5,
     "status": OrderStatus.CANCELLED},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        session.add(UserModel(id=ADMIN_ID, role=UserRole.ADMIN, name="Admin"))
        for d in DRIVERS:
            session.add(
                UserModel(
                    id=d["id"],
                    role=UserRole.DRIVER,
                    name=d["name"],
                    phone=d["phone"],
                    is_blocked=d.get("blocked", False),
                )
            )
        for c in CLIENTS:
            session.add(UserModel(id=c["id"], role=UserRole.CLIENT, name=c["name"]))
        await session.flush()
        print(f"  Created {1 + len(DRIVERS) + len(CLIENTS)} users")

        # ── Access codes ──────────────────────────────────────────────
        for _ in range(3):
            session.add(
                AccessCodeModel(
                    code=random_code(settings.access_code_length), issued_by=ADMIN_ID
                )
            )
        await session.flush()
        print("  Created 3 access codes")

        # ── Orders & ratings ──────────────────────────────────────────
        tariffs = default_tariffs(settings.default_tariffs)
        pricing = PricingEngine()
        now = utcnow()
        ratings = 0
        for o in ORDERS:
            driver_id = DRIVERS[o["driver"]]["id"] if "driver" in o else None
            status = o["status"]
            order = OrderModel(
                type=o["type"],
                client_id=CLIENTS[o["client"]]["id"],
                driver_id=driver_id,
                from_address=o["from"],
                to_address=o["to"],
                comment=o.get("comment"),
                distance_km=o["km"],
                price=pricing.quote(tariffs[o["type"]], o["km"]),
                driver_bid_price=o.get("bid"),
                status=status,
                proposal_attempts=[],
                accepted_at=now if status in (OrderStatus.ACCEPTED, OrderStatus.COMPLETED) else None,
                completed_at=now if status == OrderStatus.COMPLETED else None,
                cancelled_at=now if status == OrderStatus.CANCELLED else None,
            )
            session.add(order)
            await session.flush()
            if "stars" in o:
                session.add(
                    RatingModel(
                        order_id=order.order_id, driver_id=driver_id, stars=o["stars"]
                    )
                )
                ratings += 1
        await session.flush()
        print(f"  Created {len(ORDERS)} orders and {ratings} ratings")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
