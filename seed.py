"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 4 riders, 3 drivers (one still missing documents) and 1 admin
  - 3 promo codes, one per discount type
  - 5 rides driven through the booking service: requested, bidding with
    competing bids, scheduled with a promo applied, paid, and an urgent
    request that will expire if nobody bids
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from src.domain.entities import Location, PromoCode, Ride
from src.domain.enums import DiscountType, StairsTier, UserRole, VehicleType
from src.domain.pricing import RouteInfo
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import UserModel
from src.services.booking import BookingService

# Atlanta metro hospitals / neighbourhoods
GRADY = ("Grady Memorial Hospital, 80 Jesse Hill Jr Dr SE, Atlanta, GA", 33.7522, -84.3816)
EMORY = ("Emory University Hospital, 1364 Clifton Rd, Atlanta, GA", 33.7925, -84.3226)
PIEDMONT = ("Piedmont Atlanta Hospital, 1968 Peachtree Rd NW, Atlanta, GA", 33.8093, -84.3946)
DECATUR = ("215 Church St, Decatur, GA", 33.7748, -84.2963)
MIDTOWN = ("1000 Piedmont Ave NE, Atlanta, GA", 33.7816, -84.3790)
BUCKHEAD = ("3393 Peachtree Rd NE, Atlanta, GA", 33.8484, -84.3623)


USERS = [
    {"name": "Grace Holloway", "email": "grace@example.com", "role": UserRole.RIDER},
    {"name": "Samuel Ortiz", "email": "samuel@example.com", "role": UserRole.RIDER},
    {"name": "Nia Washington", "email": "nia@example.com", "role": UserRole.RIDER},
    {"name": "Henry Lam", "email": "henry@example.com", "role": UserRole.RIDER},
    {"name": "Marcus Reed", "email": "marcus@example.com", "role": UserRole.DRIVER, "docs": True},
    {"name": "Ava Lindqvist", "email": "ava@example.com", "role": UserRole.DRIVER, "docs": True},
    {"name": "Tomas Brennan", "email": "tomas@example.com", "role": UserRole.DRIVER, "docs": False},
    {"name": "Ops Admin", "email": "ops@example.com", "role": UserRole.ADMIN},
]

PROMOS = [
    PromoCode("WELCOME10", DiscountType.PERCENTAGE, 10, "10% off your first ride"),
    PromoCode("CARE15", DiscountType.FIXED_AMOUNT, 15, "$15 off", minimum_amount=40),
    PromoCode("CLINIC49", DiscountType.SET_PRICE, 49, "Clinic shuttle flat fare", max_uses=100),
]


def _ride(rider_id, origin, destination, when, **options) -> Ride:
    return Ride(
        rider_id=rider_id,
        pickup_location=origin[0],
        pickup=Location(origin[1], origin[2]),
        dropoff_location=destination[0],
        dropoff=Location(destination[1], destination[2]),
        scheduled_time=when,
        **options,
    )


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        service = BookingService(session)
        now = service.clock()

        # ── Users ─────────────────────────────────────────────────────
        users = []
        for u in USERS:
            m = UserModel(
                name=u["name"],
                email=u["email"],
                role=u["role"],
                documents_complete=u.get("docs", False),
            )
            session.add(m)
            users.append(m)
        await session.flush()
        riders = [u for u in users if u.role == UserRole.RIDER]
        drivers = [u for u in users if u.role == UserRole.DRIVER and u.documents_complete]
        print(f"  Created {len(users)} users")

        # ── Promo codes ───────────────────────────────────────────────
        for promo in PROMOS:
            await service.create_promo_code(promo)
        print(f"  Created {len(PROMOS)} promo codes")

        # ── Rides ─────────────────────────────────────────────────────
        route = RouteInfo(distance="6.4 mi", duration="18 mins")

        requested = await service.create_ride(
            _ride(riders[0].id, DECATUR, EMORY, now + timedelta(days=3), rider_bid=70),
            route,
        )

        bidding = await service.create_ride(
            _ride(
                riders[1].id, MIDTOWN, GRADY, now + timedelta(days=2),
                vehicle_type=VehicleType.WHEELCHAIR,
                pickup_stairs=StairsTier.FEW,
                needs_ramp=True,
                rider_bid=110,
            ),
            route,
        )
        suggested = bidding.ride.suggested_price
        await service.place_bid(bidding.ride.id, drivers[0].id, round(suggested * 0.95, 2))
        await service.place_bid(
            bidding.ride.id, drivers[1].id, round(suggested * 1.05, 2), "Ramp van available"
        )

        scheduled = await service.create_ride(
            _ride(
                riders[2].id, BUCKHEAD, PIEDMONT, now + timedelta(days=5),
                is_round_trip=True,
                return_time=now + timedelta(days=5, hours=3),
                needs_companion=True,
                promo_code="WELCOME10",
            ),
            route,
        )
        outcome = await service.place_bid(
            scheduled.ride.id, drivers[1].id, scheduled.ride.suggested_price
        )
        await service.accept_bid(outcome.bid.id)

        paid = await service.create_ride(
            _ride(riders[3].id, GRADY, DECATUR, now + timedelta(days=1, hours=6)),
            route,
        )
        outcome = await service.place_bid(
            paid.ride.id, drivers[0].id, paid.ride.suggested_price
        )
        await service.accept_bid(outcome.bid.id)
        await service.start_payment(paid.ride.id)
        await service.record_payment(paid.ride.id, succeeded=True)

        await service.create_ride(
            _ride(
                riders[0].id, EMORY, DECATUR, now + timedelta(hours=6),
                vehicle_type=VehicleType.STRETCHER,
                special_instructions="Discharge pickup, ward 4B",
            ),
            route,
        )
        print("  Created 5 rides")

        await session.commit()
        print(f"\nSeed complete! (sample requested ride: {requested.ride.reference_number})")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
