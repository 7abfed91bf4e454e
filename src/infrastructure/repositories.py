"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Writers that must be serialised per ride
use ``SELECT ... FOR UPDATE`` on the ride row (a no-op on SQLite).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BidModel,
    CounterOfferModel,
    PromoCodeModel,
    RideModel,
    UserModel,
)
from src.domain.enums import UNMATCHED, CounterParty


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_for_update(self, ride_id: int) -> Optional[RideModel]:
        """Lock the ride row for the rest of the transaction."""
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def list_for_rider(self, rider_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.rider_id == rider_id)
            .order_by(RideModel.scheduled_time, RideModel.id)
        )
        return list(result.scalars().all())

    async def get_expired_unmatched(
        self, now: datetime, *, for_update: bool = False
    ) -> list[RideModel]:
        """Unmatched rides whose ``expires_at`` has passed."""
        query = (
            select(RideModel)
            .where(RideModel.status.in_(list(UNMATCHED)))
            .where(RideModel.expires_at.is_not(None))
            .where(RideModel.expires_at <= now)
            .order_by(RideModel.expires_at, RideModel.id)
        )
        if for_update:
            query = query.with_for_update(skip_locked=True)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        result = await self.session.execute(
            select(RideModel.status, func.count()).group_by(RideModel.status)
        )
        return {status.value: count for status, count in result.all()}


class BidRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, bid: BidModel) -> BidModel:
        self.session.add(bid)
        await self.session.flush()
        return bid

    async def get_by_id(self, bid_id: int) -> Optional[BidModel]:
        return await self.session.get(BidModel, bid_id)

    async def list_for_ride(self, ride_id: int) -> list[BidModel]:
        result = await self.session.execute(
            select(BidModel)
            .where(BidModel.ride_id == ride_id)
            .order_by(BidModel.created_at, BidModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def add_counter_offer(
        self,
        bid_id: int,
        party: CounterParty,
        amount: float,
        created_at: datetime,
        message: Optional[str] = None,
    ) -> CounterOfferModel:
        entry = CounterOfferModel(
            bid_id=bid_id,
            party=party,
            amount=amount,
            message=message,
            created_at=created_at,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def history(self, bid_id: int) -> list[CounterOfferModel]:
        result = await self.session.execute(
            select(CounterOfferModel)
            .where(CounterOfferModel.bid_id == bid_id)
            .order_by(CounterOfferModel.created_at, CounterOfferModel.id)
        )
        return list(result.scalars().all())


class PromoCodeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, promo: PromoCodeModel) -> PromoCodeModel:
        promo.code = promo.code.strip().upper()
        self.session.add(promo)
        await self.session.flush()
        return promo

    async def get_by_code(self, code: str) -> Optional[PromoCodeModel]:
        result = await self.session.execute(
            select(PromoCodeModel).where(
                PromoCodeModel.code == code.strip().upper()
            )
        )
        return result.scalar_one_or_none()

    async def increment_usage(self, promo_id: int) -> None:
        await self.session.execute(
            update(PromoCodeModel)
            .where(PromoCodeModel.id == promo_id)
            .values(used_count=PromoCodeModel.used_count + 1)
        )


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)
