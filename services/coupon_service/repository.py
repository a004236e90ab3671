from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Coupon, CouponUsage


class CouponRepository:

    @staticmethod
    async def get_by_code_for_update(db: AsyncSession, code: str) -> Optional[Coupon]:
        result = await db.execute(select(Coupon).where(Coupon.code == code).with_for_update())
        return result.scalars().first()

    @staticmethod
    async def increment_usage(db: AsyncSession, coupon_id: int) -> bool:
        """Takes one use only while uses remain; False when the cap was hit first."""
        result = await db.execute(
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.used < Coupon.max_users)
            .values(used=Coupon.used + 1)
        )
        return result.rowcount == 1

    @staticmethod
    async def decrement_usage(db: AsyncSession, coupon_id: int) -> bool:
        result = await db.execute(
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.used > 0)
            .values(used=Coupon.used - 1)
        )
        return result.rowcount == 1

    @staticmethod
    async def add_usage(db: AsyncSession, coupon_id: int, user_id: int) -> None:
        db.add(CouponUsage(coupon_id=coupon_id, user_id=user_id))
        await db.flush()

    @staticmethod
    async def remove_latest_usage(db: AsyncSession, coupon_id: int, user_id: int) -> None:
        result = await db.execute(
            select(CouponUsage.id)
            .where(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
            .order_by(CouponUsage.id.desc())
            .limit(1)
        )
        usage_id = result.scalar()
        if usage_id is not None:
            await db.execute(delete(CouponUsage).where(CouponUsage.id == usage_id))
