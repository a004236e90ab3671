from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import ConflictError, NotFoundError, ValidationError
from shared.observability import phleb_coupon_redemptions_total

from .repository import CouponRepository

logger = structlog.get_logger(__name__)

FIXED = "fixed"
PERCENTAGE = "percentage"
CENT = Decimal("0.01")


@dataclass(frozen=True)
class CouponRedemption:
    code: str
    type: str
    value: Decimal
    user_id: Optional[int] = None

    def discount_for(self, subtotal: Decimal) -> Decimal:
        """Discount amount for a cart subtotal, never more than the subtotal itself."""
        subtotal = Decimal(subtotal)
        if subtotal <= 0:
            return Decimal("0.00")
        if self.type == PERCENTAGE:
            amount = (subtotal * self.value / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
        else:
            amount = self.value
        return min(amount, subtotal)


class CouponLedger:

    @staticmethod
    async def redeem(
        db: AsyncSession, code: str, user_id: Optional[int] = None, today: Optional[date] = None
    ) -> CouponRedemption:
        """Consumes one use of a coupon, or raises without consuming anything.

        The coupon row is locked for the rest of the transaction and the use is
        taken with a conditional increment, so concurrent redemptions never push
        `used` past `max_users`.
        """
        code = (code or "").strip()
        if not code:
            raise ValidationError("Coupon code is required")
        today = today or date.today()

        coupon = await CouponRepository.get_by_code_for_update(db, code)
        if coupon is None:
            await db.rollback()
            phleb_coupon_redemptions_total.labels(result="unknown").inc()
            raise NotFoundError("Wrong coupon code")
        if coupon.expiry_date < today:
            await db.rollback()
            phleb_coupon_redemptions_total.labels(result="expired").inc()
            raise ConflictError("Coupon Expired")
        if coupon.used >= coupon.max_users or not await CouponRepository.increment_usage(db, coupon.id):
            await db.rollback()
            phleb_coupon_redemptions_total.labels(result="exhausted").inc()
            raise ConflictError("Code Usage Limit Reached")

        if user_id is not None:
            await CouponRepository.add_usage(db, coupon.id, user_id)

        redemption = CouponRedemption(
            code=coupon.code, type=coupon.type, value=Decimal(coupon.value), user_id=user_id
        )
        await db.commit()
        phleb_coupon_redemptions_total.labels(result="redeemed").inc()
        logger.info("coupon_redeemed", code=redemption.code, user_id=user_id)
        return redemption

    @staticmethod
    async def reverse(db: AsyncSession, code: str, user_id: Optional[int] = None) -> None:
        """Gives back one use taken by `redeem`, e.g. when the checkout failed later on."""
        coupon = await CouponRepository.get_by_code_for_update(db, code)
        if coupon is None:
            raise NotFoundError("Wrong coupon code")
        await CouponRepository.decrement_usage(db, coupon.id)
        if user_id is not None:
            await CouponRepository.remove_latest_usage(db, coupon.id, user_id)
        await db.commit()
        phleb_coupon_redemptions_total.labels(result="reversed").inc()
        logger.info("coupon_reversed", code=code, user_id=user_id)

    @staticmethod
    def discount_for(redemption: Optional[CouponRedemption], subtotal: Decimal) -> Decimal:
        if redemption is None:
            return Decimal("0.00")
        return redemption.discount_for(subtotal)
