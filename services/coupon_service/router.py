from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security.dependencies import SessionUser, get_optional_user

from .schemas import CouponRedeemRequest, CouponRedeemResponse, CouponResponse
from .service import CouponLedger

router = APIRouter()
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "coupon", "status": "running"}


@router.post("/redeem", response_model=CouponRedeemResponse)
async def redeem_coupon(
    payload: CouponRedeemRequest,
    db: AsyncSession = Depends(get_db),
    user: Optional[SessionUser] = Depends(get_optional_user),
):
    redemption = await CouponLedger.redeem(db, payload.code, user.id if user else None)
    return CouponRedeemResponse(coupon=CouponResponse.model_validate(redemption))
