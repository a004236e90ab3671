from decimal import Decimal

from pydantic import BaseModel, Field


class CouponRedeemRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class CouponResponse(BaseModel):
    code: str
    type: str
    value: Decimal

    class Config:
        from_attributes = True


class CouponRedeemResponse(BaseModel):
    success: bool = True
    coupon: CouponResponse
