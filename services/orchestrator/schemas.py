from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from services.payment_service.schemas import PaymentMethodIn


class BookingIn(BaseModel):
    booking_date: date
    booking_time: str = Field(..., min_length=4, max_length=8)


class PhlebBookingIn(BaseModel):
    """The client's choice of home-visit slot. Prices sent here are ignored and recomputed."""

    shift_type: str
    slot_times: Optional[str] = None
    price: Optional[Decimal] = None
    weekend_surcharge: Optional[Decimal] = None
    zone: Optional[str] = None
    availability: Optional[str] = None
    additional_preferences: Optional[str] = None


class CheckoutRequest(BaseModel):
    customer_id: int
    test_ids: List[int] = Field(..., min_length=1)
    service_ids: List[int] = []
    shipping_type: int
    discount: Decimal = Field(Decimal("0"), ge=0)
    coupon_code: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    pleb_id: Optional[int] = None
    booking: Optional[BookingIn] = None
    phleb_booking: Optional[PhlebBookingIn] = None

    payment_method: Optional[PaymentMethodIn] = None
    payment_token_id: Optional[int] = None
    save_card: bool = False

    current_medication: Optional[str] = None
    last_trained: Optional[str] = None
    fasted: Optional[bool] = None
    hydrated: Optional[bool] = None
    drank_alcohol: Optional[bool] = None
    drugs_taken: Optional[str] = None
    supplements: Optional[str] = None
    enhancing_drugs: Optional[str] = None


class AuthorizationOut(BaseModel):
    transaction_id: Optional[str] = None
    status: str
    authorization_code: Optional[str] = None
    response_code: Optional[str] = None
    response_message: Optional[str] = None

    class Config:
        from_attributes = True


class CheckoutResponse(BaseModel):
    success: bool = True
    order_id: int
    order_number: str
    total_val: Decimal
    payment_status: str
    authorization: Optional[AuthorizationOut] = None
    payment_token_id: Optional[int] = None
    pleb_job_id: Optional[int] = None
    assignment_error: Optional[str] = None
