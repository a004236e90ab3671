from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class CaptureRequest(BaseModel):
    amount: Optional[Decimal] = None

    class Config:
        extra = "forbid"


class OrderStatusUpdate(BaseModel):
    status: str

    class Config:
        extra = "forbid"


class AssignPlebRequest(BaseModel):
    pleb_id: int
    booking_date: date
    booking_time: str = Field(..., min_length=4, max_length=8)

    class Config:
        extra = "forbid"


class JobStatusUpdate(BaseModel):
    job_status: str

    class Config:
        extra = "forbid"


class OrderResponse(BaseModel):
    id: int
    order_code: str
    order_number: str
    customer_id: int
    checkout_type: str
    payment_status: str
    status: str
    subtotal: Decimal
    discount: Decimal
    coupon_code: Optional[str] = None
    coupon_discount: Decimal
    shipping_charges: Decimal
    other_charges_total: Decimal
    phleb_charges: Decimal
    total_val: Decimal
    currency: str
    transaction_id: Optional[str] = None
    created_by: int
    practitioner_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PhlebBookingResponse(BaseModel):
    zone: Optional[str] = None
    shift_type: Optional[str] = None
    slot_times: Optional[str] = None
    price: Decimal
    weekend_surcharge: Decimal
    booking_date: Optional[date] = None
    booking_time: Optional[str] = None

    class Config:
        from_attributes = True


class PlebJobResponse(BaseModel):
    id: int
    pleb_id: int
    order_id: int
    job_status: str
    tracking_number: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderLogResponse(BaseModel):
    status: str
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderDetailResponse(BaseModel):
    order: OrderResponse
    booking: Optional[PhlebBookingResponse] = None
    jobs: List[PlebJobResponse] = []
    logs: List[OrderLogResponse] = []


class MarkCommissionsPaidRequest(BaseModel):
    commission_ids: List[int] = Field(..., min_length=1)

    class Config:
        extra = "forbid"


class CommissionResponse(BaseModel):
    id: int
    order_id: int
    commission_amount: Decimal
    is_paid: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommissionListResponse(BaseModel):
    practitioner_id: int
    unpaid_total: Decimal
    commissions: List[CommissionResponse] = []
