from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel


class SlotSchema(BaseModel):
    start: str
    end: str
    available: bool = True

    class Config:
        extra = "forbid"


class ServiceRangeIn(BaseModel):
    max_distance: Decimal
    unit: str = "miles"

    class Config:
        extra = "forbid"


class AvailabilityUpdate(BaseModel):
    """Wholesale replacement of a pleb's week. Days left out become empty."""

    availability: Dict[str, List[SlotSchema]]
    service_range: ServiceRangeIn

    class Config:
        extra = "forbid"


class ServiceRangeOut(BaseModel):
    max_distance: Optional[Decimal] = None
    unit: Optional[str] = None
    max_distance_miles: Optional[Decimal] = None
    max_distance_km: Optional[Decimal] = None


class AvailabilityResponse(BaseModel):
    pleb_id: int
    availability: Dict[str, List[SlotSchema]]
    service_range: ServiceRangeOut


class EligiblePlebResponse(BaseModel):
    pleb_id: int
    name: str
    email: Optional[str] = None
    distance_miles: float
    duration_seconds: Optional[int] = None
    max_distance_miles: Decimal
    slot_start: str
    slot_end: str

    class Config:
        from_attributes = True


class EligiblePlebsResponse(BaseModel):
    booking_date: date
    booking_time: str
    plebs: List[EligiblePlebResponse]
