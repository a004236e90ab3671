from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class SlotResponse(BaseModel):
    shift_type: str
    slot_times: str
    price: Decimal
    weekend_surcharge: Decimal

    class Config:
        from_attributes = True


class ZoneSlotsResponse(BaseModel):
    zone: str
    version: str
    serviceable: bool
    slots: List[SlotResponse]
    message: Optional[str] = None
