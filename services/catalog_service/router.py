from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db

from .schemas import ZoneSlotsResponse
from .service import PricingCatalog

router = APIRouter()
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "catalog", "status": "running"}


@router.get("/slots", response_model=ZoneSlotsResponse)
async def get_slots(
    postcode: Optional[str] = Query(None),
    town: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Home-visit slots and prices for an address. Out-of-area is a normal answer."""
    resolution = await PricingCatalog.resolve_zone(db, postcode, town)
    return ZoneSlotsResponse(
        zone=resolution.zone,
        version=resolution.version,
        serviceable=resolution.is_serviceable,
        slots=list(resolution.slots),
        message=resolution.message,
    )
