from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from services.user_service.repository import CustomerRepository
from shared.config.container import ServiceContainer, get_container
from shared.config.database import get_db
from shared.errors import AuthorizationError, NotFoundError
from shared.security.dependencies import SessionUser, get_current_user
from shared.security.permissions import can_assign_jobs, can_manage_pleb

from .matcher import destination_for
from .schemas import AvailabilityResponse, AvailabilityUpdate, EligiblePlebResponse, EligiblePlebsResponse
from .service import AvailabilityStore

router = APIRouter()
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "availability", "status": "running"}


# Declared before /{pleb_id} so "eligible" is not read as an id
@router.get("/eligible", response_model=EligiblePlebsResponse)
async def find_eligible_plebs(
    booking_date: date = Query(...),
    booking_time: str = Query(..., min_length=4, max_length=8),
    customer_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    if not can_assign_jobs(user, container.settings.job_assign_authorized_emails):
        raise AuthorizationError("You are not allowed to assign jobs")
    customer = await CustomerRepository.get_by_id(db, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")

    plebs = await container.matcher.find_eligible(db, booking_date, booking_time, destination_for(customer))
    return EligiblePlebsResponse(
        booking_date=booking_date,
        booking_time=booking_time,
        plebs=[EligiblePlebResponse.model_validate(pleb) for pleb in plebs],
    )


@router.get("/{pleb_id}", response_model=AvailabilityResponse)
async def get_availability(
    pleb_id: int, db: AsyncSession = Depends(get_db), user: SessionUser = Depends(get_current_user)
):
    if not can_manage_pleb(user, pleb_id):
        raise AuthorizationError("You can only view your own availability")
    return await AvailabilityStore.get(db, pleb_id)


@router.put("/{pleb_id}", response_model=AvailabilityResponse)
async def replace_availability(
    pleb_id: int,
    payload: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
):
    if not can_manage_pleb(user, pleb_id):
        raise AuthorizationError("You can only update your own availability")
    return await AvailabilityStore.replace(db, pleb_id, payload)
