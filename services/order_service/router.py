from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.container import ServiceContainer, get_container
from shared.config.database import get_db
from shared.security.dependencies import SessionUser, get_current_user

from .schemas import (
    AssignPlebRequest,
    CaptureRequest,
    CommissionListResponse,
    JobStatusUpdate,
    MarkCommissionsPaidRequest,
    OrderDetailResponse,
    OrderResponse,
    OrderStatusUpdate,
    PlebJobResponse,
)
from .service import OrderService

router = APIRouter()
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "order", "status": "running"}


# Job routes first so "jobs" is never parsed as an order id
@router.get("/jobs/pleb/{pleb_id}", response_model=List[PlebJobResponse])
async def list_pleb_jobs(
    pleb_id: int, db: AsyncSession = Depends(get_db), user: SessionUser = Depends(get_current_user)
):
    return await OrderService.jobs_for_pleb(db, user, pleb_id)


@router.put("/jobs/{job_id}/status", response_model=PlebJobResponse)
async def update_job_status(
    job_id: int,
    payload: JobStatusUpdate,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await OrderService.update_job_status(db, container.notifier, user, job_id, payload.job_status)


@router.get("/commissions/{practitioner_id}", response_model=CommissionListResponse)
async def list_commissions(
    practitioner_id: int,
    is_paid: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
):
    return await OrderService.commissions_for(db, user, practitioner_id, is_paid)


@router.post("/commissions/{practitioner_id}/mark-paid")
async def mark_commissions_paid(
    practitioner_id: int,
    payload: MarkCommissionsPaidRequest,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
):
    updated = await OrderService.mark_commissions_paid(db, user, practitioner_id, payload.commission_ids)
    return {"success": True, "updated": updated}


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(order_id: int, db: AsyncSession = Depends(get_db), user: SessionUser = Depends(get_current_user)):
    return await OrderService.get_detail(db, order_id, user)


@router.post("/{order_id}/capture", response_model=OrderResponse)
async def capture_payment(
    order_id: int,
    payload: Optional[CaptureRequest] = None,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    amount = payload.amount if payload else None
    return await OrderService.capture(db, container.gateway, user, order_id, amount)


@router.post("/{order_id}/release", response_model=OrderResponse)
async def release_payment(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await OrderService.release(db, container.gateway, user, order_id)


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await OrderService.update_status(db, container.notifier, user, order_id, payload.status)


@router.post("/{order_id}/assign", response_model=PlebJobResponse)
async def assign_pleb(
    order_id: int,
    payload: AssignPlebRequest,
    db: AsyncSession = Depends(get_db),
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await OrderService.assign_pleb(
        db,
        container.matcher,
        container.notifier,
        container.settings.job_assign_authorized_emails,
        user,
        order_id,
        payload.pleb_id,
        payload.booking_date,
        payload.booking_time,
    )
