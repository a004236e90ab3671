import secrets
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    CreditLedgerEntry,
    Order,
    OrderLog,
    PhlebBooking,
    PlebJob,
    PlebJobLog,
    PractitionerCommission,
)


def new_tracking_number() -> str:
    return f"TRK{secrets.token_hex(5).upper()}"


class OrderRepository:
    """Order persistence. Nothing here commits; services own the transaction."""

    @staticmethod
    async def create_order(
        db: AsyncSession, order: Order, booking: Optional[PhlebBooking] = None
    ) -> Order:
        db.add(order)
        await db.flush()
        db.add(OrderLog(order_id=order.id, status=order.status, changed_by=order.order_placed_by))
        if booking is not None:
            booking.order_id = order.id
            db.add(booking)
        await db.flush()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int) -> Optional[Order]:
        result = await db.execute(select(Order).where(Order.id == order_id))
        return result.scalars().first()

    @staticmethod
    async def get_order_for_update(db: AsyncSession, order_id: int) -> Optional[Order]:
        result = await db.execute(select(Order).where(Order.id == order_id).with_for_update())
        return result.scalars().first()

    @staticmethod
    async def add_log(
        db: AsyncSession, order_id: int, status: str, changed_by: Optional[int] = None, note: Optional[str] = None
    ) -> None:
        db.add(OrderLog(order_id=order_id, status=status, changed_by=changed_by, note=note))
        await db.flush()

    @staticmethod
    async def get_logs(db: AsyncSession, order_id: int) -> List[OrderLog]:
        result = await db.execute(select(OrderLog).where(OrderLog.order_id == order_id).order_by(OrderLog.id))
        return list(result.scalars().all())

    @staticmethod
    async def get_booking(db: AsyncSession, order_id: int) -> Optional[PhlebBooking]:
        result = await db.execute(select(PhlebBooking).where(PhlebBooking.order_id == order_id))
        return result.scalars().first()

    @staticmethod
    async def add_commission(db: AsyncSession, order_id: int, practitioner_id: int, amount: Decimal) -> None:
        db.add(PractitionerCommission(order_id=order_id, practitioner_id=practitioner_id, commission_amount=amount))
        await db.flush()

    @staticmethod
    async def list_commissions(
        db: AsyncSession, practitioner_id: int, is_paid: Optional[bool] = None
    ) -> List[PractitionerCommission]:
        query = select(PractitionerCommission).where(PractitionerCommission.practitioner_id == practitioner_id)
        if is_paid is not None:
            query = query.where(PractitionerCommission.is_paid == is_paid)
        result = await db.execute(query.order_by(PractitionerCommission.id.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def mark_commissions_paid(db: AsyncSession, practitioner_id: int, commission_ids: List[int]) -> int:
        """Flips unpaid rows of this practitioner to paid; returns how many changed."""
        result = await db.execute(
            update(PractitionerCommission)
            .where(
                PractitionerCommission.practitioner_id == practitioner_id,
                PractitionerCommission.id.in_(commission_ids),
                PractitionerCommission.is_paid.is_(False),
            )
            .values(is_paid=True)
        )
        return result.rowcount

    @staticmethod
    async def add_credit_entry(db: AsyncSession, user_id: int, order_id: int, amount: Decimal, entry_type: str) -> None:
        db.add(CreditLedgerEntry(user_id=user_id, order_id=order_id, amount=amount, entry_type=entry_type))
        await db.flush()


class PlebJobRepository:

    @staticmethod
    async def create_job(db: AsyncSession, pleb_id: int, order_id: int, assigned_by: Optional[int]) -> PlebJob:
        job = PlebJob(
            pleb_id=pleb_id,
            order_id=order_id,
            job_status="Assigned",
            tracking_number=new_tracking_number(),
            assigned_by=assigned_by,
        )
        db.add(job)
        await db.flush()
        db.add(PlebJobLog(job_id=job.id, job_status=job.job_status, changed_by=assigned_by))
        await db.flush()
        return job

    @staticmethod
    async def get_job(db: AsyncSession, job_id: int) -> Optional[PlebJob]:
        result = await db.execute(select(PlebJob).where(PlebJob.id == job_id))
        return result.scalars().first()

    @staticmethod
    async def get_active_job_for_order(db: AsyncSession, order_id: int) -> Optional[PlebJob]:
        result = await db.execute(
            select(PlebJob).where(PlebJob.order_id == order_id, PlebJob.job_status != "Cancelled")
        )
        return result.scalars().first()

    @staticmethod
    async def get_jobs_for_order(db: AsyncSession, order_id: int) -> List[PlebJob]:
        result = await db.execute(select(PlebJob).where(PlebJob.order_id == order_id).order_by(PlebJob.id))
        return list(result.scalars().all())

    @staticmethod
    async def get_jobs_for_pleb(db: AsyncSession, pleb_id: int) -> List[PlebJob]:
        result = await db.execute(
            select(PlebJob).where(PlebJob.pleb_id == pleb_id).order_by(PlebJob.created_at.desc(), PlebJob.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def add_job_log(db: AsyncSession, job_id: int, job_status: str, changed_by: Optional[int]) -> None:
        db.add(PlebJobLog(job_id=job_id, job_status=job_status, changed_by=changed_by))
        await db.flush()
