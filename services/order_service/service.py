from datetime import date, time
from decimal import Decimal
from typing import Callable, List, Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from services.availability_service.matcher import AvailabilityMatcher, destination_for
from services.availability_service.repository import AvailabilityRepository
from services.notification_service.dispatcher import NotificationDispatcher
from services.payment_service.gateway import PAID, RELEASED, PaymentGateway
from services.payment_service.repository import PaymentRepository
from services.user_service.repository import CustomerRepository, UserRepository
from services.user_service.service import ensure_staff
from shared.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from shared.observability import phleb_job_assignments_total
from shared.security.dependencies import SessionUser, UserRole
from shared.security.permissions import can_assign_jobs, can_manage_pleb

from .models import JOB_STATUSES, ORDER_STATUSES, Order, PlebJob
from .repository import OrderRepository, PlebJobRepository

logger = structlog.get_logger(__name__)


def order_visible_to(user: SessionUser, order: Order) -> bool:
    if user.is_admin:
        return True
    if user.role == UserRole.PRACTITIONER:
        return user.id in (order.created_by, order.practitioner_id)
    if user.role == UserRole.MODERATOR:
        return user.practitioner_id is not None and order.practitioner_id == user.practitioner_id
    if user.role == UserRole.CUSTOMER:
        return order.order_placed_by == user.id
    return False


async def practitioner_emails(db: AsyncSession, order: Order) -> list:
    emails = await UserRepository.get_emails(db, {order.created_by, order.practitioner_id})
    return list(emails.values())


class OrderService:

    @staticmethod
    async def get_for_user(
        db: AsyncSession, order_id: int, user: SessionUser, for_update: bool = False
    ) -> Order:
        if for_update:
            order = await OrderRepository.get_order_for_update(db, order_id)
        else:
            order = await OrderRepository.get_order(db, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if not order_visible_to(user, order):
            if user.role == UserRole.PHLEBOTOMIST and user.pleb_id is not None:
                jobs = await PlebJobRepository.get_jobs_for_order(db, order_id)
                if any(job.pleb_id == user.pleb_id for job in jobs):
                    return order
            raise AuthorizationError("You do not have access to this order")
        return order

    @staticmethod
    async def get_detail(db: AsyncSession, order_id: int, user: SessionUser) -> dict:
        order = await OrderService.get_for_user(db, order_id, user)
        return {
            "order": order,
            "booking": await OrderRepository.get_booking(db, order_id),
            "jobs": await PlebJobRepository.get_jobs_for_order(db, order_id),
            "logs": await OrderRepository.get_logs(db, order_id),
        }

    @staticmethod
    async def capture(
        db: AsyncSession,
        gateway_for: Callable[[str], PaymentGateway],
        user: SessionUser,
        order_id: int,
        amount: Optional[Decimal] = None,
    ) -> Order:
        """Captures a held payment, in full or for a smaller amount."""
        ensure_staff(user, "capture payments")
        # Locked until _settle commits, so a second capture sees the new status
        order = await OrderService.get_for_user(db, order_id, user, for_update=True)
        if order.payment_status != "Authorized" or not order.transaction_id:
            raise ValidationError(f"Only authorized payments can be captured (payment is {order.payment_status})")
        if amount is not None:
            if amount <= 0:
                raise ValidationError("Capture amount must be greater than 0")
            if amount > Decimal(order.total_val):
                raise ValidationError("Capture amount cannot exceed the order total")

        gateway = gateway_for(order.checkout_type)
        result = await gateway.capture(order.transaction_id, amount)
        if not result.success:
            raise PaymentProviderError(gateway.provider, "Capture was declined", result.response_code)

        await OrderService._settle(db, order, PAID, user.id)
        logger.info("payment_captured", order_id=order.id, amount=str(amount or order.total_val))
        return order

    @staticmethod
    async def release(
        db: AsyncSession, gateway_for: Callable[[str], PaymentGateway], user: SessionUser, order_id: int
    ) -> Order:
        ensure_staff(user, "release payments")
        order = await OrderService.get_for_user(db, order_id, user, for_update=True)
        if order.payment_status != "Authorized" or not order.transaction_id:
            raise ValidationError(f"Only authorized payments can be released (payment is {order.payment_status})")

        gateway = gateway_for(order.checkout_type)
        result = await gateway.release(order.transaction_id)
        if not result.success:
            raise PaymentProviderError(gateway.provider, "Release was declined", result.response_code)

        await OrderService._settle(db, order, RELEASED, user.id)
        logger.info("payment_released", order_id=order.id)
        return order

    @staticmethod
    async def _settle(db: AsyncSession, order: Order, payment_status: str, changed_by: Optional[int]) -> None:
        order.payment_status = payment_status
        payment = await PaymentRepository.get_by_transaction(db, order.transaction_id)
        if payment is not None:
            payment.status = payment_status
            payment.order_id = order.id
        await OrderRepository.add_log(db, order.id, order.status, changed_by, note=f"Payment {payment_status}")
        await db.commit()

    @staticmethod
    async def mark_failed(
        db: AsyncSession, order_id: int, note: str, payment_status: Optional[str] = None
    ) -> None:
        order = await OrderRepository.get_order(db, order_id)
        if order is None:
            return
        order.status = "Failed"
        if payment_status:
            order.payment_status = payment_status
        await OrderRepository.add_log(db, order.id, "Failed", None, note=note[:255])
        await db.commit()

    @staticmethod
    async def update_status(
        db: AsyncSession, notifier: NotificationDispatcher, user: SessionUser, order_id: int, status: str
    ) -> Order:
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status '{status}'")
        ensure_staff(user, "change order status")
        order = await OrderService.get_for_user(db, order_id, user)
        order.status = status
        await OrderRepository.add_log(db, order.id, status, user.id)
        await db.commit()

        notifier.order_status_changed(await practitioner_emails(db, order), order.order_number, status)
        return order

    @staticmethod
    async def create_job(
        db: AsyncSession,
        matcher: AvailabilityMatcher,
        order: Order,
        pleb_id: int,
        booking_date: date,
        booking_time: Union[str, time],
        assigned_by: Optional[int],
    ) -> PlebJob:
        """Re-validates the pleb against current data and assigns the order to them."""
        customer = await CustomerRepository.get_by_id(db, order.customer_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        if await PlebJobRepository.get_active_job_for_order(db, order.id):
            raise ConflictError("Order already has an assigned pleb")

        try:
            await matcher.validate_assignment(db, pleb_id, booking_date, booking_time, destination_for(customer))
        except Exception:
            phleb_job_assignments_total.labels(result="rejected").inc()
            raise

        job = await PlebJobRepository.create_job(db, pleb_id, order.id, assigned_by)
        booking = await OrderRepository.get_booking(db, order.id)
        if booking is not None:
            booking.booking_date = booking_date
            booking.booking_time = str(booking_time)
        await db.commit()
        phleb_job_assignments_total.labels(result="assigned").inc()
        logger.info("pleb_job_assigned", order_id=order.id, pleb_id=pleb_id, job_id=job.id)
        return job

    @staticmethod
    async def assign_pleb(
        db: AsyncSession,
        matcher: AvailabilityMatcher,
        notifier: NotificationDispatcher,
        authorized_emails,
        user: SessionUser,
        order_id: int,
        pleb_id: int,
        booking_date: date,
        booking_time: str,
    ) -> PlebJob:
        if not can_assign_jobs(user, authorized_emails):
            raise AuthorizationError("You are not allowed to assign jobs")
        # Row lock serializes concurrent assignments of the same order
        order = await OrderRepository.get_order_for_update(db, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        if order.status == "Failed":
            raise ValidationError("Cannot assign a pleb to a failed order")

        job = await OrderService.create_job(db, matcher, order, pleb_id, booking_date, booking_time, user.id)
        await OrderService.notify_job_assigned(db, notifier, order, job, booking_date, booking_time)
        return job

    @staticmethod
    async def notify_job_assigned(db, notifier, order, job, booking_date, booking_time) -> None:
        pleb = await AvailabilityRepository.get_pleb(db, job.pleb_id)
        notifier.job_assigned(
            [pleb.email if pleb else None], order.order_number, job.tracking_number, booking_date, booking_time
        )

    @staticmethod
    async def update_job_status(
        db: AsyncSession, notifier: NotificationDispatcher, user: SessionUser, job_id: int, job_status: str
    ) -> PlebJob:
        if job_status not in JOB_STATUSES:
            raise ValidationError(f"Unknown job status '{job_status}'")
        job = await PlebJobRepository.get_job(db, job_id)
        if job is None:
            raise NotFoundError("Job not found")
        if not can_manage_pleb(user, job.pleb_id):
            raise AuthorizationError("You can only update your own jobs")

        job.job_status = job_status
        await PlebJobRepository.add_job_log(db, job.id, job_status, user.id)
        await db.commit()

        order = await OrderRepository.get_order(db, job.order_id)
        if order is not None:
            notifier.job_status_changed(await practitioner_emails(db, order), job.tracking_number, job_status)
        return job

    @staticmethod
    async def commissions_for(
        db: AsyncSession, user: SessionUser, practitioner_id: int, is_paid: Optional[bool] = None
    ) -> dict:
        """A practitioner's commission rows plus what is still owed on them."""
        own = user.role == UserRole.PRACTITIONER and user.id == practitioner_id
        clinic = user.role == UserRole.MODERATOR and user.practitioner_id == practitioner_id
        if not (user.is_admin or own or clinic):
            raise AuthorizationError("You can only view your own commissions")
        commissions = await OrderRepository.list_commissions(db, practitioner_id, is_paid)
        unpaid = sum((Decimal(c.commission_amount) for c in commissions if not c.is_paid), Decimal("0"))
        return {"practitioner_id": practitioner_id, "unpaid_total": unpaid, "commissions": commissions}

    @staticmethod
    async def mark_commissions_paid(
        db: AsyncSession, user: SessionUser, practitioner_id: int, commission_ids: List[int]
    ) -> int:
        if not user.is_admin:
            raise AuthorizationError("Only admins can settle commissions")
        updated = await OrderRepository.mark_commissions_paid(db, practitioner_id, commission_ids)
        if updated == 0:
            raise NotFoundError("No unpaid commissions matched")
        await db.commit()
        logger.info("commissions_paid", practitioner_id=practitioner_id, count=updated, by=user.id)
        return updated

    @staticmethod
    async def jobs_for_pleb(db: AsyncSession, user: SessionUser, pleb_id: int) -> List[PlebJob]:
        if not can_manage_pleb(user, pleb_id):
            raise AuthorizationError("You can only view your own jobs")
        return await PlebJobRepository.get_jobs_for_pleb(db, pleb_id)
