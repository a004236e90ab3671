import secrets
import time
from datetime import datetime
from decimal import Decimal

import structlog

from services.catalog_service.service import PricingCatalog
from services.coupon_service.service import CouponLedger
from services.order_service.models import Order, PhlebBooking
from services.order_service.repository import OrderRepository
from services.order_service.service import OrderService, practitioner_emails
from services.payment_service.gateway import RELEASED, VOIDED, PaymentMethod, sanitize_reference
from services.payment_service.repository import PaymentRepository
from services.payment_service.service import (
    PaymentLedger,
    PaymentTokenVault,
    payment_method_from_request,
    provider_customer_for,
)
from services.user_service.repository import CustomerRepository, UserRepository
from services.user_service.service import ensure_can_order_for, ensure_staff
from shared.config.container import GLOBAL_PAYMENTS, ServiceContainer
from shared.errors import AppError, NotFoundError, PaymentProviderError, ValidationError
from shared.observability import phleb_checkout_duration_seconds, phleb_checkout_total
from shared.security.dependencies import SessionUser, UserRole

from .saga import SagaOrchestrator
from .schemas import AuthorizationOut, CheckoutRequest, CheckoutResponse

logger = structlog.get_logger(__name__)

CREDIT = "Credit"
CENT = Decimal("0.01")
NON_POSITIVE_TOTAL = "Total calculated amount is 0 or less. Please check your order details again."


def new_order_code(now: datetime = None) -> str:
    """`YYMM` followed by six random digits."""
    now = now or datetime.now()
    return f"{now:%y%m}{secrets.randbelow(10 ** 6):06d}"


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT)


# --- ACTIONS ---

async def load_customer(ctx: dict):
    user: SessionUser = ctx["user"]
    async with ctx["container"].session_factory() as db:
        customer = await CustomerRepository.get_by_id(db, ctx["request"].customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    ensure_can_order_for(user, customer)
    if ctx["checkout_type"] == CREDIT:
        ensure_staff(user, "use credit checkout")
    ctx["customer"] = customer


async def redeem_coupon(ctx: dict):
    code = (ctx["request"].coupon_code or "").strip()
    if not code:
        return
    async with ctx["container"].session_factory() as db:
        ctx["coupon"] = await CouponLedger.redeem(db, code, ctx["user"].id)


async def price_cart(ctx: dict):
    request: CheckoutRequest = ctx["request"]
    customer = ctx["customer"]
    async with ctx["container"].session_factory() as db:
        resolution = await PricingCatalog.resolve_zone(db, customer.postcode, customer.town)
        phleb = None
        if request.phleb_booking:
            hint = request.phleb_booking.weekend_surcharge
            phleb = PricingCatalog.price_phleb_booking(
                resolution,
                request.phleb_booking.shift_type,
                booking_date=request.booking.booking_date if request.booking else None,
                weekend_requested=hint is not None and hint > 0,
            )
        quote = await PricingCatalog.quote_cart(
            db, request.test_ids, request.service_ids, request.shipping_type, phleb
        )

    coupon_discount = _money(CouponLedger.discount_for(ctx.get("coupon"), quote.subtotal))
    total = _money(quote.gross_total - request.discount - coupon_discount)
    if ctx["checkout_type"] == CREDIT:
        if total < 0:
            raise ValidationError("Total calculated amount cannot be negative. Please check your order details again.")
    elif total <= 0:
        raise ValidationError(NON_POSITIVE_TOTAL)

    ctx["zone"] = resolution
    ctx["quote"] = quote
    ctx["coupon_discount"] = coupon_discount
    ctx["total"] = total


async def _resolve_payment_method(ctx: dict) -> PaymentMethod:
    request: CheckoutRequest = ctx["request"]
    gateway = ctx["gateway"]
    if request.payment_token_id is not None:
        async with ctx["container"].session_factory() as db:
            saved = await PaymentTokenVault.get_by_id_for_user(db, request.payment_token_id, ctx["user"].id)
        if saved.provider != gateway.provider:
            raise ValidationError("Saved card belongs to a different payment provider")
        ctx["payment_token_id"] = saved.id
        return PaymentMethod.from_token(saved.token)
    return payment_method_from_request(request.payment_method)


async def hold_payment(ctx: dict):
    gateway = ctx["gateway"]
    if gateway is None:
        return
    request: CheckoutRequest = ctx["request"]
    payment_method = await _resolve_payment_method(ctx)
    request_token = request.save_card and request.payment_token_id is None
    if request_token or ctx.get("payment_token_id") is not None:
        async with ctx["container"].session_factory() as db:
            payment_method.customer = await provider_customer_for(db, gateway, ctx["user"].id)

    result = await gateway.pay(ctx["total"], ctx["currency"], ctx["reference"], payment_method, request_token)
    if result.success and result.transaction_id:
        ctx["transaction_id"] = result.transaction_id
    ctx["payment_result"] = result

    async with ctx["container"].session_factory() as db:
        await PaymentLedger.record(db, ctx["order_number"], gateway.provider, ctx["total"], ctx["currency"], result)
    if not result.success:
        raise PaymentProviderError(
            gateway.provider,
            f"Payment was declined: {result.response_message or 'no reason given'}",
            result.response_code,
        )

    if request_token and result.token:
        try:
            async with ctx["container"].session_factory() as db:
                saved = await PaymentTokenVault.save_or_update(
                    db,
                    ctx["user"].id,
                    result.token,
                    gateway.provider,
                    last4=payment_method.last4,
                    exp_month=payment_method.exp_month,
                    exp_year=payment_method.exp_year,
                )
            ctx["payment_token_id"] = saved.id
        except Exception as exc:
            logger.error("save_card_failed", order_number=ctx["order_number"], error=str(exc))


def _payment_status(ctx: dict) -> str:
    gateway = ctx["gateway"]
    if gateway is None:
        return "Pending"
    return ctx["payment_result"].status


def _created_by(user: SessionUser) -> int:
    if user.role in (UserRole.PRACTITIONER, UserRole.ADMIN):
        return user.id
    return user.practitioner_id or 0


async def commit_order(ctx: dict):
    """Order, its log, booking, commission, zone memory and credit ledger in one transaction."""
    request: CheckoutRequest = ctx["request"]
    user: SessionUser = ctx["user"]
    customer = ctx["customer"]
    quote = ctx["quote"]
    container: ServiceContainer = ctx["container"]
    total = ctx["total"]

    order = Order(
        order_code=ctx["order_code"],
        order_number=ctx["order_number"],
        customer_id=customer.id,
        client_code=customer.client_code,
        client_name=customer.full_name,
        test_ids=list(request.test_ids),
        service_ids=list(request.service_ids),
        shipping_type_id=request.shipping_type,
        royal_mail_label=quote.royal_mail_label,
        subtotal=quote.subtotal,
        discount=_money(request.discount),
        coupon_code=ctx["coupon"].code if ctx.get("coupon") else None,
        coupon_discount=ctx["coupon_discount"],
        shipping_charges=quote.shipping_charges,
        other_charges_total=quote.other_charges_total,
        phleb_charges=quote.phleb_charges,
        total_val=total,
        currency=ctx["currency"],
        checkout_type=ctx["checkout_type"],
        payment_status=_payment_status(ctx),
        status="Started",
        transaction_id=ctx.get("transaction_id"),
        order_placed_by=user.id,
        created_by=_created_by(user),
        practitioner_id=customer.created_by,
        current_medication=request.current_medication,
        last_trained=request.last_trained,
        fasted=request.fasted,
        hydrated=request.hydrated,
        drank_alcohol=request.drank_alcohol,
        drugs_taken=request.drugs_taken,
        supplements=request.supplements,
        enhancing_drugs=request.enhancing_drugs,
    )

    booking = None
    if quote.phleb is not None or request.booking is not None:
        phleb = quote.phleb
        booking = PhlebBooking(
            zone=phleb.zone if phleb else ctx["zone"].zone,
            shift_type=phleb.shift_type if phleb else None,
            slot_times=phleb.slot_times if phleb else None,
            price=phleb.price if phleb else Decimal("0"),
            weekend_surcharge=phleb.weekend_surcharge if phleb else Decimal("0"),
            booking_date=request.booking.booking_date if request.booking else None,
            booking_time=request.booking.booking_time if request.booking else None,
            availability=request.phleb_booking.availability if request.phleb_booking else None,
            additional_preferences=request.phleb_booking.additional_preferences if request.phleb_booking else None,
        )

    async with container.session_factory() as db:
        order = await OrderRepository.create_order(db, order, booking)

        rate = container.settings.commission_rate
        if rate > 0 and order.practitioner_id:
            await OrderRepository.add_commission(db, order.id, order.practitioner_id, _money(total * rate))

        if ctx["zone"].source == "heuristic":
            await PricingCatalog.remember_zone(db, customer.postcode, customer.town, ctx["zone"].zone)

        if ctx.get("transaction_id"):
            payment = await PaymentRepository.get_by_transaction(db, ctx["transaction_id"])
            if payment is not None:
                payment.order_id = order.id

        if ctx["checkout_type"] == CREDIT:
            if not order.created_by or not await UserRepository.apply_credit_order(db, order.created_by, total):
                raise NotFoundError("Credit account not found")
            await OrderRepository.add_credit_entry(db, order.created_by, order.id, total, "credit_order")

        await db.commit()

    ctx["order_id"] = order.id
    ctx["order"] = order
    ctx["credit_applied"] = ctx["checkout_type"] == CREDIT
    logger.info(
        "order_committed",
        order_id=order.id,
        order_number=order.order_number,
        checkout_type=order.checkout_type,
        total_val=str(total),
    )


async def assign_pleb(ctx: dict):
    request: CheckoutRequest = ctx["request"]
    if request.pleb_id is None:
        return
    container: ServiceContainer = ctx["container"]
    async with container.session_factory() as db:
        order = await OrderRepository.get_order(db, ctx["order_id"])
        ctx["job"] = await OrderService.create_job(
            db,
            container.matcher,
            order,
            request.pleb_id,
            request.booking.booking_date,
            request.booking.booking_time,
            ctx["user"].id,
        )


async def notify(ctx: dict):
    container: ServiceContainer = ctx["container"]
    order = ctx["order"]
    async with container.session_factory() as db:
        container.notifier.order_placed(
            await practitioner_emails(db, order), order.order_number, order.total_val, order.checkout_type
        )
        if ctx.get("job") is not None:
            request: CheckoutRequest = ctx["request"]
            await OrderService.notify_job_assigned(
                db, container.notifier, order, ctx["job"], request.booking.booking_date, request.booking.booking_time
            )


# --- COMPENSATIONS (Rollbacks) ---

async def rollback_coupon(ctx: dict):
    coupon = ctx.get("coupon")
    if coupon:
        async with ctx["container"].session_factory() as db:
            await CouponLedger.reverse(db, coupon.code, coupon.user_id)


async def rollback_payment(ctx: dict):
    transaction_id = ctx.get("transaction_id")
    if not transaction_id:
        return
    gateway = ctx["gateway"]
    result = await gateway.undo(transaction_id)
    if not result.success:
        raise PaymentProviderError(gateway.provider, "Provider refused to undo the payment", result.response_code)
    status = RELEASED if gateway.holds_funds else VOIDED
    async with ctx["container"].session_factory() as db:
        await PaymentLedger.mark(db, transaction_id, status, ctx.get("order_id"))
        if ctx.get("order_id"):
            order = await OrderRepository.get_order(db, ctx["order_id"])
            order.payment_status = status
            await db.commit()
    logger.info("payment_undone", transaction_id=transaction_id, status=status)


async def rollback_order(ctx: dict):
    order_id = ctx.get("order_id")
    if not order_id:
        return
    async with ctx["container"].session_factory() as db:
        if ctx.get("credit_applied"):
            order = ctx["order"]
            await UserRepository.apply_credit_order(db, order.created_by, -order.total_val)
            await OrderRepository.add_credit_entry(db, order.created_by, order.id, -order.total_val, "credit_reversal")
        await OrderService.mark_failed(db, order_id, "Checkout rolled back")


# --- BUILDER FACTORY ---

def _assignment_is_soft(ctx: dict, exc: Exception) -> bool:
    """Whether a failed pleb assignment leaves the order standing.

    Hold-based checkouts follow the configured policy; every other type keeps
    the order and reports the failure.
    """
    if not isinstance(exc, AppError):
        return False
    release = (
        ctx["checkout_type"] == GLOBAL_PAYMENTS
        and ctx["container"].settings.assignment_failure_policy == "release"
    )
    if release:
        return False
    ctx["assignment_error"] = exc.message
    return True


def build_checkout_saga(checkout_type: str) -> SagaOrchestrator:
    saga = SagaOrchestrator(name=f"checkout:{checkout_type}")
    saga.add_step("load_customer", load_customer, None)  # Read-only, no rollback needed
    saga.add_step("redeem_coupon", redeem_coupon, rollback_coupon)
    saga.add_step("price_cart", price_cart, None)
    saga.add_step("hold_payment", hold_payment, rollback_payment, holds_funds=checkout_type != CREDIT)
    saga.add_step("commit_order", commit_order, rollback_order)
    saga.add_step("assign_pleb", assign_pleb, None, soft=_assignment_is_soft)
    saga.add_step("notify", notify, None, soft=lambda ctx, exc: True)
    return saga


async def run_checkout(
    container: ServiceContainer, user: SessionUser, checkout_type: str, request: CheckoutRequest
) -> CheckoutResponse:
    if request.pleb_id is not None and request.booking is None:
        raise ValidationError("A booking date and time are required to assign a pleb")
    if checkout_type != CREDIT and request.payment_method is None and request.payment_token_id is None:
        raise ValidationError("Payment method is required")

    order_code = new_order_code()
    order_number = f"#{container.settings.order_number_prefix}-{order_code}"
    ctx = {
        "container": container,
        "user": user,
        "request": request,
        "checkout_type": checkout_type,
        "gateway": None if checkout_type == CREDIT else container.gateway(checkout_type),
        "currency": (request.currency or container.settings.default_currency).upper(),
        "order_code": order_code,
        "order_number": order_number,
        "reference": sanitize_reference(order_number),
    }

    saga = build_checkout_saga(checkout_type)
    started = time.perf_counter()
    try:
        await saga.execute(ctx)
    except BaseException:
        phleb_checkout_total.labels(status="failed", checkout_type=checkout_type).inc()
        raise
    finally:
        phleb_checkout_duration_seconds.labels(checkout_type=checkout_type).observe(time.perf_counter() - started)
    phleb_checkout_total.labels(status="success", checkout_type=checkout_type).inc()

    result = ctx.get("payment_result")
    return CheckoutResponse(
        order_id=ctx["order_id"],
        order_number=order_number,
        total_val=ctx["total"],
        payment_status=ctx["order"].payment_status,
        authorization=AuthorizationOut.model_validate(result) if result else None,
        payment_token_id=ctx.get("payment_token_id"),
        pleb_job_id=ctx["job"].id if ctx.get("job") is not None else None,
        assignment_error=ctx.get("assignment_error"),
    )
