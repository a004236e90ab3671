from fastapi import APIRouter, Depends, Request

from shared.config.container import GLOBAL_PAYMENTS, STRIPE, ServiceContainer, get_container
from shared.security import get_current_user, limiter
from shared.security.dependencies import SessionUser
from shared.security.rate_limiter import CHECKOUT_RATE_LIMIT

from .checkout_saga import CREDIT, run_checkout
from .schemas import CheckoutRequest, CheckoutResponse

router = APIRouter()
public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "checkout", "status": "running"}


@router.post("/credit", response_model=CheckoutResponse)
@limiter.limit(CHECKOUT_RATE_LIMIT)
async def checkout_with_credit(
    request: Request,  # REQUIRED: slowapi needs this to check IP/Headers
    payload: CheckoutRequest,
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await run_checkout(container, user, CREDIT, payload)


@router.post("/stripe", response_model=CheckoutResponse)
@limiter.limit(CHECKOUT_RATE_LIMIT)
async def checkout_with_stripe(
    request: Request,
    payload: CheckoutRequest,
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await run_checkout(container, user, STRIPE, payload)


@router.post("/global-payments", response_model=CheckoutResponse)
@limiter.limit(CHECKOUT_RATE_LIMIT)
async def checkout_with_global_payments(
    request: Request,
    payload: CheckoutRequest,
    user: SessionUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await run_checkout(container, user, GLOBAL_PAYMENTS, payload)
