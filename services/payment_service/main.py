from fastapi import FastAPI

from shared.errors import register_exception_handlers
from shared.observability.setup import setup_observability

from .models import Payment, PaymentToken  # noqa: F401  Import to register with Base
from .router import router, public_router

payment_app = FastAPI(title="Payment Service", version="2.0.0")

setup_observability(payment_app, "payment_service")
register_exception_handlers(payment_app)

payment_app.include_router(router)
payment_app.include_router(public_router)
