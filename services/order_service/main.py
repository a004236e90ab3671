from fastapi import FastAPI

from shared.errors import register_exception_handlers
from shared.observability import setup_observability

from .models import Order, OrderLog, PhlebBooking, PlebJob, PlebJobLog  # noqa: F401  Import to register with Base
from .router import router, public_router

order_app = FastAPI(title="Order Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(order_app, "order_service")
register_exception_handlers(order_app)

order_app.include_router(public_router)
order_app.include_router(router)
