from fastapi import FastAPI

from shared.errors import register_exception_handlers
from shared.observability import setup_observability

from .models import AvailabilitySlot, Phlebotomist, ServiceRange  # noqa: F401  Import to register with Base
from .router import router, public_router

availability_app = FastAPI(title="Availability Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(availability_app, "availability_service")
register_exception_handlers(availability_app)

availability_app.include_router(public_router)
availability_app.include_router(router)
