from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from shared.config.container import bind_container, build_container
from shared.config.database import create_schemas_and_tables
from shared.config.settings import Settings
from shared.errors import register_exception_handlers
from shared.observability import setup_observability
from shared.security import limiter

# IMPORTANT: import models so they register with Base
from services.user_service import models as user_models  # noqa: F401
from services.catalog_service import models as catalog_models  # noqa: F401
from services.coupon_service import models as coupon_models  # noqa: F401
from services.availability_service import models as availability_models  # noqa: F401
from services.payment_service import models as payment_models  # noqa: F401
from services.order_service import models as order_models  # noqa: F401

from services.catalog_service.main import catalog_app
from services.coupon_service.main import coupon_app
from services.availability_service.main import availability_app
from services.payment_service.main import payment_app
from services.order_service.main import order_app
from services.orchestrator.main import checkout_app

app = FastAPI(title="Phlebotomy Checkout Cluster")

setup_observability(app, "phlebcare_cluster")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)


@app.on_event("startup")
async def startup_event():
    container = build_container(Settings.from_env())
    bind_container(app, container)
    # Create schemas and all tables
    await create_schemas_and_tables(container.engine)


@app.on_event("shutdown")
async def shutdown_event():
    container = getattr(app.state, "container", None)
    if container is not None:
        await container.aclose()


app.mount("/catalog", catalog_app)
app.mount("/coupons", coupon_app)
app.mount("/availability", availability_app)
app.mount("/payments", payment_app)
app.mount("/orders", order_app)
app.mount("/checkout", checkout_app)
