import os

# Must be set before the app (and the JWT handler / limiter) are imported
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["OTEL_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from datetime import date, timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from main import app
from services.availability_service.distance import NoRouteError, TravelEstimate
from services.availability_service.models import AvailabilitySlot, Phlebotomist, ServiceRange
from services.catalog_service.models import LabService, LabTest, ShippingType
from services.coupon_service.models import Coupon
from services.payment_service.gateway import (
    AUTHORIZED,
    PAID,
    RELEASED,
    VOIDED,
    PaymentGateway,
    TokenizeResult,
    TransactionResult,
)
from services.user_service.models import Customer, User
from shared.config.container import GLOBAL_PAYMENTS, STRIPE, bind_container, build_container
from shared.config.database import SCHEMAS, create_schemas_and_tables
from shared.config.settings import Settings
from shared.security import create_session_token

DISPATCH_EMAIL = "dispatch@clinic.test"


def build_test_engine(path):
    """File-backed SQLite with the per-service schemas mapped away.

    Every transaction starts with BEGIN IMMEDIATE so concurrent writers queue
    on the database lock instead of failing.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        connect_args={"timeout": 30},
        execution_options={"schema_translate_map": {schema: None for schema in SCHEMAS}},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class FakeGateway(PaymentGateway):
    """In-memory provider that records every call."""

    def __init__(self, provider: str, holds_funds: bool, vaults_on_customer: bool = False):
        self.provider = provider
        self.holds_funds = holds_funds
        self.vaults_on_customer = vaults_on_customer
        self.calls = []
        self.decline = False
        self.issue_token = None
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"TRN_{self.provider}_{self._counter}"

    async def _pay(self, kind, status, amount, currency, reference, payment_method, request_token):
        self.calls.append((kind, amount, currency, reference, payment_method, request_token))
        if self.decline:
            return TransactionResult(success=False, status="Declined", response_code="05", response_message="DECLINED")
        return TransactionResult(
            success=True,
            status=status,
            transaction_id=self._next_id(),
            authorization_code="AUTH01",
            response_code="00",
            response_message="SUCCESS",
            token=self.issue_token if request_token else None,
        )

    async def authorize(self, amount, currency, reference, payment_method, request_token=False):
        return await self._pay("authorize", AUTHORIZED, amount, currency, reference, payment_method, request_token)

    async def charge(self, amount, currency, reference, payment_method, request_token=False):
        return await self._pay("charge", PAID, amount, currency, reference, payment_method, request_token)

    async def capture(self, transaction_id, amount=None):
        self.calls.append(("capture", transaction_id, amount))
        return TransactionResult(success=True, status=PAID, transaction_id=transaction_id, response_code="00")

    async def release(self, transaction_id):
        self.calls.append(("release", transaction_id))
        return TransactionResult(success=True, status=RELEASED, transaction_id=transaction_id, response_code="00")

    async def void(self, transaction_id):
        self.calls.append(("void", transaction_id))
        return TransactionResult(success=True, status=VOIDED, transaction_id=transaction_id, response_code="00")

    async def tokenize(self, payment_method):
        self.calls.append(("tokenize", payment_method))
        return TokenizeResult(
            token=f"PMT_{payment_method.last4}",
            brand="VISA",
            last4=payment_method.last4,
            exp_month=payment_method.exp_month,
            exp_year=payment_method.exp_year,
        )

    async def create_customer(self, email, name=None, user_id=None):
        self.calls.append(("create_customer", email, user_id))
        return f"cus_{user_id}"

    def called(self, kind: str) -> list:
        return [call for call in self.calls if call[0] == kind]


class FakeDistanceResolver:
    """Distances keyed by pleb origin ("lat,lng"); an exception value is raised."""

    def __init__(self):
        self.distances = {}
        self.lookups = []

    def set(self, pleb: Phlebotomist, miles):
        self.distances[f"{pleb.lat},{pleb.lng}"] = miles

    async def resolve(self, origin: str, destination: str) -> TravelEstimate:
        self.lookups.append((origin, destination))
        value = self.distances.get(origin, NoRouteError("No driving route to the address"))
        if isinstance(value, Exception):
            raise value
        return TravelEstimate(distance_miles=float(value), duration_seconds=int(value * 120))


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        default_currency="GBP",
        order_number_prefix="YRV",
        commission_rate=Decimal("0"),
        assignment_failure_policy="release",
        maps_api_key="test-maps-key",
        mail_suppress_send=True,
        job_assign_authorized_emails=(DISPATCH_EMAIL,),
    )


@pytest.fixture
def gateways():
    return {
        STRIPE: FakeGateway("stripe", holds_funds=False, vaults_on_customer=True),
        GLOBAL_PAYMENTS: FakeGateway("global_payments", holds_funds=True),
    }


@pytest.fixture
def distance():
    return FakeDistanceResolver()


@pytest.fixture
async def container(tmp_path, settings, gateways, distance):
    engine = build_test_engine(tmp_path / "phlebcare.db")
    container = build_container(
        settings,
        engine=engine,
        http_client=httpx.AsyncClient(),
        gateways=gateways,
        distance=distance,
    )
    await create_schemas_and_tables(engine)
    bind_container(app, container)
    yield container
    await container.aclose()


@pytest.fixture
async def client(container):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def db(container):
    """Factory for short-lived sessions: `async with db() as session`."""
    return container.session_factory


async def seed(container, *objects):
    async with container.session_factory() as session:
        session.add_all(objects)
        await session.commit()
    return objects


def auth_headers(user_id, role, email=None, practitioner_id=None, pleb_id=None) -> dict:
    token = create_session_token(user_id, role, email=email, practitioner_id=practitioner_id, pleb_id=pleb_id)
    return {"Authorization": f"Bearer {token}"}


def next_weekday(weekday: int, start: date = None) -> date:
    """The next date (strictly after `start`) falling on `weekday` (Monday is 0)."""
    start = start or date.today()
    days = (weekday - start.weekday()) % 7 or 7
    return start + timedelta(days=days)


@pytest.fixture
async def catalog(container):
    """Tests priced 60 and 40, a 5.00 shipping option and a 7.50 extra service."""
    blood = LabTest(id=1, test_name="Full Blood Count", price=Decimal("60.00"))
    thyroid = LabTest(id=2, test_name="Thyroid Panel", price=Decimal("40.00"))
    shipping = ShippingType(id=1, name="Royal Mail Tracked 24", value=Decimal("5.00"), royal_mail_label=True)
    service = LabService(id=1, name="Centrifuge", value=Decimal("7.50"))
    await seed(container, blood, thyroid, shipping, service)
    return {"tests": [blood, thyroid], "shipping": shipping, "service": service}


@pytest.fixture
async def people(container):
    """A practitioner with a credit line, their moderator, a linked customer account and a customer."""
    practitioner = User(
        id=10,
        email="dr.jones@clinic.test",
        role="Practitioner",
        credit_balance=Decimal("0"),
        total_credit_balance=Decimal("500.00"),
    )
    moderator = User(id=11, email="desk@clinic.test", role="Moderator", practitioner_id=10)
    account = User(id=12, email="pat@example.test", role="Customer")
    customer = Customer(
        id=100,
        client_code="CL-100",
        fore_name="Pat",
        sur_name="Smith",
        email="pat@example.test",
        address="1 High Street",
        town="Manchester",
        postcode="M1 1AE",
        lat=53.4808,
        lng=-2.2426,
        created_by=10,
        user_id=12,
    )
    await seed(container, practitioner, moderator, account, customer)
    return {"practitioner": practitioner, "moderator": moderator, "account": account, "customer": customer}


@pytest.fixture
async def pleb(container):
    """Active pleb free Monday 09:00-12:00 within 10 miles."""
    pleb = Phlebotomist(id=7, first_name="Sam", last_name="Lee", email="sam@plebs.test", lat=53.5, lng=-2.3)
    await seed(container, pleb)
    await seed(
        container,
        AvailabilitySlot(pleb_id=7, day_of_week="Monday", start_time="09:00", end_time="12:00", is_available=True),
        ServiceRange(pleb_id=7, max_distance=Decimal("10"), unit="miles", max_distance_miles=Decimal("10.00")),
    )
    return pleb


@pytest.fixture
async def coupon_factory(container):
    async def make(code="SAVE10", type="fixed", value="10.00", max_users=5, used=0, expiry_date=None):
        coupon = Coupon(
            code=code,
            type=type,
            value=Decimal(value),
            max_users=max_users,
            used=used,
            expiry_date=expiry_date or date.today() + timedelta(days=30),
        )
        await seed(container, coupon)
        return coupon

    return make
