from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from fastapi import FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from starlette.routing import Mount

from services.availability_service.distance import DistanceResolver
from services.availability_service.matcher import AvailabilityMatcher
from services.notification_service.dispatcher import HttpMailer, NotificationDispatcher
from services.payment_service.gateway import PaymentGateway
from services.payment_service.globalpay_gateway import GlobalPaymentsGateway
from services.payment_service.stripe_gateway import StripeGateway
from shared.errors import ValidationError

from .database import build_engine, build_session_factory
from .settings import Settings

STRIPE = "Stripe"
GLOBAL_PAYMENTS = "GlobalPayments"


@dataclass
class ServiceContainer:
    """Process-wide resources, built once at startup and shared by every request."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker
    http_client: httpx.AsyncClient
    distance: DistanceResolver
    matcher: AvailabilityMatcher
    notifier: NotificationDispatcher
    gateways: Dict[str, PaymentGateway] = field(default_factory=dict)

    def gateway(self, checkout_type: str) -> PaymentGateway:
        gateway = self.gateways.get(checkout_type)
        if gateway is None:
            raise ValidationError(f"Unsupported payment provider '{checkout_type}'")
        return gateway

    async def aclose(self) -> None:
        await self.notifier.drain()
        await self.http_client.aclose()
        await self.engine.dispose()


def build_container(
    settings: Settings,
    engine: Optional[AsyncEngine] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    gateways: Optional[Dict[str, PaymentGateway]] = None,
    distance: Optional[DistanceResolver] = None,
) -> ServiceContainer:
    engine = engine or build_engine(settings.database_url, settings.database_echo)
    http_client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    if gateways is None:
        gateways = {
            STRIPE: StripeGateway(settings.stripe_secret_key),
            GLOBAL_PAYMENTS: GlobalPaymentsGateway(
                http_client,
                settings.gp_app_id,
                settings.gp_app_key,
                account_name=settings.gp_account_name,
                channel=settings.gp_channel,
                country=settings.gp_country,
                environment=settings.gp_environment,
                timeout=settings.http_timeout_seconds,
            ),
        }
    distance = distance or DistanceResolver(
        http_client, settings.maps_api_key, settings.maps_base_url, timeout=settings.http_timeout_seconds
    )
    notifier = NotificationDispatcher(
        HttpMailer(
            http_client,
            settings.mail_api_url,
            settings.mail_sender,
            suppress_send=settings.mail_suppress_send,
            timeout=settings.http_timeout_seconds,
        )
    )
    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=build_session_factory(engine),
        http_client=http_client,
        distance=distance,
        matcher=AvailabilityMatcher(distance),
        notifier=notifier,
        gateways=gateways,
    )


def bind_container(app: FastAPI, container: ServiceContainer) -> None:
    """Makes the container reachable from the cluster app and every mounted service app."""
    app.state.container = container
    for route in app.routes:
        if isinstance(route, Mount) and isinstance(route.app, FastAPI):
            route.app.state.container = container


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
