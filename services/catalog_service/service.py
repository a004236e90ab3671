from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import NotFoundError, ValidationError

from . import zones
from .repository import CatalogRepository

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


@dataclass
class ZoneResolution:
    zone: str
    source: str  # postcode, outward_code, town, heuristic, default
    slots: Tuple[zones.Slot, ...]
    version: str = zones.SLOT_TABLE_VERSION
    message: Optional[str] = None

    @property
    def is_serviceable(self) -> bool:
        return self.zone != zones.OUT_OF_AREA


@dataclass
class PhlebCharge:
    zone: str
    shift_type: str
    slot_times: str
    price: Decimal
    weekend_surcharge: Decimal

    @property
    def total(self) -> Decimal:
        return self.price + self.weekend_surcharge


@dataclass
class CartQuote:
    subtotal: Decimal
    shipping_charges: Decimal
    shipping_name: str
    royal_mail_label: bool
    other_charges_total: Decimal
    phleb: Optional[PhlebCharge] = None
    test_names: List[str] = field(default_factory=list)

    @property
    def phleb_charges(self) -> Decimal:
        return self.phleb.total if self.phleb else ZERO

    @property
    def gross_total(self) -> Decimal:
        return self.subtotal + self.shipping_charges + self.other_charges_total + self.phleb_charges


class PricingCatalog:

    @staticmethod
    async def resolve_zone(
        db: AsyncSession, postcode: Optional[str], town: Optional[str]
    ) -> ZoneResolution:
        """Maps an address onto a pricing zone.

        Locations we have already priced win over the format heuristics: the
        full postcode first, then its outward code, then the town.
        """
        lookups = (
            ("postcode", zones.normalize_postcode(postcode)),
            ("outward_code", zones.outward_code(postcode)),
            ("town", zones.normalize_town(town)),
        )
        for kind, key in lookups:
            known = await CatalogRepository.get_zone_location(db, kind, key)
            if known:
                return PricingCatalog._resolution(known.zone, kind)

        guessed = zones.zone_from_heuristics(postcode, town)
        if guessed is None:
            return PricingCatalog._resolution(zones.STANDARD, "default")
        return PricingCatalog._resolution(guessed, "heuristic")

    @staticmethod
    def _resolution(zone: str, source: str) -> ZoneResolution:
        message = zones.OUT_OF_AREA_MESSAGE if zone == zones.OUT_OF_AREA else None
        return ZoneResolution(zone=zone, source=source, slots=zones.slots_for_zone(zone), message=message)

    @staticmethod
    async def remember_zone(
        db: AsyncSession, postcode: Optional[str], town: Optional[str], zone: str
    ) -> None:
        """Stores the zone an address was priced in. Flushes only.

        Each key is written in its own savepoint: a row inserted by a concurrent
        checkout for the same address is left as it is, and the caller's
        transaction carries on.
        """
        keys = []
        postcode_key = zones.normalize_postcode(postcode)
        if postcode_key:
            keys.append(("postcode", postcode_key))
            outward = zones.outward_code(postcode)
            if outward and outward != postcode_key:
                keys.append(("outward_code", outward))
        town_key = zones.normalize_town(town)
        if town_key and not postcode_key:
            keys.append(("town", town_key))

        for kind, key in keys:
            try:
                async with db.begin_nested():
                    await CatalogRepository.upsert_zone_location(db, kind, key, zone)
            except IntegrityError:
                logger.info("zone_location_exists", kind=kind, key=key)

    @staticmethod
    def price_phleb_booking(
        resolution: ZoneResolution,
        shift_type: str,
        booking_date: Optional[date] = None,
        weekend_requested: bool = False,
    ) -> PhlebCharge:
        """Prices a home visit from the zone table; client-sent prices are ignored.

        The weekend surcharge applies when the booking date falls on a Saturday or
        Sunday, or, without a date, when the client asked for a weekend visit.
        """
        if not resolution.is_serviceable:
            raise ValidationError(resolution.message or zones.OUT_OF_AREA_MESSAGE)
        slot = zones.find_slot(resolution.zone, shift_type)
        if slot is None:
            raise ValidationError(f"Unknown shift type '{shift_type}' for zone '{resolution.zone}'")
        weekend = booking_date.weekday() >= 5 if booking_date else weekend_requested
        return PhlebCharge(
            zone=resolution.zone,
            shift_type=slot.shift_type,
            slot_times=slot.slot_times,
            price=slot.price,
            weekend_surcharge=slot.weekend_surcharge if weekend else ZERO,
        )

    @staticmethod
    async def quote_cart(
        db: AsyncSession,
        test_ids: Sequence[int],
        service_ids: Sequence[int],
        shipping_type_id: int,
        phleb: Optional[PhlebCharge] = None,
    ) -> CartQuote:
        tests = {test.id: test for test in await CatalogRepository.get_tests(db, test_ids)}
        subtotal = ZERO
        test_names = []
        for test_id, count in Counter(test_ids).items():
            test = tests.get(test_id)
            if test is None or not test.is_active:
                raise NotFoundError(f"Test {test_id} not found")
            subtotal += Decimal(test.price) * count
            test_names.extend([test.test_name] * count)

        services = {service.id: service for service in await CatalogRepository.get_services(db, service_ids)}
        other_charges_total = ZERO
        for service_id, count in Counter(service_ids).items():
            service = services.get(service_id)
            if service is None:
                raise NotFoundError(f"Service {service_id} not found")
            other_charges_total += Decimal(service.value) * count

        shipping = await CatalogRepository.get_shipping_type(db, shipping_type_id)
        if shipping is None:
            raise NotFoundError(f"Shipping type {shipping_type_id} not found")

        quote = CartQuote(
            subtotal=subtotal,
            shipping_charges=Decimal(shipping.value),
            shipping_name=shipping.name,
            royal_mail_label=bool(shipping.royal_mail_label),
            other_charges_total=other_charges_total,
            phleb=phleb,
            test_names=test_names,
        )
        logger.info(
            "cart_quoted",
            subtotal=str(quote.subtotal),
            shipping=str(quote.shipping_charges),
            other_charges=str(quote.other_charges_total),
            phleb=str(quote.phleb_charges),
        )
        return quote
