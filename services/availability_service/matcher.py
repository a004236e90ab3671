import asyncio
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Dict, List, Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import AvailabilityError, NotFoundError

from .distance import DistanceResolver, NoRouteError, coordinates
from .models import AvailabilitySlot, Phlebotomist
from .repository import AvailabilityRepository
from .service import day_name, parse_clock

logger = structlog.get_logger(__name__)


@dataclass
class EligiblePleb:
    pleb_id: int
    name: str
    email: Optional[str]
    distance_miles: float
    duration_seconds: Optional[int]
    max_distance_miles: Decimal
    slot_start: str
    slot_end: str


def destination_for(customer) -> str:
    """Customer coordinates when known, otherwise their postal address."""
    if customer.lat is not None and customer.lng is not None:
        return coordinates(customer.lat, customer.lng)
    return customer.full_address


def _covering_slot(slots: List[AvailabilitySlot], booking_seconds: int) -> Optional[AvailabilitySlot]:
    for slot in slots:
        if parse_clock(slot.start_time) <= booking_seconds < parse_clock(slot.end_time):
            return slot
    return None


class AvailabilityMatcher:

    def __init__(self, distance: DistanceResolver):
        self.distance = distance

    async def _candidates(
        self, db: AsyncSession, booking_date: date, booking_time: Union[str, time], pleb_id: Optional[int] = None
    ) -> Dict[int, tuple]:
        booking_seconds = parse_clock(booking_time)
        rows = await AvailabilityRepository.get_open_slots_for_day(db, day_name(booking_date), pleb_id)

        slots_by_pleb: Dict[int, tuple] = {}
        for pleb, slot in rows:
            slots_by_pleb.setdefault(pleb.id, (pleb, []))[1].append(slot)

        covered = {}
        for pid, (pleb, slots) in slots_by_pleb.items():
            slot = _covering_slot(slots, booking_seconds)
            if slot is not None:
                covered[pid] = (pleb, slot)
        return covered

    async def find_eligible(
        self, db: AsyncSession, booking_date: date, booking_time: Union[str, time], destination: str
    ) -> List[EligiblePleb]:
        """Active plebs free at `booking_time` whose driving distance is within their range.

        Plebs with no route are skipped; bad addresses and maps outages propagate.
        """
        covered = await self._candidates(db, booking_date, booking_time)
        ranges = await AvailabilityRepository.get_ranges(db, covered.keys())
        in_scope = [(pleb, slot, ranges[pid]) for pid, (pleb, slot) in covered.items() if pid in ranges]
        if not in_scope:
            return []

        estimates = await asyncio.gather(
            *(self._estimate(pleb, destination) for pleb, _, _ in in_scope)
        )

        eligible = []
        for (pleb, slot, service_range), estimate in zip(in_scope, estimates):
            if estimate is None:
                continue
            if Decimal(str(estimate.distance_miles)) <= Decimal(service_range.max_distance_miles):
                eligible.append(self._eligible(pleb, slot, service_range, estimate))
        eligible.sort(key=lambda candidate: candidate.distance_miles)
        logger.info(
            "eligible_plebs_found",
            booking_date=str(booking_date),
            booking_time=str(booking_time),
            candidates=len(in_scope),
            eligible=len(eligible),
        )
        return eligible

    async def _estimate(self, pleb: Phlebotomist, destination: str):
        try:
            return await self.distance.resolve(coordinates(pleb.lat, pleb.lng), destination)
        except NoRouteError:
            return None

    async def validate_assignment(
        self,
        db: AsyncSession,
        pleb_id: int,
        booking_date: date,
        booking_time: Union[str, time],
        destination: str,
    ) -> EligiblePleb:
        """Re-checks one pleb against current data; raises AvailabilityError naming what failed."""
        pleb = await AvailabilityRepository.get_pleb(db, pleb_id)
        if pleb is None:
            raise NotFoundError("Pleb not found")
        if not pleb.is_active:
            raise AvailabilityError("Pleb account is not active")

        covered = await self._candidates(db, booking_date, booking_time, pleb_id)
        if pleb_id not in covered:
            raise AvailabilityError(
                f"Pleb is not available on {day_name(booking_date)} at {booking_time}"
            )
        _, slot = covered[pleb_id]

        service_range = await AvailabilityRepository.get_range(db, pleb_id)
        if service_range is None:
            raise AvailabilityError("Pleb has no service range configured")

        try:
            estimate = await self.distance.resolve(coordinates(pleb.lat, pleb.lng), destination)
        except NoRouteError as exc:
            raise AvailabilityError("No driving route between pleb and customer") from exc

        if Decimal(str(estimate.distance_miles)) > Decimal(service_range.max_distance_miles):
            raise AvailabilityError(
                f"Customer is {estimate.distance_miles:.1f} miles away, outside the pleb's "
                f"{service_range.max_distance_miles} mile range"
            )
        return self._eligible(pleb, slot, service_range, estimate)

    @staticmethod
    def _eligible(pleb, slot, service_range, estimate) -> EligiblePleb:
        return EligiblePleb(
            pleb_id=pleb.id,
            name=pleb.full_name,
            email=pleb.email,
            distance_miles=estimate.distance_miles,
            duration_seconds=estimate.duration_seconds,
            max_distance_miles=Decimal(service_range.max_distance_miles),
            slot_start=slot.start_time,
            slot_end=slot.end_time,
        )
