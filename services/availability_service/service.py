import re
from collections import defaultdict
from datetime import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.errors import AuthorizationError, NotFoundError, ValidationError

from .models import AvailabilitySlot, Phlebotomist, ServiceRange
from .repository import AvailabilityRepository
from .schemas import AvailabilityResponse, AvailabilityUpdate, ServiceRangeOut, SlotSchema

logger = structlog.get_logger(__name__)

DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
UNITS = ("miles", "km")
KM_PER_MILE = Decimal("1.60934")
TWO_PLACES = Decimal("0.01")

_CLOCK = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


def parse_clock(value: Union[str, time]) -> int:
    """Seconds since midnight for `HH:mm` / `HH:mm:ss` strings (or a `time`)."""
    if isinstance(value, time):
        return value.hour * 3600 + value.minute * 60 + value.second
    match = _CLOCK.match((value or "").strip())
    if not match:
        raise ValidationError(f"Invalid time format '{value}'. Use HH:mm (e.g. 09:00)")
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds or 0)


def day_name(value) -> str:
    return DAYS[value.weekday()]


def _check_day(day: str, slots: List[SlotSchema]) -> None:
    spans = []
    for slot in slots:
        start, end = parse_clock(slot.start), parse_clock(slot.end)
        if start >= end:
            raise ValidationError(f"Start time must be before end time: {day} {slot.start}-{slot.end}")
        if slot.available:
            spans.append((start, end, slot))

    spans.sort(key=lambda span: span[0])
    for (_, prev_end, prev), (start, _, current) in zip(spans, spans[1:]):
        # Half-open: 09:00-12:00 and 12:00-15:00 do not overlap
        if start < prev_end:
            raise ValidationError(
                f"Overlapping availability on {day}: {prev.start}-{prev.end} and {current.start}-{current.end}"
            )


def _two_places(value) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _normalized_range(max_distance: Decimal, unit: str) -> Decimal:
    miles = max_distance / KM_PER_MILE if unit == "km" else max_distance
    return _two_places(miles)


def validate_week(payload: AvailabilityUpdate) -> None:
    unknown = [day for day in payload.availability if day not in DAYS]
    if unknown:
        raise ValidationError(f"Unknown day(s) in availability: {', '.join(sorted(unknown))}")
    for day, slots in payload.availability.items():
        _check_day(day, slots)

    service_range = payload.service_range
    if service_range.max_distance is None or _two_places(service_range.max_distance) <= 0:
        raise ValidationError("Distance must be greater than 0")
    if service_range.unit not in UNITS:
        raise ValidationError("Unit must be 'miles' or 'km'")


class AvailabilityStore:

    @staticmethod
    async def _require_active_pleb(db: AsyncSession, pleb_id: int) -> Phlebotomist:
        pleb = await AvailabilityRepository.get_pleb(db, pleb_id)
        if pleb is None:
            raise NotFoundError("Pleb not found")
        if not pleb.is_active:
            raise AuthorizationError("Pleb account is not active")
        return pleb

    @staticmethod
    async def get(db: AsyncSession, pleb_id: int) -> AvailabilityResponse:
        await AvailabilityStore._require_active_pleb(db, pleb_id)
        slots = await AvailabilityRepository.get_slots(db, pleb_id)
        service_range = await AvailabilityRepository.get_range(db, pleb_id)

        week: Dict[str, List[SlotSchema]] = defaultdict(list)
        for slot in sorted(slots, key=lambda s: (parse_clock(s.start_time), s.id)):
            week[slot.day_of_week].append(
                SlotSchema(start=slot.start_time, end=slot.end_time, available=slot.is_available)
            )

        return AvailabilityResponse(
            pleb_id=pleb_id,
            availability={day: week.get(day, []) for day in DAYS},
            service_range=AvailabilityStore._range_out(service_range),
        )

    @staticmethod
    def _range_out(service_range) -> ServiceRangeOut:
        if service_range is None:
            return ServiceRangeOut()
        miles = _two_places(service_range.max_distance_miles)
        distance = _two_places(service_range.max_distance)
        km = distance if service_range.unit == "km" else _two_places(miles * KM_PER_MILE)
        return ServiceRangeOut(
            max_distance=distance,
            unit=service_range.unit,
            max_distance_miles=miles,
            max_distance_km=km,
        )

    @staticmethod
    async def replace(db: AsyncSession, pleb_id: int, payload: AvailabilityUpdate) -> AvailabilityResponse:
        """Validates the whole week, then swaps it in with one transaction."""
        await AvailabilityStore._require_active_pleb(db, pleb_id)
        validate_week(payload)

        slots = [
            AvailabilitySlot(
                pleb_id=pleb_id,
                day_of_week=day,
                start_time=slot.start.strip(),
                end_time=slot.end.strip(),
                is_available=slot.available,
            )
            for day in DAYS
            for slot in payload.availability.get(day, [])
        ]
        unit = payload.service_range.unit
        # Stored as Numeric(10, 2); round here so every backend keeps the same value
        max_distance = _two_places(payload.service_range.max_distance)
        service_range = ServiceRange(
            pleb_id=pleb_id,
            max_distance=max_distance,
            unit=unit,
            max_distance_miles=_normalized_range(max_distance, unit),
        )

        await AvailabilityRepository.replace_week(db, pleb_id, slots, service_range)
        await db.commit()
        logger.info("availability_replaced", pleb_id=pleb_id, slots=len(slots), unit=unit)
        return await AvailabilityStore.get(db, pleb_id)
