from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AvailabilitySlot, Phlebotomist, ServiceRange


class AvailabilityRepository:

    @staticmethod
    async def get_pleb(db: AsyncSession, pleb_id: int) -> Optional[Phlebotomist]:
        result = await db.execute(select(Phlebotomist).where(Phlebotomist.id == pleb_id))
        return result.scalars().first()

    @staticmethod
    async def get_slots(db: AsyncSession, pleb_id: int) -> List[AvailabilitySlot]:
        result = await db.execute(
            select(AvailabilitySlot)
            .where(AvailabilitySlot.pleb_id == pleb_id)
            .order_by(AvailabilitySlot.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_range(db: AsyncSession, pleb_id: int) -> Optional[ServiceRange]:
        result = await db.execute(select(ServiceRange).where(ServiceRange.pleb_id == pleb_id))
        return result.scalars().first()

    @staticmethod
    async def get_ranges(db: AsyncSession, pleb_ids: Iterable[int]) -> Dict[int, ServiceRange]:
        ids = set(pleb_ids)
        if not ids:
            return {}
        result = await db.execute(select(ServiceRange).where(ServiceRange.pleb_id.in_(ids)))
        return {service_range.pleb_id: service_range for service_range in result.scalars().all()}

    @staticmethod
    async def get_open_slots_for_day(db: AsyncSession, day_of_week: str, pleb_id: Optional[int] = None):
        """(pleb, slot) pairs for active plebs with an available slot on `day_of_week`."""
        query = (
            select(Phlebotomist, AvailabilitySlot)
            .join(AvailabilitySlot, AvailabilitySlot.pleb_id == Phlebotomist.id)
            .where(
                Phlebotomist.is_active.is_(True),
                AvailabilitySlot.day_of_week == day_of_week,
                AvailabilitySlot.is_available.is_(True),
            )
            .order_by(Phlebotomist.id, AvailabilitySlot.id)
        )
        if pleb_id is not None:
            query = query.where(Phlebotomist.id == pleb_id)
        result = await db.execute(query)
        return list(result.all())

    @staticmethod
    async def replace_week(
        db: AsyncSession, pleb_id: int, slots: List[AvailabilitySlot], service_range: ServiceRange
    ) -> None:
        """Deletes the pleb's slots and range and inserts the new ones. Flushes only."""
        await db.execute(delete(AvailabilitySlot).where(AvailabilitySlot.pleb_id == pleb_id))
        await db.execute(delete(ServiceRange).where(ServiceRange.pleb_id == pleb_id))
        db.add_all(slots)
        db.add(service_range)
        await db.flush()
