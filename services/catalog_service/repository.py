from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import LabService, LabTest, ShippingType, ZoneLocation


class CatalogRepository:

    @staticmethod
    async def get_tests(db: AsyncSession, test_ids: Iterable[int]) -> List[LabTest]:
        ids = set(test_ids)
        if not ids:
            return []
        result = await db.execute(select(LabTest).where(LabTest.id.in_(ids)))
        return list(result.scalars().all())

    @staticmethod
    async def get_services(db: AsyncSession, service_ids: Iterable[int]) -> List[LabService]:
        ids = set(service_ids)
        if not ids:
            return []
        result = await db.execute(select(LabService).where(LabService.id.in_(ids)))
        return list(result.scalars().all())

    @staticmethod
    async def get_shipping_type(db: AsyncSession, shipping_type_id: int) -> Optional[ShippingType]:
        result = await db.execute(select(ShippingType).where(ShippingType.id == shipping_type_id))
        return result.scalars().first()

    @staticmethod
    async def get_zone_location(db: AsyncSession, kind: str, key: str) -> Optional[ZoneLocation]:
        if not key:
            return None
        result = await db.execute(
            select(ZoneLocation).where(ZoneLocation.kind == kind, ZoneLocation.key == key)
        )
        return result.scalars().first()

    @staticmethod
    async def upsert_zone_location(db: AsyncSession, kind: str, key: str, zone: str) -> None:
        """Records `key -> zone`. Flushes only; the caller owns the transaction."""
        existing = await CatalogRepository.get_zone_location(db, kind, key)
        if existing:
            existing.zone = zone
        else:
            db.add(ZoneLocation(kind=kind, key=key, zone=zone))
        await db.flush()
