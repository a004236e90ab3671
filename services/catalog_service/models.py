from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from shared.config.database import Base


class LabTest(Base):
    __tablename__ = "lab_tests"
    __table_args__ = {"schema": "catalog_schema"}

    id = Column(Integer, primary_key=True, index=True)
    test_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class LabService(Base):
    """Extra services charged on top of the tests (the order's "other charges")."""

    __tablename__ = "lab_services"
    __table_args__ = {"schema": "catalog_schema"}

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)


class ShippingType(Base):
    __tablename__ = "shipping_types"
    __table_args__ = {"schema": "catalog_schema"}

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    # Tracked Royal Mail services need a label generated through the carrier API
    royal_mail_label = Column(Boolean, default=False, nullable=False)


class ZoneLocation(Base):
    """A postcode, outward code or town we have already priced, and its zone."""

    __tablename__ = "zone_locations"
    __table_args__ = (
        UniqueConstraint("kind", "key", name="uq_zone_location_kind_key"),
        {"schema": "catalog_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(16), nullable=False)  # postcode, outward_code, town
    key = Column(String(64), nullable=False)
    zone = Column(String(32), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
