from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, Numeric, String
from sqlalchemy.sql import func

from shared.config.database import Base


class Phlebotomist(Base):
    __tablename__ = "phlebotomists"
    __table_args__ = {"schema": "availability_schema"}

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    home_address = Column(String(255), nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class AvailabilitySlot(Base):
    __tablename__ = "availability_slots"
    __table_args__ = {"schema": "availability_schema"}

    id = Column(Integer, primary_key=True, index=True)
    pleb_id = Column(Integer, ForeignKey("availability_schema.phlebotomists.id"), nullable=False, index=True)
    day_of_week = Column(String(9), nullable=False)  # Monday..Sunday
    # Kept as submitted ("HH:mm" or "HH:mm:ss"); compared after parsing
    start_time = Column(String(8), nullable=False)
    end_time = Column(String(8), nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)


class ServiceRange(Base):
    __tablename__ = "service_ranges"
    __table_args__ = {"schema": "availability_schema"}

    id = Column(Integer, primary_key=True, index=True)
    pleb_id = Column(
        Integer, ForeignKey("availability_schema.phlebotomists.id"), nullable=False, unique=True
    )
    max_distance = Column(Numeric(10, 2), nullable=False)
    unit = Column(String(8), nullable=False)  # miles, km
    max_distance_miles = Column(Numeric(10, 2), nullable=False)
