from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.sql import func

from shared.config.database import Base


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = {"schema": "coupon_schema"}

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    type = Column(String(16), nullable=False, default="fixed")  # fixed, percentage
    value = Column(Numeric(10, 2), nullable=False)
    expiry_date = Column(Date, nullable=False)
    max_users = Column(Integer, nullable=False)
    used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CouponUsage(Base):
    __tablename__ = "coupon_usages"
    __table_args__ = {"schema": "coupon_schema"}

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupon_schema.coupons.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
