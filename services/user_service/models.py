from sqlalchemy import Boolean, Column, DateTime, Float, Integer, Numeric, String
from sqlalchemy.sql import func

from shared.config.database import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = {"schema": "user_schema"}

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(32), nullable=False, default="Customer")
    # Set for clinic moderators: the practitioner the clinic orders on behalf of
    practitioner_id = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # Commission ledger: amount owed by the practitioner for credit orders
    credit_balance = Column(Numeric(12, 2), nullable=False, default=0)
    # Remaining credit line
    total_credit_balance = Column(Numeric(12, 2), nullable=False, default=0)
    # Stripe Customer that saved Stripe cards are attached to
    stripe_customer_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = {"schema": "user_schema"}

    id = Column(Integer, primary_key=True, index=True)
    client_code = Column(String(64), nullable=True)
    fore_name = Column(String(100), nullable=False)
    sur_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    address = Column(String(255), nullable=True)
    town = Column(String(100), nullable=True)
    postcode = Column(String(16), nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    created_by = Column(Integer, nullable=True, index=True)  # practitioner user id
    user_id = Column(Integer, nullable=True, index=True)  # linked customer account
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.fore_name} {self.sur_name}"

    @property
    def full_address(self) -> str:
        parts = [self.address, self.town, self.postcode]
        return ", ".join(part.strip() for part in parts if part and part.strip())
