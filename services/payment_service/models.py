from sqlalchemy import Column, DateTime, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.sql import func

from shared.config.database import Base


class Payment(Base):
    """One gateway authorization or charge, recorded as soon as the provider answers."""

    __tablename__ = "payments"
    __table_args__ = {"schema": "payment_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_reference = Column(String(64), nullable=False, index=True)
    order_id = Column(Integer, nullable=True, index=True)
    provider = Column(String(32), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(16), nullable=False)  # Authorized, Paid, Released, Voided, Failed
    transaction_id = Column(String(128), nullable=True, index=True)
    authorization_code = Column(String(64), nullable=True)
    response_code = Column(String(32), nullable=True)
    response_message = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PaymentToken(Base):
    __tablename__ = "payment_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "token", name="uq_payment_token_user_token"),
        {"schema": "payment_schema"},
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    token = Column(String(128), nullable=False)
    provider = Column(String(32), nullable=False)
    fingerprint = Column(String(128), nullable=True)
    # Display only
    brand = Column(String(32), nullable=True)
    last4 = Column(String(4), nullable=True)
    exp_month = Column(String(2), nullable=True)
    exp_year = Column(String(4), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
