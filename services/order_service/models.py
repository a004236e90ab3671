from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from shared.config.database import Base

ORDER_STATUSES = ("Started", "Pending Validation", "Complete", "Ready", "Received at the Lab", "Failed")
JOB_STATUSES = ("Assigned", "Picked Up", "In Transit", "Delivered", "Cancelled")


class Order(Base):
    __tablename__ = "orders"
    # We use a separate schema to simulate microservice isolation
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(String(16), unique=True, nullable=False, index=True)
    order_number = Column(String(32), nullable=False)
    customer_id = Column(Integer, nullable=False, index=True)
    client_code = Column(String(64), nullable=True)
    client_name = Column(String(255), nullable=True)
    test_ids = Column(JSON, nullable=False, default=list)
    service_ids = Column(JSON, nullable=False, default=list)
    shipping_type_id = Column(Integer, nullable=False)
    royal_mail_label = Column(Boolean, default=False, nullable=False)

    subtotal = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    coupon_code = Column(String(64), nullable=True)
    coupon_discount = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_charges = Column(Numeric(10, 2), nullable=False, default=0)
    other_charges_total = Column(Numeric(10, 2), nullable=False, default=0)
    phleb_charges = Column(Numeric(10, 2), nullable=False, default=0)
    total_val = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")

    checkout_type = Column(String(16), nullable=False)  # Credit, Stripe, GlobalPayments
    payment_status = Column(String(16), nullable=False, default="Pending")
    status = Column(String(32), nullable=False, default="Started")
    transaction_id = Column(String(128), nullable=True)

    order_placed_by = Column(Integer, nullable=False)
    created_by = Column(Integer, nullable=False, default=0)
    practitioner_id = Column(Integer, nullable=True, index=True)

    # Clinical questionnaire
    current_medication = Column(Text, nullable=True)
    last_trained = Column(String(64), nullable=True)
    fasted = Column(Boolean, nullable=True)
    hydrated = Column(Boolean, nullable=True)
    drank_alcohol = Column(Boolean, nullable=True)
    drugs_taken = Column(Text, nullable=True)
    supplements = Column(Text, nullable=True)
    enhancing_drugs = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class OrderLog(Base):
    __tablename__ = "order_logs"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id"), nullable=False, index=True)
    status = Column(String(32), nullable=False)
    changed_by = Column(Integer, nullable=True)
    note = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PhlebBooking(Base):
    __tablename__ = "phleb_bookings"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id"), nullable=False, unique=True)
    zone = Column(String(32), nullable=True)
    shift_type = Column(String(32), nullable=True)
    slot_times = Column(String(64), nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    weekend_surcharge = Column(Numeric(10, 2), nullable=False, default=0)
    booking_date = Column(Date, nullable=True)
    booking_time = Column(String(8), nullable=True)
    availability = Column(String(255), nullable=True)
    additional_preferences = Column(Text, nullable=True)


class PlebJob(Base):
    __tablename__ = "pleb_jobs"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    pleb_id = Column(Integer, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id"), nullable=False, index=True)
    job_status = Column(String(16), nullable=False, default="Assigned")
    tracking_number = Column(String(32), unique=True, nullable=False)
    assigned_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PlebJobLog(Base):
    __tablename__ = "pleb_job_logs"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("order_schema.pleb_jobs.id"), nullable=False, index=True)
    job_status = Column(String(16), nullable=False)
    changed_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PractitionerCommission(Base):
    __tablename__ = "practitioner_commissions"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id"), nullable=False, index=True)
    practitioner_id = Column(Integer, nullable=False, index=True)
    commission_amount = Column(Numeric(10, 2), nullable=False)
    is_paid = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CreditLedgerEntry(Base):
    """Append-only trail of every change to a user's credit balances."""

    __tablename__ = "credit_ledger_entries"
    __table_args__ = {"schema": "order_schema"}

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("order_schema.orders.id"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    entry_type = Column(String(32), nullable=False)  # credit_order
    created_at = Column(DateTime(timezone=True), server_default=func.now())
