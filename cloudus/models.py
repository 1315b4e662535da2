import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from cloudus.database import Base


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class Provider(str, enum.Enum):
    STRIPE = "STRIPE"
    PAYSTACK = "PAYSTACK"
    OZOW = "OZOW"


class PayableKind(str, enum.Enum):
    ORDER = "ORDER"
    PROJECT = "PROJECT"
    BOOKING = "BOOKING"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    kind = Column(String, default="shop")           # shop | laundry
    price_cents = Column(Integer, nullable=False, default=0)
    delivery_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="ZAR")
    customer_email = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    payments = relationship("Payment", back_populates="order", order_by="Payment.created_at.desc()")

    @property
    def total_cents(self) -> int:
        return (self.price_cents or 0) + (self.delivery_cents or 0)


class ProjectMilestone(Base):
    __tablename__ = "project_milestones"

    id = Column(String, primary_key=True, default=new_id)
    project_id = Column(String, nullable=False, index=True)
    project_name = Column(String, nullable=False)
    purpose = Column(String, default="")
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="ZAR")
    client_email = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    payments = relationship("Payment", back_populates="milestone", order_by="Payment.created_at.desc()")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String, primary_key=True, default=new_id)
    room_id = Column(String, nullable=False)
    room_title = Column(String, default="")
    guest_email = Column(String)
    total_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="ZAR")
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    payments = relationship("Payment", back_populates="booking", order_by="Payment.created_at.desc()")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
    )

    id = Column(String, primary_key=True, default=new_id)
    payable_kind = Column(Enum(PayableKind), nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), index=True)
    milestone_id = Column(String, ForeignKey("project_milestones.id"), index=True)
    booking_id = Column(String, ForeignKey("bookings.id"), index=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    provider = Column(Enum(Provider), nullable=False)
    provider_ref = Column(String, index=True)           # session id / transaction reference
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    receipt_url = Column(String)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="payments")
    milestone = relationship("ProjectMilestone", back_populates="payments")
    booking = relationship("Booking", back_populates="payments")

    @property
    def entity_id(self) -> str:
        return self.order_id or self.milestone_id or self.booking_id


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_id)
    payment_id = Column(String, ForeignKey("payments.id"), index=True)
    action = Column(String, nullable=False)          # checkout.started | payment.paid | payment.failed | payment.ignored
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
