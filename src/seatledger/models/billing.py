from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from src.seatledger.core.database import Base
from src.seatledger.utils.timeutils import utcnow

PLAN_TIERS = ("Basic", "Standard", "Plus")


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, index=True)  # Basic, Standard, Plus
    description = Column(Text, nullable=True)
    # Per-seat annual price in minor currency units (e.g. paise)
    price = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False, default="INR")
    billing_cycle = Column(String(20), nullable=False, default="yearly")
    min_users = Column(Integer, nullable=False)
    max_users = Column(Integer, nullable=False)
    features = Column(JSON, nullable=False, default=list)
    trial_days = Column(Integer, nullable=False, default=0)
    stripe_product_id = Column(String(255), nullable=False, index=True)
    stripe_price_id = Column(String(255), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    stripe_customer_id = Column(String(255), nullable=False, unique=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, unique=True, index=True)
    # Counted seats; the bootstrap admin is never included
    active_seat_count = Column(Integer, nullable=False, default=0)
    trial_ends_at = Column(DateTime, nullable=True)
    subscription_status = Column(
        String(20), nullable=False, default=SubscriptionStatus.TRIALING.value
    )  # trialing, active, canceled, expired
    # Processor-clock time of the last applied status change
    status_changed_at = Column(DateTime, nullable=True)
    billing_email = Column(String(255), nullable=False)
    address_street = Column(String(255), nullable=True)
    address_city = Column(String(100), nullable=True)
    address_state = Column(String(100), nullable=True)
    address_country = Column(String(100), nullable=True)
    address_postal_code = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    plan = relationship("Plan")

    @property
    def address(self) -> dict:
        return {
            "street": self.address_street,
            "city": self.address_city,
            "state": self.address_state,
            "country": self.address_country,
            "postal_code": self.address_postal_code,
        }


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id"), nullable=False, index=True
    )
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(String(20), nullable=False, default="user")  # user, admin, superAdmin
    is_active = Column(Boolean, nullable=False, default=True)
    # The admin created at registration does not occupy a seat
    is_bootstrap_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    organization = relationship("Organization")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(
        Integer, ForeignKey("organizations.id"), nullable=False, index=True
    )
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    # Snapshot of the plan at purchase time
    plan_name = Column(String(50), nullable=False)
    unit_price = Column(Integer, nullable=False)
    seat_quantity = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False, default="INR")
    status = Column(
        String(20), nullable=False, default=OrderStatus.PENDING.value
    )  # pending, completed, failed, refunded
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(255), primary_key=True)  # Processor event id
    type = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False)  # processed, ignored, failed
    detail = Column(Text, nullable=True)
    received_at = Column(DateTime, default=utcnow)
    # Normalised event fields, kept so unmatched events can be replayed
    event_type = Column(String(50), nullable=True)
    occurred_at = Column(DateTime, nullable=True)
    payment_intent_ref = Column(String(255), nullable=True, index=True)
    invoice_ref = Column(String(255), nullable=True, index=True)
    subscription_ref = Column(String(255), nullable=True, index=True)
    amount = Column(Integer, nullable=True)
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)
