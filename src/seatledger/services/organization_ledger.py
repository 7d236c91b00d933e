"""
Organization ledger: the per-tenant record of plan, trial window,
subscription status and active-seat count.

Invariants owned here:
- ``0 <= active_seat_count <= plan.max_users``
- the bootstrap admin created at registration never occupies a seat, so a new
  organization starts at ``active_seat_count == 0``
- an organization that is ``canceled`` or ``expired`` only becomes live again
  through ``set_plan`` with a fresh subscription, never a bare status change

Primitives (``adjust_seat_count``, ``reserve_seats``, ``set_plan``,
``set_status``) write inside the caller's transaction and do not commit;
callers hold the organization lock around their check-then-act sequence.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import List, Optional

from dotenv import load_dotenv
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.seatledger import models
from src.seatledger.core.errors import InvariantViolation, NotFound, ValidationError
from src.seatledger.core.locks import OrganizationLocks, organization_locks
from src.seatledger.core.permissions import Role
from src.seatledger.core.security import hash_password
from src.seatledger.models import SubscriptionStatus
from src.seatledger.services.plan_catalog import PlanCatalog, plan_catalog
from src.seatledger.services.processor import PaymentProcessor
from src.seatledger.utils.timeutils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

TRIAL_DAYS = int(os.getenv("TRIAL_DAYS", "14"))

TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED})

ALLOWED_TRANSITIONS = frozenset(
    {
        (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE),
        (SubscriptionStatus.TRIALING, SubscriptionStatus.CANCELED),
        (SubscriptionStatus.TRIALING, SubscriptionStatus.EXPIRED),
        (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED),
        (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED),
    }
)

ADDRESS_FIELDS = ("street", "city", "state", "country", "postal_code")


def _status(value) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown subscription status: {value}")


class OrganizationLedger:

    def __init__(
        self,
        catalog: Optional[PlanCatalog] = None,
        locks: Optional[OrganizationLocks] = None,
    ):
        self.catalog = catalog or plan_catalog
        self.locks = locks or organization_locks

    # --- Lookups ---

    def get(self, db: Session, organization_id: int) -> models.Organization:
        org = (
            db.query(models.Organization)
            .filter(models.Organization.id == organization_id)
            .first()
        )
        if not org:
            raise NotFound("Organization not found", organization_id=organization_id)
        return org

    def get_by_subscription_ref(
        self, db: Session, subscription_ref: str
    ) -> Optional[models.Organization]:
        return (
            db.query(models.Organization)
            .filter(models.Organization.stripe_subscription_id == subscription_ref)
            .first()
        )

    def list_all(self, db: Session) -> List[models.Organization]:
        return db.query(models.Organization).order_by(models.Organization.id).all()

    # --- Registration & details ---

    def register(
        self,
        db: Session,
        processor: PaymentProcessor,
        name: str,
        billing_email: str,
        admin_password: str,
        admin_first_name: Optional[str] = None,
        admin_last_name: Optional[str] = None,
    ):
        """Create an organization on the default plan with its bootstrap admin.

        The processor customer is created first; if that fails nothing is
        written locally. If the local write fails afterwards it is rolled back
        and the orphaned customer reference is logged.

        Returns:
            Tuple of (organization, admin user)
        """
        email = billing_email.lower()
        if not name or not name.strip():
            raise ValidationError("Organization name is required")
        if db.query(models.User).filter(models.User.email == email).first():
            raise ValidationError("User already exists", email=email)

        plan = self.catalog.default_plan(db)

        customer_ref = processor.create_customer(email=email, name=name)

        now = utcnow()
        try:
            org = models.Organization(
                name=name.strip(),
                plan_id=plan.id,
                stripe_customer_id=customer_ref,
                active_seat_count=0,
                trial_ends_at=now + timedelta(days=TRIAL_DAYS),
                subscription_status=SubscriptionStatus.TRIALING.value,
                status_changed_at=now,
                billing_email=email,
            )
            db.add(org)
            db.flush()

            admin = models.User(
                organization_id=org.id,
                email=email,
                first_name=admin_first_name,
                last_name=admin_last_name,
                password_hash=hash_password(admin_password),
                role=Role.ADMIN.value,
                is_active=True,
                is_bootstrap_admin=True,
            )
            db.add(admin)
            db.commit()
        except Exception:
            db.rollback()
            logger.error(
                f"Registration of {email} failed after creating processor customer "
                f"{customer_ref}; the customer is orphaned"
            )
            raise
        db.refresh(org)
        db.refresh(admin)

        logger.info(
            f"Registered organization {org.id} ({org.name}) with customer {customer_ref}, "
            f"trial ends {org.trial_ends_at}"
        )
        return org, admin

    def update_details(
        self,
        db: Session,
        org: models.Organization,
        name: Optional[str] = None,
        billing_email: Optional[str] = None,
        address: Optional[dict] = None,
    ) -> models.Organization:
        if name:
            org.name = name
        if billing_email:
            org.billing_email = billing_email.lower()
        if address:
            for field in ADDRESS_FIELDS:
                if field in address:
                    setattr(org, f"address_{field}", address[field])
        db.commit()
        db.refresh(org)
        return org

    # --- Seat accounting ---

    def can_accommodate(self, org: models.Organization, additional_seats: int) -> bool:
        return org.active_seat_count + additional_seats <= org.plan.max_users

    def reserve_seats(self, db: Session, org: models.Organization, seats: int) -> bool:
        """Atomically add `seats` to the count if the plan limit allows it.

        Runs as one conditional UPDATE so two writers can never both take
        the last seat. Returns False when the limit would be exceeded.
        """
        max_users = (
            select(models.Plan.max_users)
            .where(models.Plan.id == models.Organization.plan_id)
            .scalar_subquery()
        )
        result = db.execute(
            update(models.Organization)
            .where(
                models.Organization.id == org.id,
                models.Organization.active_seat_count + seats <= max_users,
            )
            .values(active_seat_count=models.Organization.active_seat_count + seats)
            .execution_options(synchronize_session=False)
        )
        db.refresh(org)
        if result.rowcount != 1:
            logger.info(
                f"Seat reservation of {seats} refused for organization {org.id} "
                f"({org.active_seat_count}/{org.plan.max_users})"
            )
            return False
        logger.info(
            f"Reserved {seats} seat(s) for organization {org.id} "
            f"({org.active_seat_count}/{org.plan.max_users})"
        )
        return True

    def adjust_seat_count(self, db: Session, org: models.Organization, delta: int) -> int:
        """Change the seat count by `delta`; never checks the plan maximum.

        Raises:
            InvariantViolation: if the count would become negative
        """
        if org.active_seat_count + delta < 0:
            raise InvariantViolation(
                "Seat count cannot be negative",
                organization_id=org.id,
                active_seat_count=org.active_seat_count,
                delta=delta,
            )
        result = db.execute(
            update(models.Organization)
            .where(
                models.Organization.id == org.id,
                models.Organization.active_seat_count + delta >= 0,
            )
            .values(active_seat_count=models.Organization.active_seat_count + delta)
            .execution_options(synchronize_session=False)
        )
        db.refresh(org)
        if result.rowcount != 1:
            raise InvariantViolation(
                "Seat count cannot be negative", organization_id=org.id, delta=delta
            )
        logger.info(
            f"Adjusted seat count for organization {org.id} by {delta:+d} -> {org.active_seat_count}"
        )
        return org.active_seat_count

    # --- Plan & status ---

    def set_plan(
        self,
        db: Session,
        org: models.Organization,
        plan: models.Plan,
        subscription_ref: str,
        status,
        changed_at: Optional[datetime] = None,
    ) -> models.Organization:
        """Swap plan, subscription reference and status as one update.

        This is the only way out of a terminal status: it represents a fresh
        subscription.
        """
        new_status = _status(status)
        previous = (org.plan_id, org.stripe_subscription_id, org.subscription_status)
        org.plan_id = plan.id
        org.plan = plan
        org.stripe_subscription_id = subscription_ref
        org.subscription_status = new_status.value
        org.status_changed_at = changed_at or utcnow()
        logger.info(
            f"Organization {org.id} plan/subscription/status {previous} -> "
            f"{(plan.id, subscription_ref, new_status.value)}"
        )
        return org

    def set_status(
        self,
        db: Session,
        org: models.Organization,
        status,
        changed_at: Optional[datetime] = None,
    ) -> bool:
        """Apply a status transition.

        Returns True if the status changed, False for a same-state no-op.

        Raises:
            InvariantViolation: for transitions outside the lifecycle, including
                any attempt to leave ``canceled``/``expired``
        """
        new_status = _status(status)
        current = _status(org.subscription_status)

        if current == new_status:
            return False

        if current in TERMINAL_STATUSES:
            raise InvariantViolation(
                f"Organization is {current.value}; a new subscription is required",
                organization_id=org.id,
                current=current.value,
                requested=new_status.value,
            )

        if (current, new_status) not in ALLOWED_TRANSITIONS:
            raise InvariantViolation(
                f"Illegal status transition {current.value} -> {new_status.value}",
                organization_id=org.id,
            )

        org.subscription_status = new_status.value
        org.status_changed_at = changed_at or utcnow()
        logger.info(
            f"Organization {org.id} status {current.value} -> {new_status.value}"
        )
        return True

    # --- Trial expiry ---

    def expire_trials(self, db: Session, now: Optional[datetime] = None) -> List[int]:
        """Expire organizations whose trial ended without a subscription.

        Returns:
            Ids of the organizations that were expired
        """
        now = now or utcnow()
        candidates = (
            db.query(models.Organization.id)
            .filter(
                models.Organization.subscription_status
                == SubscriptionStatus.TRIALING.value,
                models.Organization.stripe_subscription_id.is_(None),
                models.Organization.trial_ends_at.isnot(None),
                models.Organization.trial_ends_at <= now,
            )
            .all()
        )

        expired = []
        for (organization_id,) in candidates:
            with self.locks.hold(organization_id):
                org = self.get(db, organization_id)
                db.refresh(org)
                # Re-check under the lock; a subscribe may have landed meanwhile
                if (
                    org.subscription_status != SubscriptionStatus.TRIALING.value
                    or org.stripe_subscription_id
                ):
                    continue
                self.set_status(db, org, SubscriptionStatus.EXPIRED, changed_at=now)
                db.commit()
                expired.append(org.id)

        if expired:
            logger.info(f"Expired {len(expired)} trial organization(s): {expired}")
        else:
            logger.info("No expired trials found")
        return expired


# Global instance
organization_ledger = OrganizationLedger()
