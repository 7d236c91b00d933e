"""
Seat manager: adds, deactivates and removes users against the
organization's seat budget.

Seat accounting rules:
- every user added after registration occupies a seat while active
- the bootstrap admin never occupies a seat (the count starts at 0)
- admins cannot be deactivated or removed
- flipping a user to the state it is already in never adjusts the count
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from src.seatledger import models
from src.seatledger.core.errors import (
    NotFound,
    PermissionDenied,
    SeatLimitExceeded,
    ValidationError,
)
from src.seatledger.core.locks import OrganizationLocks, organization_locks
from src.seatledger.core.permissions import Role
from src.seatledger.core.security import hash_password
from src.seatledger.services.organization_ledger import (
    OrganizationLedger,
    organization_ledger,
)

logger = logging.getLogger(__name__)


class SeatManager:

    def __init__(
        self,
        ledger: Optional[OrganizationLedger] = None,
        locks: Optional[OrganizationLocks] = None,
    ):
        self.ledger = ledger or organization_ledger
        self.locks = locks or organization_locks

    def _get_member(
        self, db: Session, organization_id: int, user_id: int
    ) -> models.User:
        user = (
            db.query(models.User)
            .filter(
                models.User.id == user_id,
                models.User.organization_id == organization_id,
            )
            .first()
        )
        if not user:
            raise NotFound("User not found", user_id=user_id)
        return user

    def list_users(self, db: Session, organization_id: int) -> List[models.User]:
        return (
            db.query(models.User)
            .filter(models.User.organization_id == organization_id)
            .order_by(models.User.id)
            .all()
        )

    def add_user(
        self,
        db: Session,
        organization_id: int,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> models.User:
        """Create an active `user`-role member occupying one seat.

        Raises:
            SeatLimitExceeded: if the organization's plan has no free seat
            ValidationError: if the email is already registered
        """
        email = email.lower()
        with self.locks.hold(organization_id):
            org = self.ledger.get(db, organization_id)
            db.refresh(org)

            if db.query(models.User).filter(models.User.email == email).first():
                raise ValidationError("User already exists", email=email)

            if not self.ledger.can_accommodate(org, 1):
                raise SeatLimitExceeded(
                    "Organization has reached maximum user limit",
                    organization_id=org.id,
                    max_users=org.plan.max_users,
                )

            try:
                # Storage-level guard for writers in other processes
                if not self.ledger.reserve_seats(db, org, 1):
                    raise SeatLimitExceeded(
                        "Organization has reached maximum user limit",
                        organization_id=org.id,
                        max_users=org.plan.max_users,
                    )

                user = models.User(
                    organization_id=org.id,
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    password_hash=hash_password(password),
                    role=Role.USER.value,
                    is_active=True,
                    is_bootstrap_admin=False,
                )
                db.add(user)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(user)
            logger.info(
                f"Added user {user.id} ({user.email}) to organization {org.id}, "
                f"seats {org.active_seat_count}/{org.plan.max_users}"
            )
            return user

    def set_user_active(
        self, db: Session, organization_id: int, user_id: int, active: bool
    ) -> models.User:
        """Activate or deactivate a member, adjusting the seat count once.

        Admins are left untouched. Re-activation needs a free seat.
        """
        with self.locks.hold(organization_id):
            org = self.ledger.get(db, organization_id)
            db.refresh(org)
            user = self._get_member(db, organization_id, user_id)

            if user.role == Role.ADMIN.value:
                logger.info(f"Ignoring active={active} for admin user {user.id}")
                return user

            if bool(user.is_active) == bool(active):
                return user

            try:
                if active:
                    if not self.ledger.can_accommodate(
                        org, 1
                    ) or not self.ledger.reserve_seats(db, org, 1):
                        raise SeatLimitExceeded(
                            "Organization has reached maximum user limit",
                            organization_id=org.id,
                            max_users=org.plan.max_users,
                        )
                else:
                    self.ledger.adjust_seat_count(db, org, -1)
                user.is_active = bool(active)
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(user)
            logger.info(
                f"User {user.id} active={user.is_active}; organization {org.id} "
                f"seats {org.active_seat_count}/{org.plan.max_users}"
            )
            return user

    def remove_user(
        self, db: Session, organization_id: int, user_id: int
    ) -> models.User:
        """Soft-delete a member, releasing exactly one seat.

        A user that is already inactive holds no seat, so nothing is
        released a second time.

        Raises:
            PermissionDenied: for admin users
        """
        with self.locks.hold(organization_id):
            org = self.ledger.get(db, organization_id)
            db.refresh(org)
            user = self._get_member(db, organization_id, user_id)

            if user.role == Role.ADMIN.value:
                raise PermissionDenied("Cannot delete admin user", user_id=user.id)

            if not user.is_active:
                logger.info(f"User {user.id} already inactive; no seat to release")
                return user

            try:
                self.ledger.adjust_seat_count(db, org, -1)
                user.is_active = False
                db.commit()
            except Exception:
                db.rollback()
                raise

            db.refresh(user)
            logger.info(
                f"Removed user {user.id} from organization {org.id}, "
                f"seats {org.active_seat_count}/{org.plan.max_users}"
            )
            return user


# Global instance
seat_manager = SeatManager()
