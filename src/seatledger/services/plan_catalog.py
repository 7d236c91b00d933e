"""
Plan catalog: the purchasable tiers with their seat bounds and pricing.

Plans are never hard-deleted. Deactivating a plan hides it from the catalog
while organizations and orders that reference it keep doing so.
"""

import logging
from typing import List, Union

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from src.seatledger import models
from src.seatledger.core.errors import NotFound, ValidationError
from src.seatledger.schemas.plan import PlanBase, PlanCreate, PlanUpdate

logger = logging.getLogger(__name__)

DEFAULT_PLAN_NAME = "Basic"


def _schema_errors(exc: SchemaValidationError) -> List[str]:
    messages = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error.get("loc", []))
        msg = error.get("msg", "Validation error")
        messages.append(f"{field}: {msg}" if field else msg)
    return messages


class PlanCatalog:

    def list_active(self, db: Session) -> List[models.Plan]:
        return db.query(models.Plan).filter(models.Plan.is_active.is_(True)).all()

    def get(self, db: Session, plan_id: int) -> models.Plan:
        plan = db.query(models.Plan).filter(models.Plan.id == plan_id).first()
        if not plan:
            raise NotFound("Plan not found", plan_id=plan_id)
        return plan

    def default_plan(self, db: Session) -> models.Plan:
        """The plan new organizations start their trial on."""
        plan = (
            db.query(models.Plan)
            .filter(
                models.Plan.name == DEFAULT_PLAN_NAME,
                models.Plan.is_active.is_(True),
            )
            .order_by(models.Plan.id)
            .first()
        )
        if not plan:
            raise NotFound(f"{DEFAULT_PLAN_NAME} plan not found")
        return plan

    def create(self, db: Session, spec: Union[PlanCreate, dict]) -> models.Plan:
        try:
            data = PlanCreate.model_validate(
                spec.model_dump() if isinstance(spec, PlanCreate) else spec
            )
        except SchemaValidationError as e:
            errors = _schema_errors(e)
            raise ValidationError("; ".join(errors), errors=errors) from e

        plan = models.Plan(**data.model_dump(), is_active=True)
        db.add(plan)
        db.commit()
        db.refresh(plan)
        logger.info(f"Created plan {plan.id} ({plan.name}) price={plan.price} {plan.currency}")
        return plan

    def update(
        self, db: Session, plan_id: int, patch: Union[PlanUpdate, dict]
    ) -> models.Plan:
        plan = self.get(db, plan_id)
        try:
            changes = PlanUpdate.model_validate(
                patch.model_dump(exclude_unset=True)
                if isinstance(patch, PlanUpdate)
                else patch
            ).model_dump(exclude_unset=True)
            # Re-validate the merged plan so bounds stay consistent
            merged = {
                field: getattr(plan, field) for field in PlanBase.model_fields
            }
            merged.update(changes)
            PlanBase.model_validate(merged)
        except SchemaValidationError as e:
            errors = _schema_errors(e)
            raise ValidationError("; ".join(errors), errors=errors) from e

        for field, value in changes.items():
            setattr(plan, field, value)
        db.commit()
        db.refresh(plan)
        logger.info(f"Updated plan {plan.id}: {sorted(changes)}")
        return plan

    def deactivate(self, db: Session, plan_id: int) -> models.Plan:
        plan = self.get(db, plan_id)
        plan.is_active = False
        db.commit()
        db.refresh(plan)
        logger.info(f"Deactivated plan {plan.id} ({plan.name})")
        return plan


# Global instance
plan_catalog = PlanCatalog()
